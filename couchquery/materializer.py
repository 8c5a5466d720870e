"""
Turn raw view responses into what the caller asked for.
"""

import logging
from typing import Any, Dict, List, Optional

from .entity import Document, EntityType

logger = logging.getLogger(__name__)


def _sort_value(record: Any, field: str) -> Any:
    if isinstance(record, Document):
        return record.read_attribute(field)
    if isinstance(record, dict):
        return record.get(field)
    return getattr(record, field, None)


def _collation_key(value: Any) -> tuple:
    # Types ranked as the store collates JSON
    if value is None:
        return (0,)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    if isinstance(value, (list, tuple)):
        return (4, tuple(_collation_key(v) for v in value))
    return (5, repr(value))


def cap_count(value: int, limit: Optional[int] = None, offset: Optional[int] = None) -> int:
    """
    Apply a relation's offset and limit to a raw match count.

    The offset is subtracted first (never below zero), then the limit caps
    the result: min(limit, max(value - offset, 0)).
    """
    if limit is None and offset is None:
        return value
    value = max(value - int(offset or 0), 0)
    if limit is not None:
        value = min(value, int(limit))
    return value


class ResultMaterializer:
    """Builds documents (or scalars) from view results for one entity type."""

    def __init__(self, entity: EntityType):
        self.entity = entity

    def materialize(
        self,
        result: Dict[str, Any],
        raw: bool = False,
        readonly: bool = False,
        order: Optional[str] = None
    ):
        """
        Convert a view response into domain objects.

        Args:
            result: Raw view response with a 'rows' list
            raw: Return the response untouched (for views that don't emit
                whole documents)
            readonly: Mark each object read-only
            order: Field to sort by; defaults to the entity's default_sort

        Returns:
            The raw response if raw, else a list of objects
        """
        if raw:
            return result

        records = [self.entity.instantiate(row["value"]) for row in result.get("rows", [])]
        if readonly:
            for record in records:
                record.mark_readonly()

        order = order or self.entity.default_sort
        if order:
            records = self.sort(records, order)
        logger.debug(f"Materialized {len(records)} {self.entity.name} documents")
        return records

    @staticmethod
    def sort(records: List[Any], field: str) -> List[Any]:
        """
        Stable sort on a field, documents missing it go last.

        Values of different types are ordered by type first: booleans,
        numbers, strings, lists, then anything else.
        """
        def key(record):
            value = _sort_value(record, field)
            return (value is None, _collation_key(value))
        return sorted(records, key=key)

    @staticmethod
    def reduced_count(result: Dict[str, Any]) -> int:
        """
        Count from a reduce response.

        The store skips the reduce entirely when nothing matched, leaving
        no rows at all; that means zero. Grouped responses (one row per
        requested key) are summed.
        """
        rows = result.get("rows") or []
        return sum(int(row.get("value") or 0) for row in rows)

    @staticmethod
    def row_count(result: Dict[str, Any]) -> int:
        return len(result.get("rows") or [])
