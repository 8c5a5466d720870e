"""
Query options accepted by the finder API.

A query is described by a QueryOptions value rather than by keyword soup so
that every layer (compiler, executor, materializer) reads the same fields.
Legacy keyword names are accepted by QueryOptions.from_dict.
"""

import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Union


@dataclass(frozen=True)
class Range:
    """Inclusive two-ended range condition, e.g. Range(20, 30)."""
    start: Any
    end: Any


# Raw view parameters passed through untouched
EXTRA_VIEW_PARAMS = {
    'group', 'group_level', 'include_docs', 'startkey_docid',
    'endkey_docid', 'inclusive_end', 'keys', 'reduce',
}

VALID_OPTIONS = {
    'conditions', 'use_key', 'order', 'limit', 'offset', 'descending',
    'readonly', 'raw', 'update_index', 'slow', 'startkey', 'endkey', 'extra',
}

# Older option names mapped onto their current equivalents
LEGACY_ALIASES = {
    'return_json': 'raw',
    'skip': 'offset',
    'count': 'limit',
}


def is_discrete(value: Any) -> bool:
    """True for condition values that enumerate several acceptable values."""
    return isinstance(value, (list, tuple, set, frozenset))


def discrete_members(value: Any) -> List[Any]:
    """Members of a discrete set in a deterministic order."""
    if isinstance(value, (set, frozenset)):
        try:
            return sorted(value)
        except TypeError:
            return sorted(value, key=repr)
    return list(value)


@dataclass
class QueryOptions:
    """
    Everything a caller can say about a query.

    Attributes:
        conditions: field -> exact value, Range or discrete set
        use_key: Explicit key fields, overriding the condition fields
        order: Field to sort the materialized documents by
        limit: Maximum number of rows
        offset: Rows to skip
        descending: Walk the view backwards
        readonly: Mark returned documents read-only
        raw: Return the raw view response instead of documents
        update_index: False lets the store answer from a stale index
        slow: Use an ad-hoc query instead of a stored view
        startkey: Explicit start key (for custom key layouts)
        endkey: Explicit end key
        extra: Additional view parameters (see EXTRA_VIEW_PARAMS)
    """
    conditions: Dict[str, Any] = field(default_factory=dict)
    use_key: Optional[Union[str, Sequence[str]]] = None
    order: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    descending: bool = False
    readonly: bool = False
    raw: bool = False
    update_index: bool = True
    slow: bool = False
    startkey: Any = None
    endkey: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> 'QueryOptions':
        """
        Build options from a plain dictionary.

        Accepts the legacy names return_json, skip, count, view_type='slow'
        and update=False, as well as bare view parameters from
        EXTRA_VIEW_PARAMS.

        Raises:
            ValueError: If an unknown option is supplied
        """
        kwargs: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            key = LEGACY_ALIASES.get(key, key)
            if key == 'view_type':
                kwargs['slow'] = value in ('slow', 'ad_hoc')
            elif key == 'update':
                kwargs['update_index'] = bool(value)
            elif key == 'extra':
                extra.update(value or {})
            elif key in EXTRA_VIEW_PARAMS:
                extra[key] = value
            elif key in VALID_OPTIONS:
                kwargs[key] = value
            else:
                raise ValueError(f"Unknown query option: {key}")

        unknown = set(extra) - EXTRA_VIEW_PARAMS
        if unknown:
            raise ValueError(f"Unknown view parameters: {', '.join(sorted(unknown))}")

        kwargs['conditions'] = dict(kwargs.get('conditions') or {})
        return cls(extra=extra, **kwargs)

    @classmethod
    def coerce(cls, options: Union['QueryOptions', Dict[str, Any], None]) -> 'QueryOptions':
        if isinstance(options, QueryOptions):
            return options
        return cls.from_dict(options)

    def merged(self, **changes) -> 'QueryOptions':
        """Copy with some fields replaced."""
        return replace(self, **changes)


def _parse_scalar(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def parse_condition(expression: str):
    """
    Parse a command-line condition of the form field=value.

    Values:
        20..30      -> Range(20, 30)
        9,11,12     -> [9, 11, 12]
        42 / true   -> JSON-decoded scalar
        anything    -> string

    Returns:
        Tuple of (field, value)

    Raises:
        ValueError: If the expression has no '='
    """
    if '=' not in expression:
        raise ValueError(f"Condition must look like field=value: {expression}")

    name, text = expression.split('=', 1)
    name = name.strip()
    if not name:
        raise ValueError(f"Condition is missing a field name: {expression}")

    if '..' in text:
        start, end = text.split('..', 1)
        return name, Range(_parse_scalar(start), _parse_scalar(end))
    if ',' in text:
        return name, [_parse_scalar(part) for part in text.split(',') if part != '']
    return name, _parse_scalar(text)
