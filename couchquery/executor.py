"""
Query executor.

Runs a CompiledQuery against the store. Each indexed query moves through a
small state machine:

    COMPILED --ok--> MATERIALIZED
        |
        +--view not found--> REGISTERING --ok--> MATERIALIZED
                                  |
                                  +--not found again--> FAILED (raise)

so a missing view is created and the query retried exactly once.
"""

import logging
from enum import Enum
from typing import Any, Dict, List

from .capabilities import CapabilityProfile
from .compiler import CompiledQuery
from .errors import CapabilityMismatch, DocumentNotFound
from .registry import IndexRegistry
from .transport import Transport

logger = logging.getLogger(__name__)


class QueryState(Enum):
    """Lifecycle of a single indexed query."""
    COMPILED = "compiled"
    REGISTERING = "registering"
    MATERIALIZED = "materialized"
    FAILED = "failed"


class QueryExecutor:
    """Executes compiled queries, creating missing views on demand."""

    MAX_ATTEMPTS = 2

    def __init__(
        self,
        transport: Transport,
        registry: IndexRegistry,
        profile: CapabilityProfile,
        allow_ad_hoc: bool = True
    ):
        self.transport = transport
        self.registry = registry
        self.profile = profile
        self.allow_ad_hoc = allow_ad_hoc

    def execute(self, compiled: CompiledQuery) -> Dict[str, Any]:
        """
        Run a compiled query and return the raw view response.

        Queries carrying fallback keys run once per key and their rows are
        merged, dropping documents already seen.
        """
        if compiled.fallback_keys:
            return self._execute_per_key(compiled)
        if compiled.slow:
            return self.execute_ad_hoc(compiled)
        return self.execute_indexed(compiled)

    def execute_indexed(self, compiled: CompiledQuery) -> Dict[str, Any]:
        path = self.profile.view_path(compiled.design_name, compiled.view_name)
        state = QueryState.COMPILED

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                result = self.transport.query_view(path, compiled.params)
            except DocumentNotFound:
                if state is QueryState.REGISTERING:
                    state = QueryState.FAILED
                    logger.error(f"View {path} still missing after creating it")
                    raise
                state = QueryState.REGISTERING
                logger.debug(f"View {path} not found, registering it")
                self.registry.ensure(compiled.view_name, compiled.map_source, compiled.reduce_source)
                continue

            state = QueryState.MATERIALIZED
            logger.debug(f"Query on {path} {state.value} after {attempt} attempt(s)")
            return result

        raise DocumentNotFound(f"View {path} could not be queried")

    def execute_ad_hoc(self, compiled: CompiledQuery) -> Dict[str, Any]:
        """
        Evaluate the map/reduce pair over the whole database.

        Slow by nature; intended for development only.
        """
        if not self.allow_ad_hoc:
            raise CapabilityMismatch("ad-hoc queries", str(self.profile.version))
        logger.debug(f"Running ad-hoc query for {compiled.view_name}")
        return self.transport.query_ad_hoc(
            self.profile.ad_hoc_path,
            compiled.map_source,
            compiled.reduce_source,
            compiled.params,
        )

    def _execute_per_key(self, compiled: CompiledQuery) -> Dict[str, Any]:
        # Paging applies to the merged rows, not to each key's rows
        paging = {}
        for name in (self.profile.limit_param, self.profile.offset_param):
            if name in compiled.params:
                paging[name] = int(compiled.params[name])

        rows: List[Dict[str, Any]] = []
        seen = set()
        for single in compiled.per_key():
            for name in paging:
                single.params.pop(name)
            result = self.execute(single)
            for row in result.get("rows", []):
                row_id = row.get("id")
                if row_id is not None:
                    if row_id in seen:
                        continue
                    seen.add(row_id)
                rows.append(row)

        skip = paging.get(self.profile.offset_param, 0)
        limit = paging.get(self.profile.limit_param)
        rows = rows[skip:] if limit is None else rows[skip:skip + limit]
        return {"total_rows": len(rows), "offset": skip, "rows": rows}
