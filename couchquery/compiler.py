"""
Compile query options into a stored view and its request parameters.

CouchDB views can only be queried by key: an exact key, a key range or a
list of exact keys. The compiler picks the fields that make up the key,
derives a view name from them and encodes the condition values into view
parameters. For all people with a cost between 4 and 9 and a weight between
1 and 3 the view emits [cost, weight] and is queried with

    startkey=[4, 1]&endkey=[9, 3]

The view name depends only on the sorted key fields and the operation, so
the same field combination always resolves to the same stored index.

Known limitation: ordering (options.order) happens after retrieval while
limit/offset happen in the store, so combining them can return the wrong
slice. Put the ordering field in use_key instead.
"""

import itertools
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

from .capabilities import CapabilityProfile
from .entity import EntityType, normalize_field
from .options import QueryOptions, Range, discrete_members, is_discrete

logger = logging.getLogger(__name__)

FIND = "find"
COUNT = "count"

COUNT_REDUCE_FUNCTION = """function(keys, values) {
  return values.length;
}"""


@dataclass
class CompiledQuery:
    """
    A query ready to send to the store.

    Attributes:
        design_name: Design document the view lives in
        view_name: Deterministic view name
        map_source: Map function for the view
        reduce_source: Reduce function, if the view has one
        params: View request parameters
        fallback_keys: Exact keys to query one by one when the store can't
            take a list of keys in a single request
        slow: Run as an ad-hoc query instead of against a stored view
        reduced: The result is a reduce output rather than rows
    """
    design_name: str
    view_name: str
    map_source: str
    reduce_source: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    fallback_keys: List[List[Any]] = field(default_factory=list)
    slow: bool = False
    reduced: bool = False

    def per_key(self) -> List['CompiledQuery']:
        """One exact-key query per fallback key, in order."""
        queries = []
        for key in self.fallback_keys:
            params = dict(self.params)
            params["key"] = key
            queries.append(replace(self, params=params, fallback_keys=[]))
        return queries


def view_name(search_fields: Sequence[str], prefix: str = FIND) -> str:
    """
    Name for a view keyed on search_fields.

    >>> view_name(["age", "name"])
    'find_by_age_and_name'
    """
    return f"{prefix}_by_" + "_and_".join(search_fields)


def map_function(entity: EntityType, search_fields: Sequence[str]) -> str:
    """Map function emitting [doc.field, ...] -> doc for one entity type."""
    key = ", ".join(f"doc.{name}" for name in search_fields)
    discriminator = json.dumps(entity.discriminator_value)
    return (
        "function(doc) {\n"
        f"  if(doc.{entity.discriminator_field} == {discriminator}) {{\n"
        f"    emit([{key}], doc);\n"
        "  }\n"
        "}"
    )


def _sorted_conditions(conditions: Dict[str, Any]) -> List[tuple]:
    normalized = [(normalize_field(name), value) for name, value in conditions.items()]
    return sorted(normalized, key=lambda item: item[0])


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


class KeyCompiler:
    """
    Turns QueryOptions into CompiledQuery values for one entity type.

    Pure data transformation: nothing here talks to the store.
    """

    def __init__(self, entity: EntityType, profile: CapabilityProfile):
        self.entity = entity
        self.profile = profile

    # =========================================================================
    # Field selection
    # =========================================================================

    def search_fields(self, options: QueryOptions) -> List[str]:
        """
        Fields that make up the view key.

        use_key wins over the condition fields. With neither, falls back to
        created_at when the entity declares it, else the document id.
        """
        if options.use_key:
            names = [options.use_key] if isinstance(options.use_key, str) else list(options.use_key)
        else:
            names = list(options.conditions.keys())

        fields = sorted({normalize_field(name) for name in names})
        if not fields:
            fields = [self.entity.default_key_field]
        return fields

    # =========================================================================
    # Value encoding
    # =========================================================================

    def search_values(self, options: QueryOptions) -> Dict[str, Any]:
        """
        View parameters selecting the documents matched by the conditions.

        Returns a dict that may contain key, keys or startkey/endkey plus
        the paging parameters. When the store can't take several keys in
        one request the expanded keys are returned under '_fallback_keys'
        for the caller to run one at a time.
        """
        values = [value for _, value in _sorted_conditions(options.conditions)]
        params: Dict[str, Any] = {}

        if any(isinstance(v, Range) for v in values):
            params["startkey"] = [v.start if isinstance(v, Range) else v for v in values]
            params["endkey"] = [v.end if isinstance(v, Range) else v for v in values]
        elif any(is_discrete(v) for v in values):
            keys = self.expand_keys(values)
            if self.profile.multi_key:
                params["keys"] = keys
            else:
                logger.debug(
                    f"Store {self.profile.version} lacks multi-key lookups, "
                    f"querying {len(keys)} keys one at a time"
                )
                params["_fallback_keys"] = keys
        elif values:
            params["key"] = values

        if options.startkey is not None and "startkey" not in params:
            params["startkey"] = options.startkey
        if options.endkey is not None and "endkey" not in params:
            params["endkey"] = options.endkey

        params.update(self.paging_params(options))
        params = {k: v for k, v in params.items() if v is not None}

        if params.get("descending"):
            self._swap_keys(params)
        for name in ("startkey", "endkey"):
            if name in params:
                params[name] = _as_list(params[name])
        return params

    def expand_keys(self, values: List[Any]) -> List[List[Any]]:
        """
        One exact key per combination of discrete-set members.

        [[9, 11], "x"] expands to [[9, "x"], [11, "x"]]. Repeated keys are
        dropped, keeping the first occurrence.
        """
        choices = [discrete_members(v) if is_discrete(v) else [v] for v in values]
        keys: List[List[Any]] = []
        for combination in itertools.product(*choices):
            key = list(combination)
            if key not in keys:
                keys.append(key)
        return keys

    def paging_params(self, options: QueryOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if options.limit is not None:
            params[self.profile.limit_param] = options.limit
        if options.offset:
            params[self.profile.offset_param] = options.offset
        if options.descending:
            params["descending"] = True
        if not options.update_index:
            name, value = self.profile.stale_param
            params[name] = value

        extra = dict(options.extra)
        if "keys" in extra and not self.profile.supports("multi_key"):
            keys = [_as_list(key) for key in extra.pop("keys")]
            logger.debug(
                f"Store {self.profile.version} lacks multi-key lookups, "
                f"querying {len(keys)} explicit keys one at a time"
            )
            params["_fallback_keys"] = keys
        params.update(extra)
        return params

    @staticmethod
    def _swap_keys(params: Dict[str, Any]) -> None:
        # The store walks a descending view before applying the key range,
        # so the bounds have to be given high-to-low.
        startkey = params.pop("startkey", None)
        endkey = params.pop("endkey", None)
        if endkey is not None:
            params["startkey"] = endkey
        if startkey is not None:
            params["endkey"] = startkey

    # =========================================================================
    # Compilation
    # =========================================================================

    def compile_find(self, options: QueryOptions) -> CompiledQuery:
        """
        Compile a finder query.

        On stores with reduce-based counting the find view also carries the
        counting reduce so that finding and counting share one index; the
        reduce step is switched off for finds.
        """
        fields = self.search_fields(options)
        reduce_source = None
        params = self.search_values(options)
        if self.profile.reduce_counting:
            reduce_source = COUNT_REDUCE_FUNCTION
            params["reduce"] = False
        return self._build(FIND, fields, reduce_source, params, options, reduced=False)

    def compile_count(self, options: QueryOptions) -> CompiledQuery:
        """
        Compile a counting query.

        With reduce-based counting this is the find view with the reduce
        step left on. Older stores get a separate map-only count view whose
        rows are counted locally.
        """
        fields = self.search_fields(options)
        params = self.search_values(options)
        if self.profile.reduce_counting:
            if "keys" in params:
                # Multi-key requests on reduce views must be grouped
                params["group"] = True
            return self._build(FIND, fields, COUNT_REDUCE_FUNCTION, params, options, reduced=True)
        return self._build(COUNT, fields, None, params, options, reduced=False)

    def compile_custom(
        self,
        name: str,
        map_source: str,
        reduce_source: Optional[str],
        options: QueryOptions
    ) -> CompiledQuery:
        """Compile a query against a caller-supplied view."""
        params = self.search_values(options)
        return CompiledQuery(
            design_name=self.entity.design_name,
            view_name=name,
            map_source=map_source,
            reduce_source=reduce_source,
            params=params,
            fallback_keys=params.pop("_fallback_keys", []),
            slow=options.slow,
            reduced=bool(reduce_source) and params.get("reduce") is not False,
        )

    def _build(
        self,
        prefix: str,
        fields: List[str],
        reduce_source: Optional[str],
        params: Dict[str, Any],
        options: QueryOptions,
        reduced: bool
    ) -> CompiledQuery:
        fallback_keys = params.pop("_fallback_keys", [])
        compiled = CompiledQuery(
            design_name=self.entity.design_name,
            view_name=view_name(fields, prefix),
            map_source=map_function(self.entity, fields),
            reduce_source=reduce_source,
            params=params,
            fallback_keys=fallback_keys,
            slow=options.slow,
            reduced=reduced,
        )
        logger.debug(f"Compiled {self.entity.name} query to {compiled.view_name} with {params}")
        return compiled
