"""
Query engine: the finder API for one entity type.

    engine = database.engine(EntityType("Person", properties=("name", "age")))

    engine.find({"conditions": {"age": Range(20, 30)}, "limit": 10})
    engine.find({"conditions": {"grade": [9, 11, 12]}})
    engine.count({"conditions": {"name": "Alice"}})
    engine.first({"use_key": "created_at"})

Every finder compiles its options to a view, runs it (creating the view on
first use) and materializes the rows.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from .capabilities import CapabilityProfile
from .compiler import CompiledQuery, KeyCompiler
from .design import DesignDocument, ViewDefinition
from .entity import ID_FIELD, EntityType, normalize_field
from .errors import DocumentNotFound
from .executor import QueryExecutor
from .materializer import ResultMaterializer, cap_count
from .options import QueryOptions
from .registry import IndexRegistry
from .transport import Transport

logger = logging.getLogger(__name__)

OptionsLike = Union[QueryOptions, Dict[str, Any], None]


class QueryEngine:
    """
    Finder, counter and custom-view entry points for one entity type.

    Engines are normally obtained from Database.engine(), which keeps one
    per entity type so that the view cache is shared.
    """

    def __init__(
        self,
        entity: EntityType,
        transport: Transport,
        profile: CapabilityProfile,
        registry: Optional[IndexRegistry] = None,
        allow_ad_hoc: bool = True
    ):
        self.entity = entity
        self.transport = transport
        self.profile = profile
        self.registry = registry or IndexRegistry(transport, entity.design_name)
        self.compiler = KeyCompiler(entity, profile)
        self.executor = QueryExecutor(transport, self.registry, profile, allow_ad_hoc=allow_ad_hoc)
        self.materializer = ResultMaterializer(entity)
        self._views: Dict[str, ViewDefinition] = {}
        self._view_defaults: Dict[str, Dict[str, Any]] = {}

    # =========================================================================
    # Finders
    # =========================================================================

    def find(self, options: OptionsLike = None):
        """
        Find documents matching options.

        Returns:
            List of documents, or the raw view response when options.raw
        """
        options = QueryOptions.coerce(options)
        compiled = self.compiler.compile_find(options)
        return self._run(compiled, options)

    def first(self, options: OptionsLike = None):
        """First document by key order, or None."""
        options = QueryOptions.coerce(options).merged(limit=1)
        results = self.find(options)
        return results[0] if results else None

    def last(self, options: OptionsLike = None):
        """Last document by key order, or None."""
        options = QueryOptions.coerce(options).merged(limit=1, descending=True)
        results = self.find(options)
        return results[0] if results else None

    def get(self, doc_id: str, options: OptionsLike = None):
        """
        Load a single document by id.

        Only conditions and readonly are honoured.

        Raises:
            DocumentNotFound: If the document is missing, is of another type
                or doesn't match the conditions
        """
        options = QueryOptions.coerce(options)
        attributes = self.transport.get(doc_id)
        if not self.entity.matches(attributes):
            raise DocumentNotFound(f"Couldn't find {self.entity.name} with id {doc_id}")

        record = self.entity.instantiate(attributes)
        for name, value in options.conditions.items():
            if attributes.get(normalize_field(name)) != value:
                raise DocumentNotFound(f"Couldn't find {self.entity.name} with id {doc_id}")
        if options.readonly:
            record.mark_readonly()
        return record

    def get_many(self, doc_ids: Iterable[str], options: OptionsLike = None) -> List[Any]:
        """
        Load several documents by id, keeping the order of first appearance.

        Raises:
            DocumentNotFound: If no ids were given
        """
        ids = []
        for doc_id in doc_ids:
            if doc_id is not None and doc_id not in ids:
                ids.append(doc_id)
        if not ids:
            raise DocumentNotFound(f"Couldn't find {self.entity.name} without an ID")

        options = QueryOptions.coerce(options)
        if len(ids) == 1:
            return [self.get(ids[0], options)]
        return self.find(options.merged(conditions={ID_FIELD: ids}, use_key=None))

    def exists(self, id_or_conditions: Union[str, Dict[str, Any]]) -> bool:
        """Is there a document with this id, or one matching these conditions?"""
        if isinstance(id_or_conditions, dict):
            return self.first({"conditions": id_or_conditions}) is not None
        try:
            self.get(id_or_conditions)
        except DocumentNotFound:
            return False
        return True

    # =========================================================================
    # Counting
    # =========================================================================

    def count(self, options: OptionsLike = None) -> int:
        """
        Number of documents matching options.

        A limit or offset in options is treated as the window of the owning
        relation: the match count N is reported as min(limit, max(N - offset, 0)).
        Stores with reduce-based counting answer from the find view's reduce;
        older stores have their rows fetched and counted here.
        """
        options = QueryOptions.coerce(options)
        limit, offset = options.limit, options.offset
        unpaged = options.merged(limit=None, offset=None)

        compiled = self.compiler.compile_count(unpaged)
        result = self.executor.execute(compiled)
        if compiled.reduced:
            value = self.materializer.reduced_count(result)
        else:
            value = self.materializer.row_count(result)
        logger.debug(f"Counted {value} {self.entity.name} documents via {compiled.view_name}")
        return cap_count(value, limit, offset)

    # =========================================================================
    # Custom views
    # =========================================================================

    def custom_view(
        self,
        name: str,
        map_source: str,
        reduce_source: Optional[str] = None,
        options: OptionsLike = None
    ):
        """
        Query a view with a caller-supplied map (and reduce) function.

        The view is stored under name in this entity's design document the
        first time it is used. Use options.raw when the view doesn't emit
        whole documents as values.
        """
        options = QueryOptions.coerce(options)
        compiled = self.compiler.compile_custom(name, map_source, reduce_source, options)
        return self._run(compiled, options)

    def define_view(
        self,
        name: str,
        map_source: str,
        reduce_source: Optional[str] = None,
        **defaults
    ) -> ViewDefinition:
        """
        Register a named view on this engine.

        defaults are query options applied whenever the view is run, e.g.
        define_view("latest", map_src, descending=True).
        """
        view = ViewDefinition(name, map_source, reduce_source)
        # Rejects unknown option names up front
        QueryOptions.from_dict(defaults)
        self._views[name] = view
        self._view_defaults[name] = dict(defaults)
        return view

    def view(self, name: str, options: Optional[Dict[str, Any]] = None):
        """Run a view registered with define_view."""
        if name not in self._views:
            raise DocumentNotFound(f"No view named {name} defined for {self.entity.name}")
        view = self._views[name]
        merged = dict(self._view_defaults[name])
        merged.update(options or {})
        return self.custom_view(view.name, view.map_source, view.reduce_source, merged)

    @property
    def views(self) -> Dict[str, ViewDefinition]:
        return dict(self._views)

    def design_document(self) -> Optional[DesignDocument]:
        """The stored design document for this entity type, if any."""
        return self.registry.load()

    # =========================================================================
    # Internals
    # =========================================================================

    def _run(self, compiled: CompiledQuery, options: QueryOptions):
        result = self.executor.execute(compiled)
        return self.materializer.materialize(
            result,
            raw=options.raw,
            readonly=options.readonly,
            order=options.order,
        )
