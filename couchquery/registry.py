"""
Index registry: makes sure a named view exists before it is queried again.

Views are created lazily. A query is first sent on the assumption that its
view exists; only when the store answers "not found" does the registry load
the entity's design document, add the view and save it. The first query for
a new field combination therefore costs an extra round trip and every later
one costs nothing extra.
"""

import logging
import threading
from typing import Optional, Set

from .design import DesignDocument, ViewDefinition
from .errors import DocumentNotFound
from .transport import Transport

logger = logging.getLogger(__name__)


class IndexRegistry:
    """
    Owns the design document of one entity type.

    known_views holds the views of the design document as last read or
    written. The lock covers only the read-then-write of the design
    document, never the view query itself.
    Two processes adding views at the same time race on the design
    document's revision; the resulting DocumentConflict is propagated.
    """

    def __init__(self, transport: Transport, design_name: str):
        self.transport = transport
        self.design_name = design_name
        self._known_views: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def design_id(self) -> str:
        return f"_design/{self.design_name}"

    @property
    def known_views(self) -> Set[str]:
        with self._lock:
            return set(self._known_views)

    def load(self) -> Optional[DesignDocument]:
        """Fetch the design document, or None when it doesn't exist yet."""
        try:
            return DesignDocument.from_dict(self.transport.get(self.design_id))
        except DocumentNotFound:
            return None

    def ensure(self, view_name: str, map_source: str, reduce_source: Optional[str] = None) -> bool:
        """
        Make sure the design document holds a view called view_name.

        Returns:
            True if the design document was written, False if the view was
            already there
        """
        return self.ensure_view(ViewDefinition(view_name, map_source, reduce_source))

    def ensure_view(self, view: ViewDefinition) -> bool:
        # The stored document is re-read on every call, it may have been
        # deleted since the view was last seen
        with self._lock:
            design = self.load()
            if design is None:
                design = DesignDocument(doc_id=self.design_id)
                logger.info(f"Creating design document {self.design_id}")
            elif design.has_view(view.name):
                self._known_views = set(design.views)
                return False

            design.add_view(view)
            self.transport.save(design.to_dict())
            self._known_views = set(design.views)
            logger.info(f"Added view {view.name} to {self.design_id}")
            return True

    def forget(self) -> None:
        """Drop cached view names, e.g. after the database was recreated."""
        with self._lock:
            self._known_views.clear()
