"""
couchquery - relational-style finders over CouchDB views.

Main API:
    from couchquery import Database, EntityType, Range

    db = Database.connect("http://localhost:5984", "school")
    students = db.engine(EntityType("Student", properties=("name", "grade", "created_at")))

    # Exact match, range and discrete-set conditions
    students.find({"conditions": {"name": "Alice"}})
    students.find({"conditions": {"grade": Range(9, 11)}, "limit": 20})
    students.find({"conditions": {"grade": [9, 11, 12]}})

    # Ordering, counting and custom views
    students.find({"use_key": "name", "order": "created_at"})
    students.count({"conditions": {"grade": 12}})
    students.custom_view("by_grade", map_source, options={"raw": True})

    db.close()

The view for each combination of condition fields is created in the
entity's design document the first time it is queried.
"""

from .capabilities import CapabilityProfile, StoreVersion
from .database import Database
from .design import DesignDocument, ViewDefinition
from .engine import QueryEngine
from .entity import Document, EntityType
from .errors import (
    CapabilityMismatch,
    CouchQueryError,
    DocumentConflict,
    DocumentNotFound,
    ReadOnlyDocumentError,
    TransportError,
)
from .options import QueryOptions, Range
from .transport import CouchTransport, Transport

__version__ = "0.1.0"
__all__ = [
    "CapabilityMismatch",
    "CapabilityProfile",
    "CouchQueryError",
    "CouchTransport",
    "Database",
    "DesignDocument",
    "Document",
    "DocumentConflict",
    "DocumentNotFound",
    "EntityType",
    "QueryEngine",
    "QueryOptions",
    "Range",
    "ReadOnlyDocumentError",
    "StoreVersion",
    "Transport",
    "TransportError",
    "ViewDefinition",
]
