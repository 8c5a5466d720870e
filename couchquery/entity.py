"""
Entity types and the documents loaded for them.

The query layer only needs a thin view of the model system: the type name,
the discriminator stored on every document, the declared properties and a
way to turn a JSON document into an object. Applications with a richer
attribute system pass their own factory.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import ReadOnlyDocumentError

ID_FIELD = "_id"
REV_FIELD = "_rev"
CREATED_AT_FIELD = "created_at"
DEFAULT_DISCRIMINATOR_FIELD = "doc_type"

# Friendly names for the store's internal fields
FIELD_ALIASES = {
    "id": ID_FIELD,
    "rev": REV_FIELD,
}


def normalize_field(name: str) -> str:
    """Map 'id' / 'rev' onto the store's '_id' / '_rev'."""
    name = str(name)
    return FIELD_ALIASES.get(name, name)


def underscore(name: str) -> str:
    """
    Convert a CamelCase type name to snake_case.

    >>> underscore("BlogPost")
    'blog_post'
    """
    name = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
    name = re.sub(r'([a-z\d])([A-Z])', r'\1_\2', name)
    return name.replace('-', '_').replace('::', '/').lower()


class Document:
    """
    A document loaded from the store.

    Fields are reachable as items (doc['name']) or attributes (doc.name).
    """

    def __init__(self, attributes: Optional[Dict[str, Any]] = None, entity_type: Optional['EntityType'] = None):
        self._attributes = dict(attributes or {})
        self._entity_type = entity_type
        self._readonly = False

    @property
    def id(self) -> Optional[str]:
        return self._attributes.get(ID_FIELD)

    @property
    def rev(self) -> Optional[str]:
        return self._attributes.get(REV_FIELD)

    @property
    def entity_type(self) -> Optional['EntityType']:
        return self._entity_type

    @property
    def readonly(self) -> bool:
        return self._readonly

    def mark_readonly(self) -> 'Document':
        self._readonly = True
        return self

    def read_attribute(self, name: str, default: Any = None) -> Any:
        return self._attributes.get(normalize_field(name), default)

    get = read_attribute

    def write_attribute(self, name: str, value: Any) -> None:
        if self._readonly:
            raise ReadOnlyDocumentError(f"Document {self.id} is read-only")
        self._attributes[normalize_field(name)] = value

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._attributes)

    def __getitem__(self, name: str) -> Any:
        return self._attributes[normalize_field(name)]

    def __setitem__(self, name: str, value: Any) -> None:
        self.write_attribute(name, value)

    def __contains__(self, name: str) -> bool:
        return normalize_field(name) in self._attributes

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self._attributes[name]
        except KeyError:
            raise AttributeError(name) from None

    def __eq__(self, other) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self._attributes == other._attributes

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self):
        type_name = self._entity_type.name if self._entity_type else 'Document'
        marker = ' readonly' if self._readonly else ''
        return f"<{type_name}(id={self.id!r}){marker}>"


@dataclass
class EntityType:
    """
    Describes one kind of document stored in the database.

    Attributes:
        name: Type name, e.g. "Person"
        properties: Declared property names
        discriminator_field: Document field that stores the type
        discriminator_value: Value of that field (defaults to name)
        default_sort: Field used to order results when a query gives none
        factory: Callable(attributes) -> object, defaults to Document.
            Objects must provide mark_readonly() for read-only queries.
    """
    name: str
    properties: Tuple[str, ...] = ()
    discriminator_field: str = DEFAULT_DISCRIMINATOR_FIELD
    discriminator_value: Optional[str] = None
    default_sort: Optional[str] = None
    factory: Optional[Callable[[Dict[str, Any]], Any]] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        self.properties = tuple(str(p) for p in self.properties)
        if self.discriminator_value is None:
            self.discriminator_value = self.name

    @property
    def design_name(self) -> str:
        """Name of the design document holding this type's views."""
        return underscore(self.name)

    def has_property(self, name: str) -> bool:
        return str(name) in self.properties

    @property
    def default_key_field(self) -> str:
        """Key used when a query names no fields at all."""
        if self.has_property(CREATED_AT_FIELD):
            return CREATED_AT_FIELD
        return ID_FIELD

    def matches(self, attributes: Dict[str, Any]) -> bool:
        """Does a raw document belong to this type?"""
        return attributes.get(self.discriminator_field) == self.discriminator_value

    def instantiate(self, attributes: Dict[str, Any]) -> Any:
        if self.factory is not None:
            return self.factory(attributes)
        return Document(attributes, self)

