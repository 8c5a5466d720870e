"""
Design documents and the view definitions they hold.

On the wire a design document looks like:

    {
      "_id": "_design/person",
      "_rev": "3-...",
      "views": {
        "find_by_age": {"map": "function(doc) {...}", "reduce": "..."}
      }
    }

Views are only ever added to a design document, never removed.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import logging
import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViewDefinition:
    """A named map function with an optional reduce function."""
    name: str
    map_source: str
    reduce_source: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"map": self.map_source}
        if self.reduce_source:
            data["reduce"] = self.reduce_source
        return data

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'ViewDefinition':
        if not data.get("map"):
            raise ValueError(f"View '{name}' has no map function")
        return cls(name=name, map_source=data["map"], reduce_source=data.get("reduce"))


@dataclass
class DesignDocument:
    """All views stored for one entity type."""
    doc_id: str
    views: Dict[str, ViewDefinition] = field(default_factory=dict)
    rev: Optional[str] = None

    @property
    def name(self) -> str:
        return self.doc_id.split("/", 1)[-1]

    def has_view(self, view_name: str) -> bool:
        return view_name in self.views

    def add_view(self, view: ViewDefinition) -> None:
        self.views[view.name] = view

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "_id": self.doc_id,
            "views": {name: view.to_dict() for name, view in self.views.items()},
        }
        if self.rev:
            data["_rev"] = self.rev
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DesignDocument':
        views = {
            name: ViewDefinition.from_dict(name, body)
            for name, body in (data.get("views") or {}).items()
        }
        return cls(doc_id=data["_id"], views=views, rev=data.get("_rev"))


def export_yaml(design: DesignDocument) -> str:
    """
    Export the views of a design document as YAML.

    Revision information is left out so the file can be imported into any
    database.
    """
    data = {
        "design": design.name,
        "views": {name: view.to_dict() for name, view in sorted(design.views.items())},
    }
    return yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)


def import_yaml(yaml_content: str) -> Dict[str, ViewDefinition]:
    """
    Parse view definitions previously written by export_yaml.

    Returns:
        Mapping of view name to ViewDefinition

    Raises:
        ValueError: If the YAML has no views mapping
    """
    data = yaml.safe_load(yaml_content) or {}
    views = data.get("views")
    if not isinstance(views, dict):
        raise ValueError("View YAML must include a 'views' mapping")
    return {name: ViewDefinition.from_dict(name, body or {}) for name, body in views.items()}


def export_file(design: DesignDocument, path: Path) -> None:
    path.write_text(export_yaml(design))
    logger.info(f"Exported {len(design.views)} views from {design.doc_id} to {path}")


def import_file(path: Path) -> Dict[str, ViewDefinition]:
    return import_yaml(path.read_text())
