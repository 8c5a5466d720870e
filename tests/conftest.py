"""
Shared fixtures: an in-memory stand-in for CouchDB.

InMemoryCouch implements the Transport contract closely enough to exercise
the query layer end to end. It understands the map functions generated by
the compiler (a discriminator test plus emit([doc.a, doc.b], doc)) and the
counting reduce, and supports key, keys, startkey/endkey, descending,
limit/count, skip, reduce and group.
"""

import copy
import json
import re
from typing import Any, Dict, List, Optional

import pytest

from couchquery.database import Database
from couchquery.entity import EntityType
from couchquery.errors import DocumentConflict, DocumentNotFound
from couchquery.transport import Transport

_DISCRIMINATOR = re.compile(r'doc\.(\w+) == ("[^"]*")')
_EMIT = re.compile(r'emit\(\[(.*?)\]')


def collate(value: Any):
    """Sort key approximating CouchDB's JSON collation."""
    if value is None:
        return (0,)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    if isinstance(value, (list, tuple)):
        return (4, tuple(collate(v) for v in value))
    return (5, json.dumps(value, sort_keys=True))


class InMemoryCouch(Transport):
    """Dictionary-backed document store speaking the Transport contract."""

    def __init__(self, version: str = "0.9.0"):
        self.version = version
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.saves: List[Dict[str, Any]] = []
        self.gets: List[str] = []
        self.view_queries: List[tuple] = []
        self.ad_hoc_queries: List[tuple] = []
        self._next_id = 0

    # -- seeding ---------------------------------------------------------------

    def add(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(doc)
        if "_id" not in doc:
            self._next_id += 1
            doc["_id"] = f"doc{self._next_id}"
        doc["_rev"] = "1-seed"
        self.documents[doc["_id"]] = doc
        return doc

    # -- Transport -------------------------------------------------------------

    def server_version(self) -> str:
        return self.version

    def get(self, doc_id: str) -> Dict[str, Any]:
        self.gets.append(doc_id)
        if doc_id not in self.documents:
            raise DocumentNotFound(f"Couldn't find {doc_id}")
        return copy.deepcopy(self.documents[doc_id])

    def save(self, document: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = document["_id"]
        existing = self.documents.get(doc_id)
        if existing is not None and existing.get("_rev") != document.get("_rev"):
            raise DocumentConflict(f"Document {doc_id} has been updated")

        generation = int(existing["_rev"].split("-")[0]) + 1 if existing else 1
        rev = f"{generation}-mem"
        stored = copy.deepcopy(document)
        stored["_rev"] = rev
        self.documents[doc_id] = stored
        self.saves.append(copy.deepcopy(stored))
        document["_rev"] = rev
        return {"ok": True, "id": doc_id, "rev": rev}

    def query_view(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self.view_queries.append((path, copy.deepcopy(params)))
        parts = path.split("/")
        if parts[0] == "_design":
            design, view = parts[1], parts[3]
        else:
            design, view = parts[1], parts[2]

        design_doc = self.documents.get(f"_design/{design}")
        if design_doc is None or view not in design_doc.get("views", {}):
            raise DocumentNotFound(f"missing_named_view {path}")
        body = design_doc["views"][view]
        return self.evaluate(body["map"], body.get("reduce"), params)

    def query_ad_hoc(
        self,
        path: str,
        map_source: str,
        reduce_source: Optional[str],
        params: Dict[str, Any]
    ) -> Dict[str, Any]:
        self.ad_hoc_queries.append((path, copy.deepcopy(params)))
        return self.evaluate(map_source, reduce_source, params)

    # -- view evaluation -------------------------------------------------------

    def _emit_rows(self, map_source: str) -> List[Dict[str, Any]]:
        field, value = _DISCRIMINATOR.search(map_source).groups()
        value = json.loads(value)
        names = [name.strip()[len("doc."):] for name in _EMIT.search(map_source).group(1).split(",")]

        rows = []
        for doc_id, doc in self.documents.items():
            if doc_id.startswith("_design/") or doc.get(field) != value:
                continue
            key = [doc.get(name) for name in names]
            rows.append({"id": doc_id, "key": key, "value": copy.deepcopy(doc)})
        rows.sort(key=lambda row: (collate(row["key"]), row["id"]))
        return rows

    def evaluate(self, map_source: str, reduce_source: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        rows = emitted = self._emit_rows(map_source)
        total = len(rows)
        descending = params.get("descending", False)

        if "keys" in params:
            selected = []
            for key in params["keys"]:
                selected.extend(row for row in rows if row["key"] == key)
            rows = selected
        else:
            if descending:
                rows = list(reversed(rows))
            if "key" in params:
                rows = [row for row in rows if row["key"] == params["key"]]
            if "startkey" in params:
                start = collate(params["startkey"])
                if descending:
                    rows = [row for row in rows if collate(row["key"]) <= start]
                else:
                    rows = [row for row in rows if collate(row["key"]) >= start]
            if "endkey" in params:
                end = collate(params["endkey"])
                if descending:
                    rows = [row for row in rows if collate(row["key"]) >= end]
                else:
                    rows = [row for row in rows if collate(row["key"]) <= end]

        if reduce_source and params.get("reduce", True) is not False:
            if params.get("group") and "keys" in params:
                reduced = []
                for key in params["keys"]:
                    matched = [row for row in emitted if row["key"] == key]
                    if matched:
                        reduced.append({"key": key, "value": len(matched)})
                return {"rows": reduced}
            return {"rows": [{"key": None, "value": len(rows)}] if rows else []}

        skip = int(params.get("skip", 0))
        limit = params.get("limit", params.get("count"))
        rows = rows[skip:] if limit is None else rows[skip:skip + int(limit)]
        return {"total_rows": total, "offset": skip, "rows": rows}


PEOPLE = [
    {"_id": "p1", "name": "Alice", "age": 25, "grade": 9, "created_at": "2009/01/03"},
    {"_id": "p2", "name": "Bob", "age": 31, "grade": 11, "created_at": "2009/01/01"},
    {"_id": "p3", "name": "Carol", "age": 20, "grade": 12, "created_at": "2009/01/02"},
    {"_id": "p4", "name": "Dave", "age": 30, "grade": 10, "created_at": "2009/01/04"},
]


def seed(couch: InMemoryCouch) -> InMemoryCouch:
    for person in PEOPLE:
        couch.add(dict(person, doc_type="Person"))
    couch.add({"_id": "pet1", "doc_type": "Pet", "name": "Rex"})
    return couch


@pytest.fixture
def person():
    """Entity type with a created_at property."""
    return EntityType("Person", properties=("name", "age", "grade", "created_at"))


@pytest.fixture
def couch():
    """Seeded store reporting a current version."""
    return seed(InMemoryCouch("0.9.0"))


@pytest.fixture
def legacy_couch():
    """Seeded store reporting 0.8 (no reduce counting, no multi-key)."""
    return seed(InMemoryCouch("0.8.1"))


@pytest.fixture
def db(couch):
    return Database.open(couch)


@pytest.fixture
def legacy_db(legacy_couch):
    return Database.open(legacy_couch)


@pytest.fixture
def people(db, person):
    return db.engine(person)


@pytest.fixture
def legacy_people(legacy_db, person):
    return legacy_db.engine(person)
