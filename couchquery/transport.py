"""
Transport to the document store.

The query layer talks to the store through four operations: get, save,
query_view and query_ad_hoc. CouchTransport implements them over HTTP with
httpx. Every implementation must raise DocumentNotFound for a 404,
DocumentConflict for a 409/412 and TransportError for anything else.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple
import json
import logging
from urllib.parse import quote

import httpx

from .errors import CouchQueryError, DocumentConflict, DocumentNotFound, TransportError

logger = logging.getLogger(__name__)

# View parameters whose values must be JSON encoded in the query string
JSON_PARAMS = {"key", "startkey", "endkey"}

DESIGN_PREFIX = "_design/"


class Transport(ABC):
    """Operations the query layer needs from the store."""

    @abstractmethod
    def server_version(self) -> str:
        """Version string reported by the server."""
        pass

    @abstractmethod
    def get(self, doc_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def save(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Create or update a document; returns the store's response."""
        pass

    @abstractmethod
    def query_view(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Query a stored view at path (relative to the database)."""
        pass

    @abstractmethod
    def query_ad_hoc(
        self,
        path: str,
        map_source: str,
        reduce_source: Optional[str],
        params: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Evaluate a map/reduce pair against every document."""
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def encode_params(params: Dict[str, Any]) -> Tuple[Dict[str, str], Optional[Dict[str, Any]]]:
    """
    Split view parameters into a query string and an optional POST body.

    Keys are JSON encoded, booleans become "true"/"false", and a keys list
    moves into the request body.

    Returns:
        Tuple of (query parameters, body or None)
    """
    query: Dict[str, str] = {}
    body = None
    for name, value in params.items():
        if name == "keys":
            body = {"keys": value}
        elif name in JSON_PARAMS:
            query[name] = json.dumps(value)
        elif isinstance(value, bool):
            query[name] = "true" if value else "false"
        else:
            query[name] = str(value)
    return query, body


class CouchTransport(Transport):
    """
    CouchDB over HTTP.

    Example:
        with CouchTransport("http://localhost:5984", "people") as transport:
            transport.get("5a1278b3c4e")
    """

    def __init__(
        self,
        url: str,
        database: str,
        timeout: float = 30.0,
        auth: Optional[Tuple[str, str]] = None,
        client: Optional[httpx.Client] = None
    ):
        self.url = url.rstrip("/")
        self.database = database
        self._client = client or httpx.Client(base_url=self.url, timeout=timeout, auth=auth)

    def _db_path(self, path: str) -> str:
        return f"/{self.database}/{path}"

    def _doc_path(self, doc_id: str) -> str:
        # Design document ids keep their literal prefix
        if doc_id.startswith(DESIGN_PREFIX):
            return self._db_path(DESIGN_PREFIX + quote(doc_id[len(DESIGN_PREFIX):], safe=""))
        return self._db_path(quote(doc_id, safe=""))

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise DocumentNotFound(f"Couldn't find {path}")
        if response.status_code in (409, 412):
            raise DocumentConflict(f"Document at {path} has been updated whilst loaded")
        if response.status_code >= 400:
            raise TransportError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {path}", status_code=response.status_code,
                                 body=response.text) from e

    def server_version(self) -> str:
        info = self._request("GET", "/")
        return str(info.get("version", ""))

    def get(self, doc_id: str) -> Dict[str, Any]:
        return self._request("GET", self._doc_path(doc_id))

    def save(self, document: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = document.get("_id")
        if doc_id:
            result = self._request("PUT", self._doc_path(doc_id), json=document)
        else:
            result = self._request("POST", f"/{self.database}", json=document)

        if not result.get("ok"):
            logger.error(f"Unexpected response from database - {result}")
            raise CouchQueryError(f"Couldn't understand database response: {result}")

        document["_id"] = result.get("id", doc_id)
        document["_rev"] = result.get("rev")
        return result

    def query_view(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        query, body = encode_params(params)
        if body is not None:
            return self._request("POST", self._db_path(path), params=query, json=body)
        return self._request("GET", self._db_path(path), params=query)

    def query_ad_hoc(
        self,
        path: str,
        map_source: str,
        reduce_source: Optional[str],
        params: Dict[str, Any]
    ) -> Dict[str, Any]:
        query, body = encode_params(params)
        payload: Dict[str, Any] = {"map": map_source}
        if reduce_source:
            payload["reduce"] = reduce_source
        if body is not None:
            payload.update(body)
        return self._request("POST", self._db_path(path), params=query, json=payload)

    def close(self) -> None:
        self._client.close()
