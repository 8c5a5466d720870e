"""Exceptions raised by couchquery."""

from typing import Optional


class CouchQueryError(Exception):
    """Base error for everything raised by this package."""
    pass


class DocumentNotFound(CouchQueryError):
    """Requested document, design document or view does not exist."""
    pass


class DocumentConflict(CouchQueryError):
    """A save was rejected because the stored revision has moved on."""
    pass


class CapabilityMismatch(CouchQueryError):
    """The connected store version cannot perform the requested feature."""

    def __init__(self, feature: str, version: str):
        self.feature = feature
        self.version = version
        super().__init__(f"Store version {version} does not support {feature}")


class TransportError(CouchQueryError):
    """Any other failure reported by the store or the network."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ReadOnlyDocumentError(CouchQueryError):
    """Attempt to modify a document that was loaded read-only."""
    pass
