"""
Database handle.

Opens the transport, resolves the server's capability profile once and
hands out one QueryEngine per entity type.

    with Database.connect("http://localhost:5984", "people") as db:
        people = db.engine(EntityType("Person", properties=("name", "created_at")))
        people.find({"conditions": {"name": "Alice"}})
"""

import logging
import threading
from typing import Dict, Optional, Tuple

from .capabilities import CapabilityProfile
from .config import CouchQueryConfig
from .engine import QueryEngine
from .entity import EntityType
from .transport import CouchTransport, Transport

logger = logging.getLogger(__name__)


class Database:
    """A store connection shared by the engines of every entity type."""

    def __init__(self, transport: Transport, profile: CapabilityProfile, allow_ad_hoc: bool = True):
        self.transport = transport
        self.profile = profile
        self.allow_ad_hoc = allow_ad_hoc
        self._engines: Dict[str, QueryEngine] = {}
        self._lock = threading.Lock()

    @classmethod
    def open(
        cls,
        transport: Transport,
        version: Optional[str] = None,
        allow_ad_hoc: bool = True
    ) -> 'Database':
        """
        Wrap an existing transport.

        Args:
            transport: Store transport
            version: Pin the store version instead of asking the server
            allow_ad_hoc: Permit slow ad-hoc queries
        """
        if version is None:
            version = transport.server_version()
            logger.debug(f"Server reports version {version}")
        profile = CapabilityProfile.from_version(version)
        logger.info(f"Connected to store version {profile.version}")
        return cls(transport, profile, allow_ad_hoc=allow_ad_hoc)

    @classmethod
    def connect(
        cls,
        url: str,
        database: str,
        version: Optional[str] = None,
        timeout: float = 30.0,
        auth: Optional[Tuple[str, str]] = None,
        allow_ad_hoc: bool = True
    ) -> 'Database':
        """Open an HTTP connection to a CouchDB database."""
        transport = CouchTransport(url, database, timeout=timeout, auth=auth)
        return cls.open(transport, version=version, allow_ad_hoc=allow_ad_hoc)

    @classmethod
    def from_config(cls, config: CouchQueryConfig) -> 'Database':
        conn = config.connection
        if not conn.database:
            raise ValueError("No database configured")
        auth = (conn.username, conn.password or "") if conn.username else None
        return cls.connect(
            conn.url,
            conn.database,
            version=conn.version,
            timeout=conn.timeout,
            auth=auth,
            allow_ad_hoc=config.query.allow_ad_hoc,
        )

    def engine(self, entity: EntityType) -> QueryEngine:
        """The query engine for an entity type, created on first request."""
        with self._lock:
            engine = self._engines.get(entity.name)
            if engine is None:
                engine = QueryEngine(entity, self.transport, self.profile, allow_ad_hoc=self.allow_ad_hoc)
                self._engines[entity.name] = engine
            return engine

    def close(self) -> None:
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
