"""
Configuration management for couchquery.

Handles loading and saving user configuration from:
- XDG config directory: ~/.config/couchquery/config.json
- Fallback: ~/.couchquery/config.json

The environment variables COUCHQUERY_URL and COUCHQUERY_DATABASE override
the connection settings from the file.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .entity import DEFAULT_DISCRIMINATOR_FIELD

logger = logging.getLogger(__name__)


@dataclass
class ConnectionConfig:
    """Store connection settings."""
    url: str = "http://localhost:5984"
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = 30.0
    version: Optional[str] = None  # pin instead of asking the server


@dataclass
class QueryConfig:
    """Query behaviour."""
    discriminator_field: str = DEFAULT_DISCRIMINATOR_FIELD
    allow_ad_hoc: bool = True


@dataclass
class CLIConfig:
    """CLI default options."""
    verbose: bool = False
    color: bool = True


@dataclass
class CouchQueryConfig:
    """Main couchquery configuration."""
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    cli: CLIConfig = field(default_factory=CLIConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "connection": asdict(self.connection),
            "query": asdict(self.query),
            "cli": asdict(self.cli),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CouchQueryConfig':
        """Create from dictionary."""
        return cls(
            connection=ConnectionConfig(**data.get("connection", {})),
            query=QueryConfig(**data.get("query", {})),
            cli=CLIConfig(**data.get("cli", {})),
        )


def get_config_path() -> Path:
    """
    Get configuration file path.

    Follows XDG Base Directory specification:
    1. $XDG_CONFIG_HOME/couchquery/config.json (usually ~/.config/couchquery/config.json)
    2. Fallback: ~/.couchquery/config.json
    """
    xdg_config_home = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "couchquery"
    else:
        config_dir = Path.home() / ".couchquery"

    return config_dir / "config.json"


def apply_environment(config: CouchQueryConfig) -> CouchQueryConfig:
    """Let COUCHQUERY_URL / COUCHQUERY_DATABASE override the file."""
    url = os.environ.get("COUCHQUERY_URL")
    if url:
        config.connection.url = url
    database = os.environ.get("COUCHQUERY_DATABASE")
    if database:
        config.connection.database = database
    return config


def load_config(path: Optional[Path] = None) -> CouchQueryConfig:
    """
    Load configuration from file.

    Args:
        path: Config file to read, defaults to get_config_path()

    Returns:
        CouchQueryConfig with loaded values or defaults
    """
    config_path = path or get_config_path()

    if not config_path.exists():
        return apply_environment(CouchQueryConfig())

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        config = CouchQueryConfig.from_dict(data)
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}. Using defaults")
        config = CouchQueryConfig()

    return apply_environment(config)


def save_config(config: CouchQueryConfig, path: Optional[Path] = None) -> Path:
    """
    Save configuration to file.

    Returns:
        Path the configuration was written to
    """
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info(f"Configuration saved to {config_path}")
    return config_path
