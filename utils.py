"""
Filesystem helpers for the ledger's data directory, database URL and log file.

Relative paths in the configuration are taken relative to the project
root, so the CLI behaves the same from any working directory.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_DATA_DIR = "data"
DEFAULT_DB_FILENAME = "ledger.db"
CONNECTION_ENV_VAR = "DB_CONNECTION_STRING"


def get_project_root() -> Path:
    return PROJECT_ROOT


def _under_root(path_value: Union[str, Path]) -> Path:
    path = Path(path_value)
    return path if path.is_absolute() else PROJECT_ROOT / path


def _database_settings(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return (config or {}).get("database") or {}


def get_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Configured data directory as an absolute path; it may not exist yet."""
    return _under_root(_database_settings(config).get("data_dir", DEFAULT_DATA_DIR))


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Create the data directory if needed.

    Raises:
        OSError: If the directory cannot be created
    """
    data_dir = get_data_dir(config)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error(f"Failed to create data directory {data_dir}: {exc}")
        raise
    return data_dir


def _prepare_sqlite_file(connection_string: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    try:
        url = make_url(connection_string)
    except ArgumentError:
        logger.debug(f"Not a SQLAlchemy URL, leaving as is: {connection_string}")
        return
    if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
        return
    _under_root(url.database).parent.mkdir(parents=True, exist_ok=True)


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Database URL to open.

    The ``DB_CONNECTION_STRING`` environment variable wins over
    ``database.connection_string``; without either, a SQLite file named by
    ``database.path`` inside the data directory is used.
    """
    settings = _database_settings(config)
    connection_string = os.environ.get(CONNECTION_ENV_VAR) or settings.get("connection_string")
    if not connection_string:
        db_path = Path(settings.get("path", DEFAULT_DB_FILENAME))
        if not db_path.is_absolute():
            db_path = ensure_data_dir(config) / db_path
        connection_string = f"sqlite:///{db_path.as_posix()}"

    _prepare_sqlite_file(connection_string)
    return connection_string


def resolve_log_path(log_path: str) -> Path:
    """Absolute log file path with its directory created."""
    resolved = _under_root(log_path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved
