"""
Live state store implementations.
"""

import logging
from pathlib import Path
from typing import Union

from ..core.state_store import StateStore
from .sqlite_store import SqliteStateStore


logger = logging.getLogger(__name__)


def create_state_store(db_path: Union[str, Path], auto_init: bool = True) -> StateStore:
    """
    Factory function to create the state store for a database path.

    Args:
        db_path: Path to the SQLite database file
        auto_init: Auto-create tables

    Returns:
        StateStore instance
    """
    logger.debug(f"Opening state store at {db_path}")
    return SqliteStateStore(db_path=db_path, auto_init=auto_init)


__all__ = ["SqliteStateStore", "create_state_store"]
