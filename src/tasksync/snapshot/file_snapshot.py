"""
File-based snapshot storage.

Snapshots are stored as a single JSON document, either compact canonical
bytes (the form that is hashed) or the indented form for human review.
Both forms share the canonical field order.
"""

import json
import logging
from pathlib import Path
from typing import Any, Union

from ..core.exceptions import MalformedInputError
from .canonical import encode, pretty_json
from .models import Snapshot

logger = logging.getLogger(__name__)


def read_json_file(path: Union[str, Path]) -> Any:
    """
    Read and parse a JSON document.

    Raises:
        MalformedInputError: If the file is missing, unreadable or not JSON
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise MalformedInputError("file not found", path=str(path))
    except json.JSONDecodeError as e:
        raise MalformedInputError(f"invalid JSON: {e}", path=str(path))
    except (OSError, UnicodeDecodeError) as e:
        raise MalformedInputError(f"cannot read file: {e}", path=str(path))


def write_bytes_file(path: Union[str, Path], data: bytes) -> None:
    """Write bytes, creating parent directories as needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def load_snapshot(path: Union[str, Path]) -> Snapshot:
    """
    Load a snapshot from a JSON file.

    Args:
        path: Snapshot file path

    Returns:
        Parsed Snapshot

    Raises:
        MalformedInputError: If the file cannot be read or has the wrong shape
    """
    data = read_json_file(path)
    try:
        snapshot = Snapshot.from_dict(data)
    except MalformedInputError as e:
        raise MalformedInputError(str(e), path=str(path))
    logger.debug(f"Loaded snapshot from {path}: {snapshot.counts()}")
    return snapshot


def save_snapshot(snapshot: Snapshot, path: Union[str, Path], canonical: bool = True) -> None:
    """
    Save a snapshot to a JSON file.

    Args:
        snapshot: Snapshot to write
        path: Destination path
        canonical: Write compact canonical bytes when True, indented JSON otherwise
    """
    data = encode(snapshot) if canonical else pretty_json(snapshot)
    write_bytes_file(path, data)
    logger.debug(f"Saved snapshot to {path} ({len(data)} bytes)")
