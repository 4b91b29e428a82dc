"""
Canonical JSON serialization and snapshot revision hashing.

Provides stable, platform-independent serialization for content hashing.
The canonicalization ensures:
- Entity fields appear in their declared canonical order
- Collection keys are sorted byte-wise and empty collections are omitted
- Strings are written exactly as held, never normalized
- No insignificant whitespace; non-ASCII is written as UTF-8
- `<`, `>`, `&`, U+2028 and U+2029 are written as \\u escapes
"""

import hashlib
import json
from typing import Any, Tuple, Union

from .models import Snapshot


REV_PREFIX = "sha256:"

Encodable = Union[Snapshot, dict, list]

# Only ever found inside JSON string literals
_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_ESCAPE_TABLE = str.maketrans(_ESCAPES)


def _to_plain(value: Encodable) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _escape(text: str) -> str:
    return text.translate(_ESCAPE_TABLE)


def encode(value: Encodable) -> bytes:
    """
    Encode a snapshot (or plain JSON value) to canonical UTF-8 bytes.

    Dicts keep their insertion order; Snapshot and entry models supply the
    canonical order through `to_dict()`. Plain dicts built elsewhere should
    go through `sort_keys` first if their order is not meaningful.

    Args:
        value: Snapshot, entry, or JSON-compatible value

    Returns:
        Compact canonical JSON bytes, no trailing newline
    """
    text = json.dumps(
        _to_plain(value),
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return _escape(text).encode("utf-8")


def pretty_json(value: Encodable) -> bytes:
    """Same field order and escaping as `encode`, indented two spaces with a trailing newline."""
    text = json.dumps(
        _to_plain(value),
        ensure_ascii=False,
        indent=2,
    )
    return (_escape(text) + "\n").encode("utf-8")


def sort_keys(obj: Any) -> Any:
    """Recursively sort dict keys; used for free-form JSON such as patch values."""
    if isinstance(obj, dict):
        return {k: sort_keys(obj[k]) for k in sorted(obj)}
    if isinstance(obj, list):
        return [sort_keys(item) for item in obj]
    return obj


def compute_revision_hash(data: bytes) -> str:
    """Return "sha256:" followed by the lowercase hex digest of `data`."""
    return REV_PREFIX + hashlib.sha256(data).hexdigest()


def compute_snapshot_rev(snapshot: Snapshot) -> str:
    """
    Compute the revision of a snapshot.

    The hash covers the canonical encoding of the snapshot with
    `meta.snapshot_rev` cleared, so stamping a revision never changes it.
    """
    unstamped = snapshot.clone()
    unstamped.meta.snapshot_rev = ""
    return compute_revision_hash(encode(unstamped))


def stamp_revision(snapshot: Snapshot) -> Tuple[Snapshot, bytes]:
    """
    Two-pass revision stamping.

    The snapshot is encoded with its revision cleared and hashed; a copy is
    then stamped with that hash and re-encoded. Verifiers must recompute by
    clearing the field again, never by hashing the returned bytes.

    Args:
        snapshot: Snapshot to stamp (left unchanged)

    Returns:
        Tuple of (stamped copy, final canonical bytes)
    """
    stamped = snapshot.clone()
    stamped.meta.snapshot_rev = ""
    stamped.meta.snapshot_rev = compute_revision_hash(encode(stamped))
    return stamped, encode(stamped)


def verify_snapshot_rev(snapshot: Snapshot) -> bool:
    """
    Verify that a stamped snapshot's revision matches its content.

    Returns:
        True if stamped and matching, False otherwise
    """
    if not snapshot.meta.snapshot_rev:
        return False
    return compute_snapshot_rev(snapshot) == snapshot.meta.snapshot_rev
