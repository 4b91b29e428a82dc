"""
Snapshot module: the in-memory state model and its canonical form.

This module provides:
- Snapshot and entry models with canonical field order
- Canonical encoding and sha256 revisions (two-pass stamping)
- Snapshot file load/save

Export/import against live state lives in `tasksync.snapshot.state_io`.
"""

from .models import (
    Snapshot,
    SnapshotMeta,
    ActorEntry,
    ContainerEntry,
    TaskEntry,
    CommentEntry,
    LinkEntry,
    EventEntry,
    Collection,
    entry_from_dict,
)
from .canonical import encode, pretty_json, compute_revision_hash, compute_snapshot_rev, stamp_revision
from .file_snapshot import load_snapshot, save_snapshot

__all__ = [
    "Snapshot",
    "SnapshotMeta",
    "ActorEntry",
    "ContainerEntry",
    "TaskEntry",
    "CommentEntry",
    "LinkEntry",
    "EventEntry",
    "Collection",
    "entry_from_dict",
    "encode",
    "pretty_json",
    "compute_revision_hash",
    "compute_snapshot_rev",
    "stamp_revision",
    "load_snapshot",
    "save_snapshot",
]
