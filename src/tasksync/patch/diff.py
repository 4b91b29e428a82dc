"""
Diff engine: computes the patch that transforms one snapshot into another.

Entities are compared whole. Any field change yields a single `replace`
of the entire entry at /<collection>/<uuid>. `meta` and `events` are
never diffed.
"""

import logging
from typing import Any, Dict

from ..snapshot.canonical import encode
from ..snapshot.models import PRIMARY_COLLECTIONS, Snapshot
from .models import OpType, Patch, make_path

logger = logging.getLogger(__name__)


def entries_equal(a: Any, b: Any) -> bool:
    """Content equality: two entries are equal iff their canonical bytes match."""
    return encode(a) == encode(b)


def _diff_collection(patch: Patch, name: str, base: Dict[str, Any], target: Dict[str, Any]) -> None:
    for key in sorted(set(base) | set(target)):
        in_base = key in base
        in_target = key in target
        path = make_path(name, key)
        if in_target and not in_base:
            patch.append(OpType.ADD.value, path, target[key].to_dict())
        elif in_base and not in_target:
            patch.append(OpType.REMOVE.value, path)
        elif not entries_equal(base[key], target[key]):
            patch.append(OpType.REPLACE.value, path, target[key].to_dict())


def diff(base: Snapshot, target: Snapshot) -> Patch:
    """
    Compute a patch transforming `base` into `target`.

    Operations are grouped by collection in the order actors, containers,
    tasks, comments, links, and sorted by UUID within each collection.

    Args:
        base: Starting snapshot (not modified)
        target: Desired snapshot (not modified)

    Returns:
        Patch with add/remove/replace operations; empty when equal
    """
    patch = Patch()
    for name in PRIMARY_COLLECTIONS:
        _diff_collection(patch, name, base.collection(name), target.collection(name))

    adds, replaces, removes = patch.count_ops()
    logger.debug(f"Computed diff: {adds} adds, {replaces} replaces, {removes} removes")
    return patch
