"""
In-memory patch applier.

Operations run in order against a private clone of the input snapshot, so
a failure at any operation leaves the caller's snapshot untouched.
"""

import logging
from dataclasses import fields
from typing import Any, Dict

from ..core.exceptions import MalformedInputError, PatchApplyError, PatchStructureError, PatchTestFailedError
from ..snapshot.canonical import encode, sort_keys
from ..snapshot.models import PRIMARY_COLLECTIONS, Snapshot, entry_from_dict, required_fields
from .models import OpType, ParsedPath, Patch, PatchOperation, VALID_OPS, parse_path

logger = logging.getLogger(__name__)


def values_equal(a: Any, b: Any) -> bool:
    """JSON content equality, independent of key order."""
    return encode(sort_keys(a)) == encode(sort_keys(b))


def _read_value(snapshot: Snapshot, target: ParsedPath) -> Any:
    """Current JSON value at a path, or None when absent."""
    if target.collection == "meta":
        meta = snapshot.meta.to_dict()
        return meta.get(target.field) if target.field else meta

    if target.collection == "events":
        entries: Dict[str, Any] = snapshot.events
    else:
        entries = snapshot.collection(target.collection)

    entry = entries.get(target.uuid)
    if entry is None:
        return None
    data = entry.to_dict()
    return data.get(target.field) if target.field else data


def _build_entry(collection: str, value: Any):
    try:
        return entry_from_dict(collection, value)
    except MalformedInputError as e:
        raise PatchApplyError(f"invalid value: {e}")


def _apply_field(entries: Dict[str, Any], target: ParsedPath, op: PatchOperation) -> None:
    entry = entries.get(target.uuid)
    if entry is None:
        raise PatchApplyError(f"{target.collection} {target.uuid} not found")

    known = {f.name for f in fields(entry)}
    if target.field not in known:
        raise PatchApplyError(f"unknown field '{target.field}' for {target.collection}")

    data = entry.to_dict()
    if op.op == OpType.REMOVE.value:
        if target.field in required_fields(target.collection):
            raise PatchApplyError(f"cannot remove required field '{target.field}'")
        if target.field not in data:
            raise PatchApplyError(f"field '{target.field}' is not set")
        del data[target.field]
    else:
        data[target.field] = op.value

    entries[target.uuid] = _build_entry(target.collection, data)


def _apply_entity(entries: Dict[str, Any], target: ParsedPath, op: PatchOperation) -> None:
    if op.op == OpType.ADD.value:
        entries[target.uuid] = _build_entry(target.collection, op.value)
        return

    if target.uuid not in entries:
        raise PatchApplyError(f"{target.collection} {target.uuid} not found")

    if op.op == OpType.REMOVE.value:
        del entries[target.uuid]
    else:
        entries[target.uuid] = _build_entry(target.collection, op.value)


def apply_operation(snapshot: Snapshot, op: PatchOperation, index: int = 0) -> None:
    """
    Apply a single operation to `snapshot` in place.

    Raises:
        PatchStructureError: Unknown op, bad path, or a write to meta/events
        PatchApplyError: Target missing, or value cannot become an entry
        PatchTestFailedError: A test found a different value
    """
    if op.op not in VALID_OPS:
        raise PatchStructureError(f"unknown op '{op.op}'", index=index, path=op.path)

    target = parse_path(op.path, index)
    if op.op != OpType.REMOVE.value and op.value is None:
        raise PatchStructureError("missing value", index=index, path=op.path)

    is_test = op.op == OpType.TEST.value
    if target.collection in ("meta", "events"):
        if not is_test:
            raise PatchStructureError(
                f"{target.collection} is not patchable", index=index, path=op.path
            )
    elif target.collection not in PRIMARY_COLLECTIONS:
        raise PatchStructureError(
            f"unknown collection '{target.collection}'", index=index, path=op.path
        )

    if is_test:
        current = _read_value(snapshot, target)
        if current is None:
            raise PatchTestFailedError(
                "test target not found", index=index, op=op.op, path=op.path
            )
        if not values_equal(current, op.value):
            raise PatchTestFailedError(
                "test failed: value mismatch", index=index, op=op.op, path=op.path
            )
        return

    entries = snapshot.collection(target.collection)
    try:
        if target.field:
            _apply_field(entries, target, op)
        else:
            _apply_entity(entries, target, op)
    except PatchApplyError as e:
        raise PatchApplyError(str(e), index=index, op=op.op, path=op.path)


def apply_patch(snapshot: Snapshot, patch: Patch) -> Snapshot:
    """
    Apply a patch and return a new snapshot.

    The input snapshot is never mutated; all work happens on a clone.

    Args:
        snapshot: Base snapshot
        patch: Operations to apply, in order

    Returns:
        New, independent Snapshot

    Raises:
        PatchStructureError, PatchApplyError, PatchTestFailedError:
            on the first failing operation
    """
    result = snapshot.clone()
    for index, op in enumerate(patch.operations):
        apply_operation(result, op, index)
        logger.debug(f"Applied operation {index}: {op.op} {op.path}")
    return result
