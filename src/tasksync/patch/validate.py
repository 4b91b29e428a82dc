"""
Invariant validation for snapshots and structural validation for patches.

`validate_snapshot` is exhaustive: it reports every violation it finds
rather than stopping at the first one. Whether violations are fatal is
the caller's decision.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from ..core.exceptions import PatchApplyError, PatchStructureError
from ..snapshot.models import PRIMARY_COLLECTIONS, Snapshot
from .apply import apply_patch
from .models import OpType, Patch, VALID_OPS, parse_path

logger = logging.getLogger(__name__)


def _check_actor_ref(violations: List[str], kind: str, uuid: str, actor_uuid: str,
                     role: str, actors: Dict[str, Any]) -> None:
    if actor_uuid not in actors:
        violations.append(f"{kind} {uuid} references unknown actor {actor_uuid} ({role})")


def _check_unique_ids(violations: List[str], kind: str, entries: Dict[str, Any]) -> None:
    seen: Dict[str, str] = {}
    for uuid in sorted(entries):
        friendly_id = entries[uuid].id
        if not friendly_id:
            continue
        if friendly_id in seen:
            violations.append(f"duplicate {kind} ID '{friendly_id}': {seen[friendly_id]} and {uuid}")
        else:
            seen[friendly_id] = uuid


def _check_container_cycles(violations: List[str], snapshot: Snapshot) -> None:
    containers = snapshot.containers
    for start in sorted(containers):
        visited: Set[str] = set()
        current = start
        while current:
            if current in visited:
                violations.append(f"cycle detected in container hierarchy at {start}")
                break
            visited.add(current)
            entry = containers.get(current)
            if entry is None:
                # dangling parent, reported separately
                break
            current = entry.parent_uuid


def validate_snapshot(snapshot: Snapshot) -> List[str]:
    """
    Check a snapshot against the domain invariants.

    Checks:
    - task, comment, container-parent and link references resolve
    - no cycles in the container hierarchy
    - slugs unique per parent container (containers) and per container (tasks)
    - friendly IDs unique per entity type
    - created_by / updated_by / author actor references resolve

    Args:
        snapshot: Snapshot to check (not modified)

    Returns:
        List of violation descriptions; empty means valid
    """
    violations: List[str] = []
    actors = snapshot.actors
    containers = snapshot.containers
    tasks = snapshot.tasks

    if snapshot.meta.schema_version < 1:
        violations.append(f"invalid schema_version: {snapshot.meta.schema_version}")
    if snapshot.meta.machine_interface_version < 1:
        violations.append(
            f"invalid machine_interface_version: {snapshot.meta.machine_interface_version}"
        )

    # containers
    container_slugs: Dict[tuple, str] = {}
    for uuid in sorted(containers):
        c = containers[uuid]
        if c.parent_uuid and c.parent_uuid not in containers:
            violations.append(f"container {uuid} references unknown parent {c.parent_uuid}")
        _check_actor_ref(violations, "container", uuid, c.created_by, "created_by", actors)
        _check_actor_ref(violations, "container", uuid, c.updated_by, "updated_by", actors)
        key = (c.parent_uuid, c.slug)
        if key in container_slugs:
            violations.append(
                f"duplicate container slug '{c.slug}' in same parent: {container_slugs[key]} and {uuid}"
            )
        else:
            container_slugs[key] = uuid
    _check_container_cycles(violations, snapshot)

    # tasks
    task_slugs: Dict[tuple, str] = {}
    for uuid in sorted(tasks):
        t = tasks[uuid]
        if t.project_uuid not in containers:
            violations.append(f"task {uuid} references unknown container {t.project_uuid}")
        _check_actor_ref(violations, "task", uuid, t.created_by, "created_by", actors)
        _check_actor_ref(violations, "task", uuid, t.updated_by, "updated_by", actors)
        key = (t.project_uuid, t.slug)
        if key in task_slugs:
            violations.append(
                f"duplicate task slug '{t.slug}' in container {t.project_uuid}: {task_slugs[key]} and {uuid}"
            )
        else:
            task_slugs[key] = uuid

    # comments
    for uuid in sorted(snapshot.comments):
        cm = snapshot.comments[uuid]
        if cm.task_uuid not in tasks:
            violations.append(f"comment {uuid} references unknown task {cm.task_uuid}")
        _check_actor_ref(violations, "comment", uuid, cm.actor_uuid, "author", actors)
        if cm.deleted_by:
            _check_actor_ref(violations, "comment", uuid, cm.deleted_by, "deleted_by", actors)

    # links
    for uuid in sorted(snapshot.links):
        link = snapshot.links[uuid]
        if link.source_uuid not in tasks:
            violations.append(f"link {uuid} references unknown source task {link.source_uuid}")
        if link.target_uuid not in tasks:
            violations.append(f"link {uuid} references unknown target task {link.target_uuid}")
        _check_actor_ref(violations, "link", uuid, link.created_by, "created_by", actors)

    _check_unique_ids(violations, "actor", actors)
    _check_unique_ids(violations, "container", containers)
    _check_unique_ids(violations, "task", tasks)
    _check_unique_ids(violations, "comment", snapshot.comments)
    _check_unique_ids(violations, "link", snapshot.links)

    if violations:
        logger.debug(f"Snapshot has {len(violations)} invariant violations")
    return violations


def validate_operations(patch: Patch) -> List[str]:
    """
    Structural check of every operation, without touching any snapshot.

    Returns:
        List of problems, each prefixed with the operation index and path
    """
    problems: List[str] = []
    for index, op in enumerate(patch.operations):
        prefix = f"operation {index} ({op.path})"
        if op.op not in VALID_OPS:
            problems.append(f"{prefix}: unknown op '{op.op}'")
            continue
        if op.op != OpType.REMOVE.value and op.value is None:
            problems.append(f"{prefix}: missing value")
        try:
            target = parse_path(op.path)
        except PatchStructureError as e:
            problems.append(f"{prefix}: {e}")
            continue
        if target.collection in ("meta", "events"):
            if op.op != OpType.TEST.value:
                problems.append(f"{prefix}: {target.collection} is not patchable")
        elif target.collection not in PRIMARY_COLLECTIONS:
            problems.append(f"{prefix}: unknown collection '{target.collection}'")
    return problems


@dataclass
class ValidationReport:
    """Result of validating a patch against a base snapshot."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    operations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "operations": self.operations,
        }


def validate_patch(patch: Patch, base: Snapshot) -> ValidationReport:
    """
    Validate a patch against a base snapshot.

    Runs the structural check, applies the patch in memory, then checks
    the result's invariants. Application failures are reported as errors
    rather than raised.

    Args:
        patch: Patch to check
        base: Snapshot the patch was computed against

    Returns:
        ValidationReport with every problem found
    """
    errors = validate_operations(patch)
    if not errors:
        try:
            result = apply_patch(base, patch)
        except (PatchStructureError, PatchApplyError) as e:
            errors.append(str(e))
        else:
            errors.extend(validate_snapshot(result))

    report = ValidationReport(valid=not errors, errors=errors, operations=len(patch))
    logger.debug(f"Patch validation: valid={report.valid}, {len(errors)} errors")
    return report
