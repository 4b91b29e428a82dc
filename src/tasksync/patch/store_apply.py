"""
Apply a patch to live state held by a StateStore.

The live state is read into a Snapshot, optionally checked against an
if-match revision, patched in memory, validated, and written back in a
single transaction.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.exceptions import InvariantViolationError, RevisionConflictError
from ..core.state_store import StateStore
from ..snapshot.canonical import compute_snapshot_rev
from .apply import apply_patch
from .models import Patch
from .validate import validate_snapshot

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Report of a patch applied to live state."""
    applied: bool
    dry_run: bool
    base_rev: str
    snapshot_rev: str
    operations: int = 0
    adds: int = 0
    replaces: int = 0
    removes: int = 0
    violations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "applied": self.applied,
            "dry_run": self.dry_run,
            "base_rev": self.base_rev,
            "snapshot_rev": self.snapshot_rev,
            "ops": self.operations,
            "adds": self.adds,
            "replaces": self.replaces,
            "removes": self.removes,
            "violations": list(self.violations),
        }

    def summary(self) -> str:
        """Get a human-readable summary."""
        status = "Dry run (not written)" if self.dry_run else "Applied"
        lines = [
            f"Patch Apply: {status}",
            f"  Operations: {self.operations} "
            f"({self.adds} adds, {self.replaces} replaces, {self.removes} removes)",
            f"  Base rev: {self.base_rev}",
            f"  New rev: {self.snapshot_rev}",
        ]
        if self.violations:
            lines.append(f"  Violations (ignored): {len(self.violations)}")
        return "\n".join(lines)


def apply_patch_to_store(
    store: StateStore,
    patch: Patch,
    if_match: Optional[str] = None,
    strict: bool = False,
    dry_run: bool = False,
) -> ApplyResult:
    """
    Apply a patch to the store's live state.

    Args:
        store: Live state store
        patch: Patch to apply
        if_match: Expected revision of the live state, if any
        strict: Treat invariant violations in the result as fatal
        dry_run: Compute the result without writing it

    Returns:
        ApplyResult with the new revision

    Raises:
        RevisionConflictError: Live revision differs from `if_match`, or changed
            between the read and the write
        PatchStructureError, PatchApplyError: Patch does not apply
        InvariantViolationError: Result violates invariants (strict only)
        StorageError: The transactional write failed
    """
    live = store.read_live_state()
    base_rev = compute_snapshot_rev(live)
    if if_match and if_match != base_rev:
        raise RevisionConflictError(if_match, base_rev)

    result = apply_patch(live, patch)

    violations = validate_snapshot(result)
    if violations:
        if strict:
            raise InvariantViolationError(violations)
        for v in violations:
            logger.warning(f"Invariant violation (lenient): {v}")

    if not dry_run:
        store.write_live_state(result, expected_rev=base_rev)

    new_rev = compute_snapshot_rev(result)
    adds, replaces, removes = patch.count_ops()

    if dry_run:
        logger.info(f"Dry run: patch would move live state {base_rev} -> {new_rev}")
    else:
        logger.info(f"Applied {len(patch)} operations: {base_rev} -> {new_rev}")

    return ApplyResult(
        applied=not dry_run,
        dry_run=dry_run,
        base_rev=base_rev,
        snapshot_rev=new_rev,
        operations=len(patch),
        adds=adds,
        replaces=replaces,
        removes=removes,
        violations=violations,
    )
