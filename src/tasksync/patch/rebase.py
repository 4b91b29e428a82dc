"""
Rebase engine: re-targets a patch from one baseline onto another.

Friendly IDs are minted from per-type counters, so two baselines extended
independently can hand the same ID to different entities. Rebasing
replays the patch onto its original baseline, renumbers every newly
created entity whose friendly ID collides with the new baseline, and
re-diffs against the new baseline.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.exceptions import FriendlyIDError
from ..snapshot.models import Collection, Snapshot
from .apply import apply_patch
from .diff import diff
from .models import Patch

logger = logging.getLogger(__name__)


FRIENDLY_ID_PATTERN = re.compile(r"^([A-Z]+)-(\d+)$")


@dataclass
class IDRewrite:
    """A friendly ID reassignment for one entity."""
    uuid: str
    from_id: str
    to_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"uuid": self.uuid, "from": self.from_id, "to": self.to_id}


@dataclass
class RebaseOutcome:
    """Rebased patch plus every friendly ID that had to change, per collection."""
    patch: Patch
    rewrites: Dict[str, List[IDRewrite]] = field(default_factory=dict)

    def rewrite_count(self) -> int:
        return sum(len(r) for r in self.rewrites.values())

    def rewrites_to_dict(self) -> Dict[str, List[Dict[str, str]]]:
        return {name: [r.to_dict() for r in items] for name, items in self.rewrites.items()}


def next_friendly_id(friendly_id: str, taken: Dict[str, str], strict: bool = False) -> Optional[str]:
    """
    Find the next free friendly ID for a colliding one.

    `T-00007` becomes one more than the highest `T-` number in `taken`
    (or in the ID itself), keeping the original zero-padding width.
    IDs that do not match `<Letters>-<digits>` get `-2`, `-3`, ...
    appended instead, unless `strict` is set.

    Args:
        friendly_id: The colliding ID
        taken: Friendly IDs already in use
        strict: Return None for malformed IDs instead of suffixing

    Returns:
        A friendly ID not present in `taken`, or None (strict, malformed)
    """
    match = FRIENDLY_ID_PATTERN.match(friendly_id)
    if match is None:
        if strict:
            return None
        suffix = 2
        candidate = f"{friendly_id}-{suffix}"
        while candidate in taken:
            suffix += 1
            candidate = f"{friendly_id}-{suffix}"
        return candidate

    prefix, digits = match.group(1), match.group(2)
    width = len(digits)
    highest = int(digits)
    for existing in taken:
        other = FRIENDLY_ID_PATTERN.match(existing)
        if other is not None and other.group(1) == prefix:
            highest = max(highest, int(other.group(2)))

    number = highest + 1
    candidate = f"{prefix}-{number:0{width}d}"
    while candidate in taken:
        number += 1
        candidate = f"{prefix}-{number:0{width}d}"
    return candidate


def _renumber_collection(name: str, branch: Dict[str, Any], old_base: Dict[str, Any],
                         new_base: Dict[str, Any], strict: bool) -> List[IDRewrite]:
    """Renumber colliding friendly IDs of entities the branch created."""
    new_uuids = sorted(set(branch) - set(old_base))
    if not new_uuids:
        return []

    # friendly ID -> owning uuid
    taken: Dict[str, str] = {e.id: uuid for uuid, e in new_base.items() if e.id}

    rewrites: List[IDRewrite] = []
    for uuid in new_uuids:
        entry = branch[uuid]
        if not entry.id:
            continue
        owner = taken.get(entry.id)
        if owner is not None and owner != uuid:
            new_id = next_friendly_id(entry.id, taken, strict)
            if new_id is None:
                raise FriendlyIDError(name, uuid, entry.id)
            if not FRIENDLY_ID_PATTERN.match(entry.id):
                logger.warning(f"{name} {uuid}: malformed friendly ID {entry.id}, using {new_id}")
            rewrites.append(IDRewrite(uuid=uuid, from_id=entry.id, to_id=new_id))
            entry.id = new_id
        taken[entry.id] = uuid
    return rewrites


def rebase(patch: Patch, old_base: Snapshot, new_base: Snapshot, strict_ids: bool = False) -> RebaseOutcome:
    """
    Rebase a patch computed against `old_base` onto `new_base`.

    Steps:
    1. Replay the patch onto `old_base` to reconstruct the branch state
    2. Renumber colliding friendly IDs of branch-created actors,
       containers, tasks and comments (UUIDs in sorted order)
    3. Diff `new_base` against the renumbered branch state

    Args:
        patch: Patch computed as diff(old_base, branch)
        old_base: Baseline the patch was computed against
        new_base: Baseline to re-target onto
        strict_ids: Fail on malformed friendly IDs instead of suffixing

    Returns:
        RebaseOutcome with the rebased patch and ID reassignments

    Raises:
        PatchApplyError: If the patch does not apply cleanly to `old_base`
        FriendlyIDError: Malformed colliding ID in strict mode
    """
    branch = apply_patch(old_base, patch)

    rewrites: Dict[str, List[IDRewrite]] = {}
    actors = _renumber_collection(
        Collection.ACTORS.value, branch.actors, old_base.actors, new_base.actors, strict_ids
    )
    if actors:
        rewrites[Collection.ACTORS.value] = actors

    containers = _renumber_collection(
        Collection.CONTAINERS.value, branch.containers, old_base.containers, new_base.containers, strict_ids
    )
    if containers:
        rewrites[Collection.CONTAINERS.value] = containers

    tasks = _renumber_collection(
        Collection.TASKS.value, branch.tasks, old_base.tasks, new_base.tasks, strict_ids
    )
    if tasks:
        rewrites[Collection.TASKS.value] = tasks

    comments = _renumber_collection(
        Collection.COMMENTS.value, branch.comments, old_base.comments, new_base.comments, strict_ids
    )
    if comments:
        rewrites[Collection.COMMENTS.value] = comments

    outcome = RebaseOutcome(patch=diff(new_base, branch), rewrites=rewrites)
    logger.info(
        f"Rebased patch: {len(outcome.patch)} operations, {outcome.rewrite_count()} ID rewrites"
    )
    return outcome
