"""
Export, import and verification of snapshot files against live state.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Union

from ..core.exceptions import InvariantViolationError, MalformedInputError, StorageError
from ..core.state_store import StateStore
from ..patch.validate import validate_snapshot
from .canonical import compute_snapshot_rev, encode, pretty_json, stamp_revision, verify_snapshot_rev
from .file_snapshot import load_snapshot, write_bytes_file
from .models import Snapshot

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current UTC time as an RFC 3339 string with second precision."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class ExportResult:
    """Report of a state export."""
    path: str
    snapshot_rev: str
    counts: Dict[str, int] = field(default_factory=dict)
    bytes_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "out": self.path,
            "snapshot_rev": self.snapshot_rev,
            "counts": dict(self.counts),
            "bytes": self.bytes_written,
        }

    def summary(self) -> str:
        lines = [f"Exported state to {self.path}", f"  Revision: {self.snapshot_rev}"]
        lines += [f"  {name}: {n}" for name, n in self.counts.items() if n]
        return "\n".join(lines)


@dataclass
class ImportResult:
    """Report of a state import."""
    path: str
    snapshot_rev: str
    dry_run: bool
    counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "in": self.path,
            "snapshot_rev": self.snapshot_rev,
            "dry_run": self.dry_run,
            "counts": dict(self.counts),
        }

    def summary(self) -> str:
        status = "Validated (dry run)" if self.dry_run else "Imported"
        lines = [f"{status} {self.path}", f"  Revision: {self.snapshot_rev}"]
        lines += [f"  {name}: {n}" for name, n in self.counts.items() if n]
        return "\n".join(lines)


@dataclass
class VerifyResult:
    """Outcome of checking a snapshot file's canonical form and revision."""
    path: str
    canonical: bool
    round_trip_stable: bool
    snapshot_rev: str
    computed_rev: str

    @property
    def rev_present(self) -> bool:
        return bool(self.snapshot_rev)

    @property
    def rev_valid(self) -> bool:
        return self.rev_present and self.snapshot_rev == self.computed_rev

    @property
    def ok(self) -> bool:
        return self.canonical and self.round_trip_stable and (not self.rev_present or self.rev_valid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "ok": self.ok,
            "canonical": self.canonical,
            "round_trip_stable": self.round_trip_stable,
            "snapshot_rev": self.snapshot_rev,
            "computed_rev": self.computed_rev,
            "rev_valid": self.rev_valid,
        }

    def summary(self) -> str:
        lines = [
            f"Verify {self.path}: {'OK' if self.ok else 'FAILED'}",
            f"  Canonical: {self.canonical}",
            f"  Round-trip stable: {self.round_trip_stable}",
            f"  Embedded rev: {self.snapshot_rev or '(none)'}",
            f"  Computed rev: {self.computed_rev}",
        ]
        return "\n".join(lines)


def export_state(
    store: StateStore,
    output_path: Union[str, Path],
    include_events: bool = False,
    stamp_generated_at: bool = False,
    canonical: bool = True,
) -> ExportResult:
    """
    Export live state to a snapshot file.

    The file carries a two-pass revision. Without events or generated_at
    the revision equals the live revision used for if-match checks.

    Args:
        store: Live state store
        output_path: Destination file
        include_events: Include the event log
        stamp_generated_at: Record the export time in meta
        canonical: Compact canonical bytes when True, indented JSON otherwise

    Returns:
        ExportResult with the revision and per-collection counts
    """
    snapshot = store.read_live_state(include_events=include_events)
    if stamp_generated_at:
        snapshot.meta.generated_at = utc_timestamp()

    stamped, data = stamp_revision(snapshot)
    if not canonical:
        data = pretty_json(stamped)
    write_bytes_file(output_path, data)

    result = ExportResult(
        path=str(output_path),
        snapshot_rev=stamped.meta.snapshot_rev,
        counts=stamped.counts(),
        bytes_written=len(data),
    )
    logger.info(f"Exported state to {output_path} ({result.snapshot_rev})")
    return result


def _live_equivalent(snapshot: Snapshot) -> Snapshot:
    """The snapshot as live state would read back: no events, timestamp or rev."""
    live = snapshot.clone()
    live.events = {}
    live.meta.generated_at = ""
    live.meta.snapshot_rev = ""
    return live


def import_state(
    store: StateStore,
    input_path: Union[str, Path],
    if_empty: bool = False,
    dry_run: bool = False,
) -> ImportResult:
    """
    Replace live state with the contents of a snapshot file.

    Args:
        store: Live state store
        input_path: Snapshot file to import
        if_empty: Refuse to import unless the store holds no entities
        dry_run: Validate only, do not write

    Returns:
        ImportResult with the resulting live revision

    Raises:
        MalformedInputError: The file cannot be read or parsed
        InvariantViolationError: The snapshot violates invariants
        StorageError: The store is not empty (if_empty) or the write failed
    """
    snapshot = load_snapshot(input_path)

    if snapshot.meta.snapshot_rev and not verify_snapshot_rev(snapshot):
        logger.warning(f"{input_path}: embedded snapshot_rev does not match content")

    violations = validate_snapshot(snapshot)
    if violations:
        raise InvariantViolationError(violations)

    if if_empty and not store.is_empty():
        raise StorageError("live state is not empty; refusing import")

    if not dry_run:
        store.write_live_state(snapshot)

    live = _live_equivalent(snapshot)
    result = ImportResult(
        path=str(input_path),
        snapshot_rev=compute_snapshot_rev(live),
        dry_run=dry_run,
        counts=live.counts(),
    )
    if dry_run:
        logger.info(f"Dry run: {input_path} is valid and would be imported")
    else:
        logger.info(f"Imported {input_path} ({result.snapshot_rev})")
    return result


def verify_snapshot_file(path: Union[str, Path]) -> VerifyResult:
    """
    Check that a snapshot file is canonical and its revision matches.

    Raises:
        MalformedInputError: The file cannot be read or parsed
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise MalformedInputError(f"cannot read file: {e}", path=str(path))
    try:
        snapshot = Snapshot.from_dict(json.loads(raw.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedInputError(f"invalid JSON: {e}", path=str(path))
    except MalformedInputError as e:
        raise MalformedInputError(str(e), path=str(path))

    first = encode(snapshot)
    second = encode(Snapshot.from_dict(json.loads(first.decode("utf-8"))))

    result = VerifyResult(
        path=str(path),
        canonical=raw == first,
        round_trip_stable=first == second,
        snapshot_rev=snapshot.meta.snapshot_rev,
        computed_rev=compute_snapshot_rev(snapshot),
    )
    logger.debug(f"Verified {path}: ok={result.ok}")
    return result
