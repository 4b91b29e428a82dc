#!/usr/bin/env python3
"""
CLI for snapshot export/import and patch create/validate/apply/rebase/summarize.

Usage:
    tasksync state export [--out state.json] [--events] [--generated-at] [--pretty]
    tasksync state import --in state.json [--if-empty] [--dry-run]
    tasksync state verify state.json
    tasksync patch create --from base.json --to target.json --out change.patch
    tasksync patch validate --patch change.patch --base base.json [--strict]
    tasksync patch apply --patch change.patch [--if-match sha256:...] [--dry-run] [--strict]
    tasksync patch rebase --patch change.patch --old-base a.json --new-base b.json --out rebased.patch
    tasksync patch summarize --patch change.patch [--base base.json] [--format text|markdown|json]

Exit codes: 0 success, 1 error, 4 conflict or strict failure.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .config.config_loader import TaskSyncConfig
from .core.exceptions import (
    ConfigError,
    FriendlyIDError,
    InvariantViolationError,
    MalformedInputError,
    PatchTestFailedError,
    RevisionConflictError,
    TaskSyncError,
)
from .patch.diff import diff
from .patch.models import Patch
from .patch.rebase import rebase
from .patch.store_apply import apply_patch_to_store
from .patch.summarize import summarize_patch
from .patch.validate import validate_patch
from .snapshot.file_snapshot import load_snapshot
from .snapshot.state_io import export_state, import_state, verify_snapshot_file
from .state import create_state_store


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 4


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    log_level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def exit_code_for(error: TaskSyncError) -> int:
    """Conflicts and strict-mode failures exit 4; everything else exits 1."""
    if isinstance(error, (RevisionConflictError, PatchTestFailedError,
                          InvariantViolationError, FriendlyIDError)):
        return EXIT_CONFLICT
    return EXIT_ERROR


def _emit(args, payload: Dict[str, Any], text: str) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        print(text)


def _open_store(args, config: TaskSyncConfig):
    return create_state_store(Path(args.db) if args.db else config.db_path)


def cmd_state_export(args, config: TaskSyncConfig) -> int:
    """Export live state to a snapshot file."""
    snapshot_config = config.get_snapshot_config()
    out = Path(args.out) if args.out else config.snapshot_path
    include_events = args.events or snapshot_config.get("include_events", False)
    stamp = args.generated_at or snapshot_config.get("stamp_generated_at", False)
    canonical = not args.pretty and snapshot_config.get("canonical", True)

    store = _open_store(args, config)
    try:
        result = export_state(
            store,
            out,
            include_events=include_events,
            stamp_generated_at=stamp,
            canonical=canonical,
        )
    finally:
        store.close()

    _emit(args, result.to_dict(), result.summary())
    return EXIT_OK


def cmd_state_import(args, config: TaskSyncConfig) -> int:
    """Import a snapshot file into live state."""
    source = Path(args.input) if args.input else config.snapshot_path

    store = _open_store(args, config)
    try:
        result = import_state(store, source, if_empty=args.if_empty, dry_run=args.dry_run)
    finally:
        store.close()

    _emit(args, result.to_dict(), result.summary())
    return EXIT_OK


def cmd_state_verify(args, config: TaskSyncConfig) -> int:
    """Verify a snapshot file's canonical form and embedded revision."""
    path = Path(args.path) if args.path else config.snapshot_path
    result = verify_snapshot_file(path)
    _emit(args, result.to_dict(), result.summary())
    return EXIT_OK if result.ok else EXIT_ERROR


def cmd_patch_create(args, config: TaskSyncConfig) -> int:
    """Create a patch from two snapshot files."""
    if not args.allow_noncanonical:
        for path in (args.base, args.target):
            if not verify_snapshot_file(path).canonical:
                raise MalformedInputError(
                    "snapshot is not canonical (use --allow-noncanonical to skip this check)",
                    path=path,
                )

    base = load_snapshot(args.base)
    target = load_snapshot(args.target)
    patch = diff(base, target)
    patch.save(args.out)

    adds, replaces, removes = patch.count_ops()
    payload = {"out": args.out, "ops": len(patch), "adds": adds, "replaces": replaces, "removes": removes}
    text = (
        f"Created patch: {args.out}\n"
        f"  operations: {len(patch)} (add: {adds}, replace: {replaces}, remove: {removes})"
    )
    _emit(args, payload, text)
    return EXIT_OK


def cmd_patch_validate(args, config: TaskSyncConfig) -> int:
    """Validate a patch against a base snapshot."""
    patch = Patch.load(args.patch)
    base = load_snapshot(args.base)
    report = validate_patch(patch, base)

    if report.valid:
        text = "Patch is valid"
    else:
        text = "\n".join(["Patch validation failed:"] + [f"  - {e}" for e in report.errors])
    _emit(args, report.to_dict(), text)

    strict = args.strict or config.get("patch.strict", False)
    if not report.valid and strict:
        return EXIT_CONFLICT
    return EXIT_OK


def cmd_patch_apply(args, config: TaskSyncConfig) -> int:
    """Apply a patch to live state."""
    patch = Patch.load(args.patch)
    strict = args.strict or config.get("patch.strict", False)

    store = _open_store(args, config)
    try:
        result = apply_patch_to_store(
            store,
            patch,
            if_match=args.if_match,
            strict=strict,
            dry_run=args.dry_run,
        )
    finally:
        store.close()

    _emit(args, result.to_dict(), result.summary())
    return EXIT_OK


def cmd_patch_rebase(args, config: TaskSyncConfig) -> int:
    """Rebase a patch from one baseline onto another."""
    patch = Patch.load(args.patch)
    old_base = load_snapshot(args.old_base)
    new_base = load_snapshot(args.new_base)
    strict_ids = args.strict_ids or config.get("patch.strict_ids", False)

    outcome = rebase(patch, old_base, new_base, strict_ids=strict_ids)
    outcome.patch.save(args.out)

    adds, replaces, removes = outcome.patch.count_ops()
    payload: Dict[str, Any] = {
        "out": args.out,
        "ops": len(outcome.patch),
        "adds": adds,
        "replaces": replaces,
        "removes": removes,
    }
    if outcome.rewrites:
        payload["code_rewrites"] = outcome.rewrites_to_dict()

    lines = [
        f"Rebased patch: {args.out}",
        f"  operations: {len(outcome.patch)} (add: {adds}, replace: {replaces}, remove: {removes})",
    ]
    for name, rewrites in outcome.rewrites.items():
        for r in rewrites:
            lines.append(f"  {name}: {r.from_id} -> {r.to_id} ({r.uuid})")
    _emit(args, payload, "\n".join(lines))
    return EXIT_OK


def cmd_patch_summarize(args, config: TaskSyncConfig) -> int:
    """Summarize a patch."""
    patch = Patch.load(args.patch)
    base = load_snapshot(args.base) if args.base else None
    fmt = args.format or config.get("patch.summary_format", "text")
    if fmt not in ("text", "markdown", "json"):
        raise ConfigError(f"unknown summary format: {fmt}")

    summary = summarize_patch(patch, base=base, fmt=fmt)
    if args.json:
        print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(summary.text)
    return EXIT_OK


COMMANDS = {
    ("state", "export"): cmd_state_export,
    ("state", "import"): cmd_state_import,
    ("state", "verify"): cmd_state_verify,
    ("patch", "create"): cmd_patch_create,
    ("patch", "validate"): cmd_patch_validate,
    ("patch", "apply"): cmd_patch_apply,
    ("patch", "rebase"): cmd_patch_rebase,
    ("patch", "summarize"): cmd_patch_summarize,
}


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="tasksync",
        description="Canonical snapshots and patches for task tracker state",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--db", help="Path to SQLite database (overrides config)")

    groups = parser.add_subparsers(dest="group", help="Command group")

    # state commands
    state_parser = groups.add_parser("state", help="Export, import or verify state snapshots")
    state_cmds = state_parser.add_subparsers(dest="command", help="State command")

    export_parser = state_cmds.add_parser("export", help="Export live state to a snapshot file")
    export_parser.add_argument("--out", help="Output snapshot path (default: snapshot.path)")
    export_parser.add_argument("--events", action="store_true", help="Include the event log")
    export_parser.add_argument("--generated-at", action="store_true", help="Stamp meta.generated_at")
    export_parser.add_argument("--pretty", action="store_true", help="Write indented, non-canonical JSON")
    export_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    import_parser = state_cmds.add_parser("import", help="Import a snapshot file into live state")
    import_parser.add_argument("--in", dest="input", help="Input snapshot path (default: snapshot.path)")
    import_parser.add_argument("--if-empty", action="store_true", help="Only import into an empty database")
    import_parser.add_argument("--dry-run", action="store_true", help="Validate without writing")
    import_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    verify_parser = state_cmds.add_parser("verify", help="Verify canonical form and snapshot_rev")
    verify_parser.add_argument("path", nargs="?", help="Snapshot path (default: snapshot.path)")
    verify_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    # patch commands
    patch_parser = groups.add_parser("patch", help="Create, validate, apply, rebase or summarize patches")
    patch_cmds = patch_parser.add_subparsers(dest="command", help="Patch command")

    create_parser = patch_cmds.add_parser("create", help="Create a patch between two snapshots")
    create_parser.add_argument("--from", dest="base", required=True, help="Base snapshot file")
    create_parser.add_argument("--to", dest="target", required=True, help="Target snapshot file")
    create_parser.add_argument("--out", required=True, help="Output patch file")
    create_parser.add_argument("--allow-noncanonical", action="store_true", help="Skip canonical form check")
    create_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    validate_parser = patch_cmds.add_parser("validate", help="Validate a patch against a base snapshot")
    validate_parser.add_argument("--patch", required=True, help="Patch file")
    validate_parser.add_argument("--base", required=True, help="Base snapshot file")
    validate_parser.add_argument("--strict", action="store_true", help="Exit 4 on any violation")
    validate_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    apply_parser = patch_cmds.add_parser("apply", help="Apply a patch to live state")
    apply_parser.add_argument("--patch", required=True, help="Patch file")
    apply_parser.add_argument("--if-match", help="Require the live snapshot_rev to match")
    apply_parser.add_argument("--dry-run", action="store_true", help="Validate without writing")
    apply_parser.add_argument("--strict", action="store_true", help="Fail on invariant violations")
    apply_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    rebase_parser = patch_cmds.add_parser("rebase", help="Rebase a patch onto a new base snapshot")
    rebase_parser.add_argument("--patch", required=True, help="Patch file to rebase")
    rebase_parser.add_argument("--old-base", required=True, help="Original base snapshot")
    rebase_parser.add_argument("--new-base", required=True, help="New base snapshot")
    rebase_parser.add_argument("--out", required=True, help="Output rebased patch file")
    rebase_parser.add_argument("--strict-ids", action="store_true", help="Fail on malformed friendly IDs")
    rebase_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    summarize_parser = patch_cmds.add_parser("summarize", help="Summarize a patch")
    summarize_parser.add_argument("--patch", required=True, help="Patch file")
    summarize_parser.add_argument("--base", help="Base snapshot for IDs and titles")
    summarize_parser.add_argument("--format", choices=["text", "markdown", "json"], help="Output format")
    summarize_parser.add_argument("--json", action="store_true", help="Output structured summary as JSON")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = parse_args(argv)

    setup_logging(verbose=args.verbose)

    handler = COMMANDS.get((args.group, getattr(args, "command", None)))
    if handler is None:
        print("No command specified. Use --help for usage.", file=sys.stderr)
        return EXIT_ERROR

    try:
        config = TaskSyncConfig(args.config)
        return handler(args, config)
    except TaskSyncError as e:
        logger.error(str(e))
        return exit_code_for(e)


if __name__ == "__main__":
    sys.exit(main())
