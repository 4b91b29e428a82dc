"""
Unit tests for applying patches to live state.
"""

import pytest

from tasksync.core.exceptions import (
    InvariantViolationError,
    PatchApplyError,
    RevisionConflictError,
    StorageError,
)
from tasksync.patch.diff import diff
from tasksync.patch.models import Patch, PatchOperation
from tasksync.patch.store_apply import apply_patch_to_store
from tasksync.snapshot.canonical import compute_snapshot_rev, encode
from tasksync.state.sqlite_store import SqliteStateStore


@pytest.fixture
def live_store(sqlite_store, populated_snapshot):
    """SQLite store holding the populated snapshot."""
    sqlite_store.write_live_state(populated_snapshot)
    return sqlite_store


def _add_task_patch(factory, base):
    target = base.clone()
    target.tasks[factory.uuid(5)] = factory.task("T-00005", "five")
    return diff(base, target), target


class TestApplyPatchToStore:
    """Tests for apply_patch_to_store()."""

    def test_apply(self, factory, live_store, populated_snapshot):
        patch, target = _add_task_patch(factory, populated_snapshot)

        result = apply_patch_to_store(live_store, patch)

        assert result.applied
        assert result.base_rev == compute_snapshot_rev(populated_snapshot)
        assert result.snapshot_rev == compute_snapshot_rev(target)
        assert (result.adds, result.replaces, result.removes) == (1, 0, 0)
        assert encode(live_store.read_live_state()) == encode(target)

    def test_if_match_accepts_current_rev(self, factory, live_store, populated_snapshot):
        patch, target = _add_task_patch(factory, populated_snapshot)

        result = apply_patch_to_store(live_store, patch, if_match=live_store.current_revision())

        assert result.snapshot_rev == live_store.current_revision()

    def test_if_match_conflict(self, factory, live_store, populated_snapshot):
        """A stale revision is rejected and nothing is written."""
        patch, _ = _add_task_patch(factory, populated_snapshot)
        before = live_store.current_revision()

        with pytest.raises(RevisionConflictError) as exc:
            apply_patch_to_store(live_store, patch, if_match="sha256:stale")

        assert exc.value.expected == "sha256:stale"
        assert exc.value.actual == before
        assert live_store.current_revision() == before

    def test_dry_run_writes_nothing(self, factory, live_store, populated_snapshot):
        patch, target = _add_task_patch(factory, populated_snapshot)
        before = live_store.current_revision()

        result = apply_patch_to_store(live_store, patch, dry_run=True)

        assert not result.applied
        assert result.dry_run
        assert result.snapshot_rev == compute_snapshot_rev(target)
        assert live_store.current_revision() == before
        assert "Dry run" in result.summary()

    def test_apply_error_leaves_state(self, live_store):
        before = live_store.current_revision()
        patch = Patch(operations=[PatchOperation("remove", "/tasks/missing")])

        with pytest.raises(PatchApplyError):
            apply_patch_to_store(live_store, patch)

        assert live_store.current_revision() == before

    def test_strict_rejects_violations(self, factory, live_store):
        value = factory.task("T-00009", "orphan", project_uuid="nowhere").to_dict()
        patch = Patch(operations=[PatchOperation("add", "/tasks/orphan", value)])

        with pytest.raises(InvariantViolationError) as exc:
            apply_patch_to_store(live_store, patch, strict=True)

        assert exc.value.violations == ["task orphan references unknown container nowhere"]

    def test_lenient_dry_run_reports_violations(self, factory, live_store):
        """Lenient mode carries on and reports what it ignored."""
        value = factory.task("T-00001", "dupe").to_dict()
        patch = Patch(operations=[PatchOperation("add", "/tasks/dupe", value)])

        result = apply_patch_to_store(live_store, patch, dry_run=True)

        assert len(result.violations) == 1
        assert "duplicate task ID 'T-00001'" in result.violations[0]
        assert result.to_dict()["violations"] == result.violations

    def test_lenient_write_still_transactional(self, factory, live_store):
        """Violations the database cannot hold still fail atomically."""
        before = live_store.current_revision()
        value = factory.task("T-00009", "orphan", project_uuid="nowhere").to_dict()
        patch = Patch(operations=[PatchOperation("add", "/tasks/orphan", value)])

        with pytest.raises(StorageError):
            apply_patch_to_store(live_store, patch)

        assert live_store.current_revision() == before

    def test_empty_patch(self, live_store):
        before = live_store.current_revision()

        result = apply_patch_to_store(live_store, Patch())

        assert result.base_rev == result.snapshot_rev == before
        assert result.to_dict()["ops"] == 0

    def test_concurrent_commit_is_conflict(self, tmp_path, monkeypatch, populated_snapshot):
        """A commit from another connection after the read is not overwritten."""
        db = tmp_path / "shared.db"
        store = SqliteStateStore(db)
        other = SqliteStateStore(db)
        store.write_live_state(populated_snapshot)
        read_rev = store.current_revision()

        theirs = populated_snapshot.clone()
        task_uuid = sorted(theirs.tasks)[0]
        theirs.tasks[task_uuid].title = "Changed elsewhere"
        ours = populated_snapshot.clone()
        ours.tasks[task_uuid].state = "done"
        patch = diff(populated_snapshot, ours)

        original_read = store.read_live_state
        raced = []

        def read_then_commit_elsewhere(*args, **kwargs):
            snapshot = original_read(*args, **kwargs)
            if not raced:
                raced.append(True)
                other.write_live_state(theirs)
            return snapshot

        monkeypatch.setattr(store, "read_live_state", read_then_commit_elsewhere)

        try:
            with pytest.raises(RevisionConflictError) as exc:
                apply_patch_to_store(store, patch, if_match=read_rev)

            assert exc.value.expected == read_rev
            assert exc.value.actual == compute_snapshot_rev(theirs)
            assert other.read_live_state().tasks[task_uuid].title == "Changed elsewhere"
        finally:
            store.close()
            other.close()
