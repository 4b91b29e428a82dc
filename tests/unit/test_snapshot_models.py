"""
Unit tests for the snapshot models.

These tests verify canonical field order, empty-field omission and
structural cloning without touching storage.
"""

import pytest

from tasksync.core.exceptions import MalformedInputError
from tasksync.snapshot.models import (
    Collection,
    ContainerEntry,
    EventEntry,
    LinkEntry,
    Snapshot,
    SnapshotMeta,
    TaskEntry,
    entry_from_dict,
    required_fields,
)


class TestEntryToDict:
    """Tests for per-entity canonical field order."""

    def test_task_field_order(self, factory):
        """Task fields come out in the declared order."""
        task = factory.task(labels=["b", "a"], description="Details", due_at="2025-02-01T00:00:00Z")

        assert list(task.to_dict().keys()) == [
            "created_at", "created_by", "description", "due_at", "etag", "id",
            "labels", "priority", "project_uuid", "slug", "state", "title",
            "updated_at", "updated_by",
        ]

    def test_task_labels_sorted(self, factory):
        """Labels are emitted sorted regardless of input order."""
        task = factory.task(labels=["zeta", "alpha", "mid"])
        assert task.to_dict()["labels"] == ["alpha", "mid", "zeta"]
        # the entry itself is untouched
        assert task.labels == ["zeta", "alpha", "mid"]

    def test_optional_fields_omitted(self, factory):
        """Empty optional fields are left out entirely."""
        data = factory.task().to_dict()
        for key in ("labels", "description", "archived_at", "completed_at", "resolution"):
            assert key not in data

    def test_required_fields_emitted_when_empty(self, factory):
        """Required fields appear even when empty."""
        data = factory.task(title="").to_dict()
        assert data["title"] == ""

    def test_container_parent_omitted_for_root(self, factory):
        """Root containers have no parent_uuid key."""
        assert "parent_uuid" not in factory.container().to_dict()
        child = factory.container("P-00002", "child", parent_uuid="p1")
        assert child.to_dict()["parent_uuid"] == "p1"

    def test_link_without_id(self, factory):
        """Links omit an empty friendly ID."""
        data = factory.link("a", "b").to_dict()
        assert list(data.keys()) == ["created_at", "created_by", "link_type", "source_uuid", "target_uuid"]

    def test_event_zero_etag_omitted(self):
        """Events omit etag when it is zero."""
        event = EventEntry(id=7, timestamp="t", resource_type="task", event_type="task.created")
        data = event.to_dict()
        assert "etag" not in data
        assert data["id"] == 7

    def test_meta_order(self):
        """Meta emits optional fields around the version numbers."""
        meta = SnapshotMeta(generated_at="2025-01-01T00:00:00Z", snapshot_rev="sha256:ab")
        assert list(meta.to_dict().keys()) == [
            "generated_at", "machine_interface_version", "schema_version", "snapshot_rev",
        ]


class TestEntryFromDict:
    """Tests for parsing entries and snapshots."""

    def test_round_trip(self, factory):
        """from_dict(to_dict()) reproduces the entry."""
        task = factory.task(labels=["x"], resolution="done", completed_at="2025-01-02T00:00:00Z")
        assert TaskEntry.from_dict(task.to_dict()) == task

    def test_missing_required_field(self, factory):
        """A missing required field is malformed input."""
        data = factory.task().to_dict()
        del data["project_uuid"]

        with pytest.raises(MalformedInputError, match="project_uuid"):
            TaskEntry.from_dict(data)

    def test_wrong_type(self, factory):
        """A field of the wrong JSON type is malformed input."""
        data = factory.container().to_dict()
        data["etag"] = "one"

        with pytest.raises(MalformedInputError, match="etag"):
            ContainerEntry.from_dict(data)

    def test_bool_is_not_an_integer(self, factory):
        """JSON booleans are rejected for integer fields."""
        data = factory.task().to_dict()
        data["priority"] = True

        with pytest.raises(MalformedInputError):
            TaskEntry.from_dict(data)

    @pytest.mark.parametrize("field,value", [
        ("title", "bad \ud800 title"),
        ("labels", ["ok", "\udfff"]),
    ])
    def test_lone_surrogate_rejected(self, factory, field, value):
        """Strings with no UTF-8 encoding are malformed input."""
        data = factory.task().to_dict()
        data[field] = value

        with pytest.raises(MalformedInputError, match=f"field '{field}'.*lone surrogate"):
            TaskEntry.from_dict(data)

    def test_lone_surrogate_key_rejected(self, factory):
        doc = {
            "meta": {"schema_version": 1, "machine_interface_version": 1},
            "tasks": {"\ud800": factory.task().to_dict()},
        }

        with pytest.raises(MalformedInputError, match="tasks key"):
            Snapshot.from_dict(doc)

    def test_entry_from_dict_dispatch(self, factory):
        """entry_from_dict picks the entry type by collection name."""
        link = entry_from_dict("links", factory.link("a", "b").to_dict())
        assert isinstance(link, LinkEntry)

        with pytest.raises(ValueError):
            entry_from_dict("events", {})

    def test_required_fields_lookup(self):
        """Every patchable collection declares its required fields."""
        for name in Collection:
            assert "created_at" in required_fields(name.value)

    def test_snapshot_requires_meta(self):
        """A snapshot document without meta is rejected."""
        with pytest.raises(MalformedInputError, match="meta"):
            Snapshot.from_dict({"tasks": {}})

    @pytest.mark.parametrize("field", ["schema_version", "machine_interface_version"])
    def test_snapshot_rejects_bad_versions(self, field):
        """Meta versions below 1 are rejected."""
        meta = {"schema_version": 1, "machine_interface_version": 1}
        meta[field] = 0

        with pytest.raises(MalformedInputError, match=field):
            Snapshot.from_dict({"meta": meta})

    def test_snapshot_rejects_non_object_collection(self):
        """Collections must be JSON objects."""
        doc = {"meta": {"schema_version": 1, "machine_interface_version": 1}, "tasks": []}

        with pytest.raises(MalformedInputError, match="tasks"):
            Snapshot.from_dict(doc)


class TestSnapshot:
    """Tests for Snapshot container behaviour."""

    def test_clone_is_independent(self, populated_snapshot):
        """Mutating a clone leaves the original untouched."""
        clone = populated_snapshot.clone()
        task_uuid = sorted(clone.tasks)[0]

        clone.tasks[task_uuid].title = "changed"
        clone.tasks[task_uuid].labels.append("new")
        clone.meta.snapshot_rev = "sha256:x"
        del clone.actors[next(iter(clone.actors))]

        original = populated_snapshot.tasks[task_uuid]
        assert original.title == "Write docs"
        assert "new" not in original.labels
        assert populated_snapshot.meta.snapshot_rev == ""
        assert len(populated_snapshot.actors) == 1

    def test_collection_dispatch(self, populated_snapshot):
        """collection() returns the live mapping for each name."""
        assert populated_snapshot.collection("tasks") is populated_snapshot.tasks
        assert populated_snapshot.collection("links") is populated_snapshot.links

        with pytest.raises(ValueError):
            populated_snapshot.collection("meta")

    def test_empty_collections_omitted(self, base_snapshot):
        """Only non-empty collections appear, in the fixed order."""
        assert list(base_snapshot.to_dict().keys()) == ["meta", "actors", "containers"]

    def test_counts(self, populated_snapshot):
        """counts() reports every collection."""
        counts = populated_snapshot.counts()
        assert counts["tasks"] == 2
        assert counts["links"] == 1
        assert counts["events"] == 0
