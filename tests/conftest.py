"""
Shared test fixtures and configuration for pytest.
"""

import logging
import sys
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tasksync.snapshot.models import (  # noqa: E402
    ActorEntry,
    CommentEntry,
    ContainerEntry,
    LinkEntry,
    Snapshot,
    TaskEntry,
)


logger = logging.getLogger(__name__)


ACTOR_UUID = "00000000-0000-4000-8000-0000000000a1"
CONTAINER_UUID = "00000000-0000-4000-8000-0000000000c1"
TIMESTAMP = "2025-01-01T00:00:00Z"


class SnapshotFactory:
    """Builds small, valid snapshots and entries for tests."""

    actor_uuid = ACTOR_UUID
    container_uuid = CONTAINER_UUID
    timestamp = TIMESTAMP

    def actor(self, friendly_id: str = "A-00001", slug: str = "alice", **kwargs) -> ActorEntry:
        fields = dict(
            id=friendly_id,
            slug=slug,
            role="human",
            created_at=TIMESTAMP,
            updated_at=TIMESTAMP,
            display_name="Alice",
        )
        fields.update(kwargs)
        return ActorEntry(**fields)

    def container(self, friendly_id: str = "P-00001", slug: str = "inbox", **kwargs) -> ContainerEntry:
        fields = dict(
            id=friendly_id,
            slug=slug,
            title=slug.title(),
            etag=1,
            created_at=TIMESTAMP,
            updated_at=TIMESTAMP,
            created_by=ACTOR_UUID,
            updated_by=ACTOR_UUID,
        )
        fields.update(kwargs)
        return ContainerEntry(**fields)

    def task(self, friendly_id: str = "T-00001", slug: str = "write-docs", **kwargs) -> TaskEntry:
        fields = dict(
            id=friendly_id,
            slug=slug,
            title=slug.replace("-", " ").capitalize(),
            project_uuid=CONTAINER_UUID,
            state="open",
            priority=3,
            etag=1,
            created_at=TIMESTAMP,
            updated_at=TIMESTAMP,
            created_by=ACTOR_UUID,
            updated_by=ACTOR_UUID,
        )
        fields.update(kwargs)
        return TaskEntry(**fields)

    def comment(self, task_uuid: str, friendly_id: str = "C-00001", **kwargs) -> CommentEntry:
        fields = dict(
            id=friendly_id,
            task_uuid=task_uuid,
            actor_uuid=ACTOR_UUID,
            body="Looks good",
            etag=1,
            created_at=TIMESTAMP,
        )
        fields.update(kwargs)
        return CommentEntry(**fields)

    def link(self, source_uuid: str, target_uuid: str, **kwargs) -> LinkEntry:
        fields = dict(
            source_uuid=source_uuid,
            target_uuid=target_uuid,
            link_type="blocks",
            created_at=TIMESTAMP,
            created_by=ACTOR_UUID,
        )
        fields.update(kwargs)
        return LinkEntry(**fields)

    def base(self) -> Snapshot:
        """One actor and one container."""
        snapshot = Snapshot()
        snapshot.actors[ACTOR_UUID] = self.actor()
        snapshot.containers[CONTAINER_UUID] = self.container()
        return snapshot

    def uuid(self, n: int, kind: str = "t") -> str:
        """Deterministic UUID-shaped key, e.g. uuid(3) -> ...0000000t0003."""
        return f"00000000-0000-4000-8000-{kind * 8}{n:04d}"


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite on disk)")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def factory() -> SnapshotFactory:
    """Fixture providing the snapshot factory."""
    return SnapshotFactory()


@pytest.fixture
def base_snapshot(factory) -> Snapshot:
    """Fixture providing a valid snapshot with one actor and one container."""
    return factory.base()


@pytest.fixture
def populated_snapshot(factory) -> Snapshot:
    """Fixture providing a valid snapshot with every patchable collection filled."""
    snapshot = factory.base()
    t1, t2 = factory.uuid(1), factory.uuid(2)
    snapshot.tasks[t1] = factory.task("T-00001", "write-docs", labels=["docs", "backend"])
    snapshot.tasks[t2] = factory.task("T-00002", "ship-it", state="in_progress")
    snapshot.comments[factory.uuid(1, "m")] = factory.comment(t1)
    snapshot.links[factory.uuid(1, "l")] = factory.link(t2, t1)
    return snapshot


@pytest.fixture
def sqlite_store(tmp_path):
    """Function-scoped SQLite state store in a temporary directory."""
    from tasksync.state.sqlite_store import SqliteStateStore

    store = SqliteStateStore(tmp_path / "state" / "tasksync.db")
    yield store
    store.close()
