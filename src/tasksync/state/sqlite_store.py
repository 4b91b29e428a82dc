"""
SQLite-based live state store.

Holds the tracker's actors, containers, tasks, comments and links plus an
append-only event log. Snapshots are read from every row (archived and
soft-deleted rows included) and written back in a single transaction.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..core.exceptions import RevisionConflictError, StorageError, TaskSyncError
from ..core.state_store import StateStore
from ..snapshot.models import (
    ActorEntry,
    CommentEntry,
    ContainerEntry,
    EventEntry,
    LinkEntry,
    Snapshot,
    TaskEntry,
)


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS actors (
    uuid TEXT PRIMARY KEY,
    id TEXT NOT NULL,
    slug TEXT NOT NULL,
    display_name TEXT,
    role TEXT NOT NULL,
    meta TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS containers (
    uuid TEXT PRIMARY KEY,
    id TEXT NOT NULL,
    slug TEXT NOT NULL,
    title TEXT,
    parent_uuid TEXT REFERENCES containers(uuid) DEFERRABLE INITIALLY DEFERRED,
    etag INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    created_by TEXT NOT NULL REFERENCES actors(uuid) DEFERRABLE INITIALLY DEFERRED,
    updated_by TEXT NOT NULL REFERENCES actors(uuid) DEFERRABLE INITIALLY DEFERRED,
    archived_at TEXT
);

CREATE TABLE IF NOT EXISTS tasks (
    uuid TEXT PRIMARY KEY,
    id TEXT NOT NULL,
    slug TEXT NOT NULL,
    title TEXT NOT NULL,
    project_uuid TEXT NOT NULL REFERENCES containers(uuid) DEFERRABLE INITIALLY DEFERRED,
    state TEXT NOT NULL,
    priority INTEGER NOT NULL DEFAULT 3,
    requested_by_project_id TEXT,
    assigned_project_id TEXT,
    acknowledged_at TEXT,
    resolution TEXT,
    start_at TEXT,
    due_at TEXT,
    labels TEXT,
    description TEXT,
    etag INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT,
    archived_at TEXT,
    created_by TEXT NOT NULL REFERENCES actors(uuid) DEFERRABLE INITIALLY DEFERRED,
    updated_by TEXT NOT NULL REFERENCES actors(uuid) DEFERRABLE INITIALLY DEFERRED
);

CREATE TABLE IF NOT EXISTS comments (
    uuid TEXT PRIMARY KEY,
    id TEXT NOT NULL,
    task_uuid TEXT NOT NULL REFERENCES tasks(uuid) DEFERRABLE INITIALLY DEFERRED,
    actor_uuid TEXT NOT NULL REFERENCES actors(uuid) DEFERRABLE INITIALLY DEFERRED,
    body TEXT NOT NULL,
    meta TEXT,
    etag INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    deleted_at TEXT,
    deleted_by TEXT REFERENCES actors(uuid) DEFERRABLE INITIALLY DEFERRED
);

CREATE TABLE IF NOT EXISTS links (
    uuid TEXT PRIMARY KEY,
    id TEXT,
    source_uuid TEXT NOT NULL REFERENCES tasks(uuid) DEFERRABLE INITIALLY DEFERRED,
    target_uuid TEXT NOT NULL REFERENCES tasks(uuid) DEFERRABLE INITIALLY DEFERRED,
    link_type TEXT NOT NULL,
    created_at TEXT NOT NULL,
    created_by TEXT NOT NULL REFERENCES actors(uuid) DEFERRABLE INITIALLY DEFERRED
);

CREATE TABLE IF NOT EXISTS event_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    actor_uuid TEXT,
    resource_type TEXT NOT NULL,
    resource_uuid TEXT,
    event_type TEXT NOT NULL,
    etag INTEGER,
    payload TEXT
);

CREATE INDEX IF NOT EXISTS ix_tasks_project ON tasks (project_uuid);
CREATE INDEX IF NOT EXISTS ix_comments_task ON comments (task_uuid);
"""

ENTITY_TABLES = ["links", "comments", "tasks", "containers", "actors"]


def _opt(value: str) -> Optional[str]:
    """Empty optional strings are stored as NULL."""
    return value or None


def _text(value: Optional[str]) -> str:
    return value or ""


def _container_insert_order(containers: Dict[str, ContainerEntry]) -> List[str]:
    """
    Order container UUIDs so parents come before children.

    Containers whose parent chain never reaches a root (cycles, dangling
    parents) are appended at the end; deferred foreign keys decide whether
    the transaction can commit.
    """
    ordered: List[str] = []
    placed = set()
    remaining = sorted(containers)
    while remaining:
        next_round = []
        for uuid in remaining:
            parent = containers[uuid].parent_uuid
            if not parent or parent in placed:
                ordered.append(uuid)
                placed.add(uuid)
            else:
                next_round.append(uuid)
        if len(next_round) == len(remaining):
            ordered.extend(next_round)
            break
        remaining = next_round
    return ordered


class SqliteStateStore(StateStore):
    """
    SQLite implementation of the live state store.

    Uses explicit BEGIN/COMMIT on an autocommit connection so a snapshot
    write is one transaction, including deferred foreign-key checks.
    """

    def __init__(self, db_path: Union[str, Path], auto_init: bool = True):
        """
        Initialize the SQLite state store.

        Args:
            db_path: Path to the SQLite database file (":memory:" supported)
            auto_init: Whether to create tables automatically
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"cannot open database {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        logger.debug(f"Connected to SQLite state store: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self.conn.executescript(SCHEMA)
        logger.debug("Initialized state store schema")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_live_state(self, include_events: bool = False) -> Snapshot:
        snapshot = Snapshot()
        try:
            for row in self.conn.execute("SELECT * FROM actors"):
                snapshot.actors[row["uuid"]] = ActorEntry(
                    id=row["id"],
                    slug=row["slug"],
                    role=row["role"],
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                    display_name=_text(row["display_name"]),
                    meta=_text(row["meta"]),
                )

            for row in self.conn.execute("SELECT * FROM containers"):
                snapshot.containers[row["uuid"]] = ContainerEntry(
                    id=row["id"],
                    slug=row["slug"],
                    etag=row["etag"],
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                    created_by=row["created_by"],
                    updated_by=row["updated_by"],
                    title=_text(row["title"]),
                    parent_uuid=_text(row["parent_uuid"]),
                    archived_at=_text(row["archived_at"]),
                )

            for row in self.conn.execute("SELECT * FROM tasks"):
                snapshot.tasks[row["uuid"]] = self._row_to_task(row)

            for row in self.conn.execute("SELECT * FROM comments"):
                snapshot.comments[row["uuid"]] = CommentEntry(
                    id=row["id"],
                    task_uuid=row["task_uuid"],
                    actor_uuid=row["actor_uuid"],
                    body=row["body"],
                    etag=row["etag"],
                    created_at=row["created_at"],
                    meta=_text(row["meta"]),
                    updated_at=_text(row["updated_at"]),
                    deleted_at=_text(row["deleted_at"]),
                    deleted_by=_text(row["deleted_by"]),
                )

            for row in self.conn.execute("SELECT * FROM links"):
                snapshot.links[row["uuid"]] = LinkEntry(
                    source_uuid=row["source_uuid"],
                    target_uuid=row["target_uuid"],
                    link_type=row["link_type"],
                    created_at=row["created_at"],
                    created_by=row["created_by"],
                    id=_text(row["id"]),
                )

            if include_events:
                for row in self.conn.execute("SELECT * FROM event_log ORDER BY id"):
                    snapshot.events[str(row["id"])] = EventEntry(
                        id=row["id"],
                        timestamp=row["timestamp"],
                        resource_type=row["resource_type"],
                        event_type=row["event_type"],
                        actor_uuid=_text(row["actor_uuid"]),
                        resource_uuid=_text(row["resource_uuid"]),
                        etag=row["etag"] or 0,
                        payload=_text(row["payload"]),
                    )
        except sqlite3.Error as e:
            raise StorageError(f"failed to read live state: {e}") from e

        logger.debug(f"Read live state: {snapshot.counts()}")
        return snapshot

    def _row_to_task(self, row: sqlite3.Row) -> TaskEntry:
        """Convert a database row to a TaskEntry."""
        labels = json.loads(row["labels"]) if row["labels"] else []
        return TaskEntry(
            id=row["id"],
            slug=row["slug"],
            title=row["title"],
            project_uuid=row["project_uuid"],
            state=row["state"],
            priority=row["priority"],
            etag=row["etag"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
            requested_by_project_id=_text(row["requested_by_project_id"]),
            assigned_project_id=_text(row["assigned_project_id"]),
            acknowledged_at=_text(row["acknowledged_at"]),
            resolution=_text(row["resolution"]),
            start_at=_text(row["start_at"]),
            due_at=_text(row["due_at"]),
            labels=labels,
            description=_text(row["description"]),
            completed_at=_text(row["completed_at"]),
            archived_at=_text(row["archived_at"]),
        )

    def is_empty(self) -> bool:
        try:
            for table in ENTITY_TABLES:
                row = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                if row[0]:
                    return False
        except sqlite3.Error as e:
            raise StorageError(f"failed to inspect live state: {e}") from e
        return True

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write_live_state(self, snapshot: Snapshot, expected_rev: Optional[str] = None) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            if expected_rev is not None:
                # compared under the write lock
                actual = self.current_revision()
                if actual != expected_rev:
                    raise RevisionConflictError(expected_rev, actual)

            for table in ENTITY_TABLES:
                cursor.execute(f"DELETE FROM {table}")

            self._insert_actors(cursor, snapshot)
            self._insert_containers(cursor, snapshot)
            self._insert_tasks(cursor, snapshot)
            self._insert_comments(cursor, snapshot)
            self._insert_links(cursor, snapshot)

            cursor.execute("COMMIT")
        except sqlite3.Error as e:
            if self.conn.in_transaction:
                cursor.execute("ROLLBACK")
            logger.error(f"Failed to write live state, rolled back: {e}")
            raise StorageError(f"failed to write live state: {e}") from e
        except TaskSyncError:
            if self.conn.in_transaction:
                cursor.execute("ROLLBACK")
            raise

        logger.info(f"Wrote live state: {snapshot.counts()}")

    def _insert_actors(self, cursor: sqlite3.Cursor, snapshot: Snapshot) -> None:
        for uuid in sorted(snapshot.actors):
            a = snapshot.actors[uuid]
            cursor.execute("""
                INSERT INTO actors (uuid, id, slug, display_name, role, meta, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (uuid, a.id, a.slug, _opt(a.display_name), a.role, _opt(a.meta),
                  a.created_at, a.updated_at))

    def _insert_containers(self, cursor: sqlite3.Cursor, snapshot: Snapshot) -> None:
        for uuid in _container_insert_order(snapshot.containers):
            c = snapshot.containers[uuid]
            cursor.execute("""
                INSERT INTO containers (
                    uuid, id, slug, title, parent_uuid, etag,
                    created_at, updated_at, created_by, updated_by, archived_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (uuid, c.id, c.slug, _opt(c.title), _opt(c.parent_uuid), c.etag,
                  c.created_at, c.updated_at, c.created_by, c.updated_by, _opt(c.archived_at)))

    def _insert_tasks(self, cursor: sqlite3.Cursor, snapshot: Snapshot) -> None:
        for uuid in sorted(snapshot.tasks):
            t = snapshot.tasks[uuid]
            labels = json.dumps(sorted(t.labels), ensure_ascii=False) if t.labels else None
            cursor.execute("""
                INSERT INTO tasks (
                    uuid, id, slug, title, project_uuid, state, priority,
                    requested_by_project_id, assigned_project_id, acknowledged_at,
                    resolution, start_at, due_at, labels, description, etag,
                    created_at, updated_at, completed_at, archived_at,
                    created_by, updated_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                uuid, t.id, t.slug, t.title, t.project_uuid, t.state, t.priority,
                _opt(t.requested_by_project_id), _opt(t.assigned_project_id),
                _opt(t.acknowledged_at), _opt(t.resolution), _opt(t.start_at),
                _opt(t.due_at), labels, _opt(t.description), t.etag,
                t.created_at, t.updated_at, _opt(t.completed_at), _opt(t.archived_at),
                t.created_by, t.updated_by,
            ))

    def _insert_comments(self, cursor: sqlite3.Cursor, snapshot: Snapshot) -> None:
        for uuid in sorted(snapshot.comments):
            c = snapshot.comments[uuid]
            cursor.execute("""
                INSERT INTO comments (
                    uuid, id, task_uuid, actor_uuid, body, meta, etag,
                    created_at, updated_at, deleted_at, deleted_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (uuid, c.id, c.task_uuid, c.actor_uuid, c.body, _opt(c.meta), c.etag,
                  c.created_at, _opt(c.updated_at), _opt(c.deleted_at), _opt(c.deleted_by)))

    def _insert_links(self, cursor: sqlite3.Cursor, snapshot: Snapshot) -> None:
        for uuid in sorted(snapshot.links):
            link = snapshot.links[uuid]
            cursor.execute("""
                INSERT INTO links (uuid, id, source_uuid, target_uuid, link_type, created_at, created_by)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (uuid, _opt(link.id), link.source_uuid, link.target_uuid, link.link_type,
                  link.created_at, link.created_by))

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed SQLite state store connection")
