"""
Core data models for canonical state snapshots.

A Snapshot is the complete exportable state of a task tracker at one
instant: metadata plus keyed collections of actors, containers, tasks,
comments, links and (optionally) events. Collections map a durable UUID
to an entry record.

Each entry's `to_dict()` declares the canonical field order for that
entity type. Changing an order, or the set of omitted-when-empty fields,
changes every content hash and therefore requires a schema_version bump.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Tuple

from ..core.exceptions import MalformedInputError


SCHEMA_VERSION = 1
MACHINE_INTERFACE_VERSION = 1


class Collection(str, Enum):
    """Patchable entity collections, in canonical emission order."""
    ACTORS = "actors"
    CONTAINERS = "containers"
    TASKS = "tasks"
    COMMENTS = "comments"
    LINKS = "links"


PRIMARY_COLLECTIONS = [c.value for c in Collection]

# meta and events are regenerated by the producer and never patched
ALL_SECTIONS = ["meta"] + PRIMARY_COLLECTIONS + ["events"]


def _check_text(value: str, where: str) -> str:
    # JSON allows \ud800-style escapes that have no UTF-8 encoding
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise MalformedInputError(f"{where}: string is not valid Unicode (lone surrogate)")
    return value


def _get_str(data: Dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedInputError(f"{where}: field '{key}' must be a string, got {type(value).__name__}")
    return _check_text(value, f"{where}: field '{key}'")


def _get_int(data: Dict[str, Any], key: str, where: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        # JSON numbers like 3.0 are accepted when integral
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise MalformedInputError(f"{where}: field '{key}' must be an integer, got {value!r}")
    return value


def _get_str_list(data: Dict[str, Any], key: str, where: str) -> List[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise MalformedInputError(f"{where}: field '{key}' must be a list of strings")
    return [_check_text(v, f"{where}: field '{key}'") for v in value]


def _require_mapping(data: Any, where: str, required: Tuple[str, ...] = ()) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedInputError(f"{where}: expected an object, got {type(data).__name__}")
    for key in required:
        if key not in data:
            raise MalformedInputError(f"{where}: missing required field '{key}'")
    return data


# Fields that are always emitted; entries lacking them are rejected
ACTOR_REQUIRED = ("created_at", "id", "role", "slug", "updated_at")
CONTAINER_REQUIRED = ("created_at", "created_by", "etag", "id", "slug", "updated_at", "updated_by")
TASK_REQUIRED = (
    "created_at", "created_by", "etag", "id", "priority", "project_uuid",
    "slug", "state", "title", "updated_at", "updated_by",
)
COMMENT_REQUIRED = ("actor_uuid", "body", "created_at", "etag", "id", "task_uuid")
LINK_REQUIRED = ("created_at", "created_by", "link_type", "source_uuid", "target_uuid")
EVENT_REQUIRED = ("event_type", "id", "resource_type", "timestamp")


@dataclass
class SnapshotMeta:
    """
    Snapshot metadata.

    Attributes:
        schema_version: Version of the snapshot format (>= 1)
        machine_interface_version: Version of the machine interface (>= 1)
        generated_at: Optional ISO-8601 generation timestamp
        snapshot_rev: Optional content-hash revision ("sha256:<hex>")
    """
    schema_version: int = SCHEMA_VERSION
    machine_interface_version: int = MACHINE_INTERFACE_VERSION
    generated_at: str = ""
    snapshot_rev: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.generated_at:
            result["generated_at"] = self.generated_at
        result["machine_interface_version"] = self.machine_interface_version
        result["schema_version"] = self.schema_version
        if self.snapshot_rev:
            result["snapshot_rev"] = self.snapshot_rev
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "SnapshotMeta":
        data = _require_mapping(data, "meta")
        meta = cls(
            schema_version=_get_int(data, "schema_version", "meta"),
            machine_interface_version=_get_int(data, "machine_interface_version", "meta"),
            generated_at=_get_str(data, "generated_at", "meta"),
            snapshot_rev=_get_str(data, "snapshot_rev", "meta"),
        )
        if meta.schema_version < 1:
            raise MalformedInputError(f"invalid schema_version: {meta.schema_version}")
        if meta.machine_interface_version < 1:
            raise MalformedInputError(
                f"invalid machine_interface_version: {meta.machine_interface_version}"
            )
        return meta


@dataclass
class ActorEntry:
    """An actor (human, agent or system) keyed by UUID under "actors"."""
    id: str
    slug: str
    role: str
    created_at: str
    updated_at: str
    display_name: str = ""
    meta: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"created_at": self.created_at}
        if self.display_name:
            result["display_name"] = self.display_name
        result["id"] = self.id
        if self.meta:
            result["meta"] = self.meta
        result["role"] = self.role
        result["slug"] = self.slug
        result["updated_at"] = self.updated_at
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "ActorEntry":
        where = "actor"
        data = _require_mapping(data, where, ACTOR_REQUIRED)
        return cls(
            id=_get_str(data, "id", where),
            slug=_get_str(data, "slug", where),
            role=_get_str(data, "role", where),
            created_at=_get_str(data, "created_at", where),
            updated_at=_get_str(data, "updated_at", where),
            display_name=_get_str(data, "display_name", where),
            meta=_get_str(data, "meta", where),
        )

    def copy(self) -> "ActorEntry":
        return replace(self)


@dataclass
class ContainerEntry:
    """
    A container (project or subproject) keyed by UUID under "containers".

    Containers form a tree through `parent_uuid`; an empty parent marks a root.
    """
    id: str
    slug: str
    etag: int
    created_at: str
    updated_at: str
    created_by: str
    updated_by: str
    title: str = ""
    parent_uuid: str = ""
    archived_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.archived_at:
            result["archived_at"] = self.archived_at
        result["created_at"] = self.created_at
        result["created_by"] = self.created_by
        result["etag"] = self.etag
        result["id"] = self.id
        if self.parent_uuid:
            result["parent_uuid"] = self.parent_uuid
        result["slug"] = self.slug
        if self.title:
            result["title"] = self.title
        result["updated_at"] = self.updated_at
        result["updated_by"] = self.updated_by
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "ContainerEntry":
        where = "container"
        data = _require_mapping(data, where, CONTAINER_REQUIRED)
        return cls(
            id=_get_str(data, "id", where),
            slug=_get_str(data, "slug", where),
            etag=_get_int(data, "etag", where),
            created_at=_get_str(data, "created_at", where),
            updated_at=_get_str(data, "updated_at", where),
            created_by=_get_str(data, "created_by", where),
            updated_by=_get_str(data, "updated_by", where),
            title=_get_str(data, "title", where),
            parent_uuid=_get_str(data, "parent_uuid", where),
            archived_at=_get_str(data, "archived_at", where),
        )

    def copy(self) -> "ContainerEntry":
        return replace(self)


@dataclass
class TaskEntry:
    """A task keyed by UUID under "tasks", owned by the container `project_uuid`."""
    id: str
    slug: str
    title: str
    project_uuid: str
    state: str
    priority: int
    etag: int
    created_at: str
    updated_at: str
    created_by: str
    updated_by: str
    requested_by_project_id: str = ""
    assigned_project_id: str = ""
    acknowledged_at: str = ""
    resolution: str = ""
    start_at: str = ""
    due_at: str = ""
    labels: List[str] = field(default_factory=list)
    description: str = ""
    completed_at: str = ""
    archived_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.acknowledged_at:
            result["acknowledged_at"] = self.acknowledged_at
        if self.archived_at:
            result["archived_at"] = self.archived_at
        if self.assigned_project_id:
            result["assigned_project_id"] = self.assigned_project_id
        if self.completed_at:
            result["completed_at"] = self.completed_at
        result["created_at"] = self.created_at
        result["created_by"] = self.created_by
        if self.description:
            result["description"] = self.description
        if self.due_at:
            result["due_at"] = self.due_at
        result["etag"] = self.etag
        result["id"] = self.id
        if self.labels:
            result["labels"] = sorted(self.labels)
        result["priority"] = self.priority
        result["project_uuid"] = self.project_uuid
        if self.requested_by_project_id:
            result["requested_by_project_id"] = self.requested_by_project_id
        if self.resolution:
            result["resolution"] = self.resolution
        result["slug"] = self.slug
        if self.start_at:
            result["start_at"] = self.start_at
        result["state"] = self.state
        result["title"] = self.title
        result["updated_at"] = self.updated_at
        result["updated_by"] = self.updated_by
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "TaskEntry":
        where = "task"
        data = _require_mapping(data, where, TASK_REQUIRED)
        return cls(
            id=_get_str(data, "id", where),
            slug=_get_str(data, "slug", where),
            title=_get_str(data, "title", where),
            project_uuid=_get_str(data, "project_uuid", where),
            state=_get_str(data, "state", where),
            priority=_get_int(data, "priority", where),
            etag=_get_int(data, "etag", where),
            created_at=_get_str(data, "created_at", where),
            updated_at=_get_str(data, "updated_at", where),
            created_by=_get_str(data, "created_by", where),
            updated_by=_get_str(data, "updated_by", where),
            requested_by_project_id=_get_str(data, "requested_by_project_id", where),
            assigned_project_id=_get_str(data, "assigned_project_id", where),
            acknowledged_at=_get_str(data, "acknowledged_at", where),
            resolution=_get_str(data, "resolution", where),
            start_at=_get_str(data, "start_at", where),
            due_at=_get_str(data, "due_at", where),
            labels=_get_str_list(data, "labels", where),
            description=_get_str(data, "description", where),
            completed_at=_get_str(data, "completed_at", where),
            archived_at=_get_str(data, "archived_at", where),
        )

    def copy(self) -> "TaskEntry":
        return replace(self, labels=list(self.labels))


@dataclass
class CommentEntry:
    """A comment keyed by UUID under "comments", attached to a task."""
    id: str
    task_uuid: str
    actor_uuid: str
    body: str
    etag: int
    created_at: str
    meta: str = ""
    updated_at: str = ""
    deleted_at: str = ""
    deleted_by: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "actor_uuid": self.actor_uuid,
            "body": self.body,
            "created_at": self.created_at,
        }
        if self.deleted_at:
            result["deleted_at"] = self.deleted_at
        if self.deleted_by:
            result["deleted_by"] = self.deleted_by
        result["etag"] = self.etag
        result["id"] = self.id
        if self.meta:
            result["meta"] = self.meta
        result["task_uuid"] = self.task_uuid
        if self.updated_at:
            result["updated_at"] = self.updated_at
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "CommentEntry":
        where = "comment"
        data = _require_mapping(data, where, COMMENT_REQUIRED)
        return cls(
            id=_get_str(data, "id", where),
            task_uuid=_get_str(data, "task_uuid", where),
            actor_uuid=_get_str(data, "actor_uuid", where),
            body=_get_str(data, "body", where),
            etag=_get_int(data, "etag", where),
            created_at=_get_str(data, "created_at", where),
            meta=_get_str(data, "meta", where),
            updated_at=_get_str(data, "updated_at", where),
            deleted_at=_get_str(data, "deleted_at", where),
            deleted_by=_get_str(data, "deleted_by", where),
        )

    def copy(self) -> "CommentEntry":
        return replace(self)


@dataclass
class LinkEntry:
    """A typed link between two tasks, keyed by UUID under "links"."""
    source_uuid: str
    target_uuid: str
    link_type: str
    created_at: str
    created_by: str
    id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "created_at": self.created_at,
            "created_by": self.created_by,
        }
        if self.id:
            result["id"] = self.id
        result["link_type"] = self.link_type
        result["source_uuid"] = self.source_uuid
        result["target_uuid"] = self.target_uuid
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "LinkEntry":
        where = "link"
        data = _require_mapping(data, where, LINK_REQUIRED)
        return cls(
            source_uuid=_get_str(data, "source_uuid", where),
            target_uuid=_get_str(data, "target_uuid", where),
            link_type=_get_str(data, "link_type", where),
            created_at=_get_str(data, "created_at", where),
            created_by=_get_str(data, "created_by", where),
            id=_get_str(data, "id", where),
        )

    def copy(self) -> "LinkEntry":
        return replace(self)


@dataclass
class EventEntry:
    """Minimal event-log metadata; payloads only appear when events are exported."""
    id: int
    timestamp: str
    resource_type: str
    event_type: str
    actor_uuid: str = ""
    resource_uuid: str = ""
    etag: int = 0
    payload: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.actor_uuid:
            result["actor_uuid"] = self.actor_uuid
        if self.etag:
            result["etag"] = self.etag
        result["event_type"] = self.event_type
        result["id"] = self.id
        if self.payload:
            result["payload"] = self.payload
        result["resource_type"] = self.resource_type
        if self.resource_uuid:
            result["resource_uuid"] = self.resource_uuid
        result["timestamp"] = self.timestamp
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "EventEntry":
        where = "event"
        data = _require_mapping(data, where, EVENT_REQUIRED)
        return cls(
            id=_get_int(data, "id", where),
            timestamp=_get_str(data, "timestamp", where),
            resource_type=_get_str(data, "resource_type", where),
            event_type=_get_str(data, "event_type", where),
            actor_uuid=_get_str(data, "actor_uuid", where),
            resource_uuid=_get_str(data, "resource_uuid", where),
            etag=_get_int(data, "etag", where),
            payload=_get_str(data, "payload", where),
        )

    def copy(self) -> "EventEntry":
        return replace(self)


def entry_from_dict(collection: str, data: Any):
    """Build the entry type that belongs to `collection` from a plain dict."""
    if collection == Collection.ACTORS.value:
        return ActorEntry.from_dict(data)
    if collection == Collection.CONTAINERS.value:
        return ContainerEntry.from_dict(data)
    if collection == Collection.TASKS.value:
        return TaskEntry.from_dict(data)
    if collection == Collection.COMMENTS.value:
        return CommentEntry.from_dict(data)
    if collection == Collection.LINKS.value:
        return LinkEntry.from_dict(data)
    raise ValueError(f"unknown collection: {collection}")


def _sorted_entries(entries: Dict[str, Any]) -> Dict[str, Any]:
    return {key: entries[key].to_dict() for key in sorted(entries)}


@dataclass
class Snapshot:
    """
    Complete state of the tracker at one instant.

    A Snapshot handed to the diff engine is treated as immutable. The patch
    applier and the rebase engine always work on `clone()`s.
    """
    meta: SnapshotMeta = field(default_factory=SnapshotMeta)
    actors: Dict[str, ActorEntry] = field(default_factory=dict)
    containers: Dict[str, ContainerEntry] = field(default_factory=dict)
    tasks: Dict[str, TaskEntry] = field(default_factory=dict)
    comments: Dict[str, CommentEntry] = field(default_factory=dict)
    links: Dict[str, LinkEntry] = field(default_factory=dict)
    events: Dict[str, EventEntry] = field(default_factory=dict)

    def collection(self, name: str) -> Dict[str, Any]:
        """Return the live mapping for a patchable collection."""
        if name == Collection.ACTORS.value:
            return self.actors
        if name == Collection.CONTAINERS.value:
            return self.containers
        if name == Collection.TASKS.value:
            return self.tasks
        if name == Collection.COMMENTS.value:
            return self.comments
        if name == Collection.LINKS.value:
            return self.links
        raise ValueError(f"unknown collection: {name}")

    def clone(self) -> "Snapshot":
        """Deep structural copy; no entry is shared with the original."""
        return Snapshot(
            meta=replace(self.meta),
            actors={k: v.copy() for k, v in self.actors.items()},
            containers={k: v.copy() for k, v in self.containers.items()},
            tasks={k: v.copy() for k, v in self.tasks.items()},
            comments={k: v.copy() for k, v in self.comments.items()},
            links={k: v.copy() for k, v in self.links.items()},
            events={k: v.copy() for k, v in self.events.items()},
        )

    def counts(self) -> Dict[str, int]:
        return {
            "actors": len(self.actors),
            "containers": len(self.containers),
            "tasks": len(self.tasks),
            "comments": len(self.comments),
            "links": len(self.links),
            "events": len(self.events),
        }

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the canonical document shape.

        Sections appear in the fixed order meta, actors, containers, tasks,
        comments, links, events; empty collections are omitted and UUID keys
        are sorted.
        """
        result: Dict[str, Any] = {"meta": self.meta.to_dict()}
        if self.actors:
            result["actors"] = _sorted_entries(self.actors)
        if self.containers:
            result["containers"] = _sorted_entries(self.containers)
        if self.tasks:
            result["tasks"] = _sorted_entries(self.tasks)
        if self.comments:
            result["comments"] = _sorted_entries(self.comments)
        if self.links:
            result["links"] = _sorted_entries(self.links)
        if self.events:
            result["events"] = _sorted_entries(self.events)
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        """Create from a parsed snapshot document."""
        data = _require_mapping(data, "snapshot")
        if "meta" not in data:
            raise MalformedInputError("snapshot is missing 'meta'")

        def section(name: str) -> Dict[str, Any]:
            value = data.get(name)
            if value is None:
                return {}
            value = _require_mapping(value, name)
            for key in value:
                _check_text(key, f"{name} key {key!r}")
            return value

        return cls(
            meta=SnapshotMeta.from_dict(data["meta"]),
            actors={k: ActorEntry.from_dict(v) for k, v in section("actors").items()},
            containers={k: ContainerEntry.from_dict(v) for k, v in section("containers").items()},
            tasks={k: TaskEntry.from_dict(v) for k, v in section("tasks").items()},
            comments={k: CommentEntry.from_dict(v) for k, v in section("comments").items()},
            links={k: LinkEntry.from_dict(v) for k, v in section("links").items()},
            events={k: EventEntry.from_dict(v) for k, v in section("events").items()},
        )


def required_fields(collection: str) -> Tuple[str, ...]:
    """Fields that `collection` entries must always carry."""
    if collection == Collection.ACTORS.value:
        return ACTOR_REQUIRED
    if collection == Collection.CONTAINERS.value:
        return CONTAINER_REQUIRED
    if collection == Collection.TASKS.value:
        return TASK_REQUIRED
    if collection == Collection.COMMENTS.value:
        return COMMENT_REQUIRED
    if collection == Collection.LINKS.value:
        return LINK_REQUIRED
    if collection == "events":
        return EVENT_REQUIRED
    raise ValueError(f"unknown collection: {collection}")
