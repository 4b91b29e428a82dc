"""
Human and LLM friendly summaries of a patch.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.exceptions import PatchStructureError
from ..snapshot.models import Snapshot
from .models import OpType, Patch, PatchOperation, parse_path

logger = logging.getLogger(__name__)


class SummaryFormat(str, Enum):
    """Supported summary renderings."""
    TEXT = "text"
    MARKDOWN = "markdown"
    JSON = "json"


# Order entities appear in prose and count tables
SUMMARY_ENTITIES = ["task", "container", "actor", "comment", "link"]

COUNTED_OPS = (OpType.ADD.value, OpType.REPLACE.value, OpType.REMOVE.value)


def singular_entity(collection: str) -> str:
    """Map a collection name to its entity name; empty for meta/events/unknown."""
    if collection == "tasks":
        return "task"
    if collection == "containers":
        return "container"
    if collection == "actors":
        return "actor"
    if collection == "comments":
        return "comment"
    if collection == "links":
        return "link"
    return ""


@dataclass
class OpDetail:
    """One operation as it appears in a summary."""
    entity: str
    op: str
    uuid: str
    id: str = ""
    path: str = ""
    title: str = ""
    field: str = ""
    new_value: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"entity": self.entity, "op": self.op, "uuid": self.uuid}
        for key in ("id", "path", "title", "field", "new_value"):
            value = getattr(self, key)
            if value:
                result[key] = value
        return result


@dataclass
class PatchSummary:
    """
    Summary of a patch.

    Attributes:
        counts: entity -> {"add", "replace", "remove"} counts
        details: Per-operation details sorted by entity, op, uuid
        text: Rendered summary for the requested format
    """
    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    details: List[OpDetail] = field(default_factory=list)
    text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": {e: dict(self.counts[e]) for e in SUMMARY_ENTITIES if e in self.counts},
            "details": [d.to_dict() for d in self.details],
        }


def _container_path(uuid: str, base: Snapshot, seen: Optional[set] = None) -> str:
    container = base.containers.get(uuid)
    if container is None:
        return ""
    seen = seen if seen is not None else set()
    if uuid in seen:
        return container.slug
    seen.add(uuid)
    if not container.parent_uuid:
        return container.slug
    parent = _container_path(container.parent_uuid, base, seen)
    return f"{parent}/{container.slug}" if parent else container.slug


def _enrich_from_base(detail: OpDetail, collection: str, base: Snapshot) -> None:
    uuid = detail.uuid
    if collection == "tasks" and uuid in base.tasks:
        task = base.tasks[uuid]
        detail.id = task.id
        detail.title = task.title
        container = base.containers.get(task.project_uuid)
        detail.path = f"{container.slug}/{task.slug}" if container else task.slug
    elif collection == "containers" and uuid in base.containers:
        container = base.containers[uuid]
        detail.id = container.id
        detail.title = container.title
        detail.path = _container_path(uuid, base)
    elif collection == "actors" and uuid in base.actors:
        actor = base.actors[uuid]
        detail.id = actor.id
        detail.title = actor.display_name
    elif collection == "comments" and uuid in base.comments:
        comment = base.comments[uuid]
        detail.id = comment.id
        task = base.tasks.get(comment.task_uuid)
        if task is not None:
            detail.path = f"on {task.id}"
    elif collection == "links" and uuid in base.links:
        link = base.links[uuid]
        detail.id = link.id
        source = base.tasks.get(link.source_uuid)
        target = base.tasks.get(link.target_uuid)
        if source is not None and target is not None:
            detail.path = f"{source.id} {link.link_type} {target.id}"


def _enrich_from_value(detail: OpDetail, value: Any) -> None:
    if value is None:
        return
    if detail.field:
        detail.new_value = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        return
    if isinstance(value, dict):
        if not detail.id and isinstance(value.get("id"), str):
            detail.id = value["id"]
        if not detail.title:
            title = value.get("title") or value.get("display_name")
            if isinstance(title, str):
                detail.title = title
        if not detail.path and isinstance(value.get("slug"), str):
            detail.path = value["slug"]


def _describe(op: PatchOperation, base: Optional[Snapshot]) -> Optional[OpDetail]:
    try:
        target = parse_path(op.path)
    except PatchStructureError:
        return None
    entity = singular_entity(target.collection)
    if not entity:
        return None

    detail = OpDetail(entity=entity, op=op.op, uuid=target.uuid, field=target.field)
    if base is not None:
        _enrich_from_base(detail, target.collection, base)
    _enrich_from_value(detail, op.value)
    return detail


def _pluralize(word: str, count: int) -> str:
    return word if count == 1 else word + "s"


def format_text(counts: Dict[str, Dict[str, int]]) -> str:
    """One-line prose summary, e.g. "2 tasks added, 1 task updated."."""
    parts = []
    for entity in SUMMARY_ENTITIES:
        c = counts.get(entity)
        if not c:
            continue
        ops = []
        for op, verb in (("add", "added"), ("replace", "updated"), ("remove", "removed")):
            n = c.get(op, 0)
            if n:
                ops.append(f"{n} {_pluralize(entity, n)} {verb}")
        if ops:
            parts.append(", ".join(ops))
    if not parts:
        return "No changes."
    return ", ".join(parts) + "."


def format_markdown(counts: Dict[str, Dict[str, int]], details: List[OpDetail]) -> str:
    lines = ["## Summary", "", format_text(counts)]
    if not details:
        return "\n".join(lines) + "\n"

    lines += [
        "",
        "## Details",
        "",
        "| Entity | Op | ID | Path / Title |",
        "|--------|----|----|-------------|",
    ]
    for d in details:
        ident = d.id or d.uuid[:8] + "..."
        label = d.path or d.title or "-"
        if d.field and d.new_value:
            label = f"{d.field}: `{d.new_value}`"
        label = label.replace("|", "\\|")
        lines.append(f"| {d.entity} | {d.op} | {ident} | {label} |")
    return "\n".join(lines) + "\n"


def summarize_patch(patch: Patch, base: Optional[Snapshot] = None,
                    fmt: str = SummaryFormat.TEXT.value) -> PatchSummary:
    """
    Summarize a patch.

    Args:
        patch: Patch to describe
        base: Optional snapshot used to resolve friendly IDs, titles and paths
        fmt: "text", "markdown" or "json"

    Returns:
        PatchSummary with counts, sorted details and rendered text
    """
    if fmt not in {f.value for f in SummaryFormat}:
        raise ValueError(f"unknown summary format: {fmt}")

    counts: Dict[str, Dict[str, int]] = {}
    details: List[OpDetail] = []
    for op in patch.operations:
        detail = _describe(op, base)
        if detail is None:
            continue
        details.append(detail)
        if op.op in COUNTED_OPS:
            entity_counts = counts.setdefault(detail.entity, {"add": 0, "replace": 0, "remove": 0})
            entity_counts[op.op] += 1

    details.sort(key=lambda d: (d.entity, d.op, d.uuid))
    summary = PatchSummary(counts=counts, details=details)

    if fmt == SummaryFormat.MARKDOWN.value:
        summary.text = format_markdown(counts, details)
    elif fmt == SummaryFormat.JSON.value:
        summary.text = json.dumps(summary.to_dict(), indent=2, ensure_ascii=False)
    else:
        summary.text = format_text(counts)

    logger.debug(f"Summarized {len(patch)} operations into {len(details)} details")
    return summary
