"""
Patch data model.

A patch is an ordered list of JSON-Patch-style operations addressed with
JSON Pointer paths of the form /<collection>/<uuid>[/<field>].
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..core.exceptions import MalformedInputError, PatchStructureError
from ..snapshot.file_snapshot import read_json_file, write_bytes_file

logger = logging.getLogger(__name__)


class OpType(str, Enum):
    """Supported patch operation types."""
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"
    TEST = "test"


VALID_OPS = {op.value for op in OpType}


def escape_token(token: str) -> str:
    """Escape a JSON Pointer reference token (RFC 6901)."""
    return token.replace("~", "~0").replace("/", "~1")


def unescape_token(token: str) -> str:
    """Unescape a JSON Pointer reference token (RFC 6901)."""
    return token.replace("~1", "/").replace("~0", "~")


def make_path(collection: str, uuid: str, field_name: Optional[str] = None) -> str:
    """Build /<collection>/<uuid>[/<field>] with escaped tokens."""
    path = f"/{escape_token(collection)}/{escape_token(uuid)}"
    if field_name:
        path += f"/{escape_token(field_name)}"
    return path


@dataclass
class ParsedPath:
    """A patch path split into its collection, key and optional field."""
    collection: str
    uuid: str = ""
    field: str = ""


def parse_path(path: str, index: Optional[int] = None) -> ParsedPath:
    """
    Split a JSON Pointer path into collection, uuid and field.

    `/meta` and `/meta/<field>` parse with an empty uuid; every other
    collection needs at least /<collection>/<uuid>.

    Raises:
        PatchStructureError: If the path is empty, relative, or too deep
    """
    if not path:
        raise PatchStructureError("empty path", index=index, path=path)
    if not path.startswith("/"):
        raise PatchStructureError("path must start with /", index=index, path=path)

    tokens = [unescape_token(t) for t in path[1:].split("/")]
    if not tokens[0]:
        raise PatchStructureError("path is missing a collection", index=index, path=path)

    if tokens[0] == "meta":
        if len(tokens) > 2:
            raise PatchStructureError("path too deep", index=index, path=path)
        return ParsedPath(collection="meta", field=tokens[1] if len(tokens) == 2 else "")

    if len(tokens) < 2 or not tokens[1]:
        raise PatchStructureError(
            "path must have the form /<collection>/<uuid>", index=index, path=path
        )
    if len(tokens) > 3:
        raise PatchStructureError("path too deep", index=index, path=path)
    if len(tokens) == 3 and not tokens[2]:
        raise PatchStructureError("empty field name", index=index, path=path)

    return ParsedPath(
        collection=tokens[0],
        uuid=tokens[1],
        field=tokens[2] if len(tokens) == 3 else "",
    )


@dataclass
class PatchOperation:
    """
    A single patch operation.

    Attributes:
        op: One of add, remove, replace, test
        path: JSON Pointer path
        value: Operation value; None for remove (and treated as missing
            for add/replace/test)
    """
    op: str
    path: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"op": self.op, "path": self.path}
        if self.value is not None:
            result["value"] = self.value
        return result

    @classmethod
    def from_dict(cls, data: Any, index: Optional[int] = None) -> "PatchOperation":
        if not isinstance(data, dict):
            raise MalformedInputError(f"operation {index}: expected an object")
        op = data.get("op")
        path = data.get("path")
        if not isinstance(op, str) or not isinstance(path, str):
            raise MalformedInputError(f"operation {index}: 'op' and 'path' must be strings")
        try:
            json.dumps(data, ensure_ascii=False).encode("utf-8")
        except UnicodeEncodeError:
            raise MalformedInputError(f"operation {index}: string is not valid Unicode (lone surrogate)")
        return cls(op=op, path=path, value=data.get("value"))


@dataclass
class Patch:
    """Ordered list of patch operations."""
    operations: List[PatchOperation] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self):
        return iter(self.operations)

    def is_empty(self) -> bool:
        return not self.operations

    def append(self, op: str, path: str, value: Any = None) -> None:
        self.operations.append(PatchOperation(op=op, path=path, value=value))

    def count_ops(self) -> Tuple[int, int, int]:
        """
        Count operations by type.

        Returns:
            Tuple of (adds, replaces, removes); test operations are not counted
        """
        adds = sum(1 for o in self.operations if o.op == OpType.ADD.value)
        replaces = sum(1 for o in self.operations if o.op == OpType.REPLACE.value)
        removes = sum(1 for o in self.operations if o.op == OpType.REMOVE.value)
        return adds, replaces, removes

    def to_list(self) -> List[Dict[str, Any]]:
        return [o.to_dict() for o in self.operations]

    @classmethod
    def from_list(cls, data: Any) -> "Patch":
        if not isinstance(data, list):
            raise MalformedInputError("patch must be a JSON array of operations")
        return cls(operations=[PatchOperation.from_dict(d, i) for i, d in enumerate(data)])

    def to_json(self) -> str:
        """Indented JSON array with a trailing newline."""
        return json.dumps(self.to_list(), indent=2, ensure_ascii=False) + "\n"

    def save(self, path: Union[str, Path]) -> None:
        """Save patch to a JSON file."""
        write_bytes_file(path, self.to_json().encode("utf-8"))
        logger.debug(f"Saved patch with {len(self)} operations to {path}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Patch":
        """
        Load a patch from a JSON file.

        Raises:
            MalformedInputError: If the file is unreadable or not an array of operations
        """
        data = read_json_file(path)
        try:
            patch = cls.from_list(data)
        except MalformedInputError as e:
            raise MalformedInputError(str(e), path=str(path))
        logger.debug(f"Loaded patch with {len(patch)} operations from {path}")
        return patch
