"""
Custom exceptions for the tasksync snapshot/patch subsystem.
"""

from typing import List, Optional


class TaskSyncError(Exception):
    """Base exception for all tasksync errors."""
    pass


class MalformedInputError(TaskSyncError):
    """
    A snapshot or patch file could not be read or parsed.

    Raised when:
    - The file does not exist or cannot be read
    - The content is not valid JSON
    - The JSON does not have the expected shape
    """

    def __init__(self, message: str, path: Optional[str] = None):
        if path:
            message = f"{path}: {message}"
        super().__init__(message)
        self.path = path


class PatchStructureError(TaskSyncError):
    """
    A patch operation is structurally invalid.

    Raised when:
    - The operation type is not supported
    - The path is missing required segments
    - The path names an unknown or non-patchable collection
    """

    def __init__(self, message: str, index: Optional[int] = None, path: Optional[str] = None):
        if index is not None:
            message = f"operation {index} ({path}): {message}"
        super().__init__(message)
        self.index = index
        self.path = path


class PatchApplyError(TaskSyncError):
    """
    A patch operation could not be applied to a snapshot.

    Raised when:
    - remove/replace targets an absent entity
    - the value cannot be converted into an entry
    """

    def __init__(self, message: str, index: Optional[int] = None, op: Optional[str] = None,
                 path: Optional[str] = None):
        if index is not None:
            message = f"failed to apply operation {index} ({op} {path}): {message}"
        super().__init__(message)
        self.index = index
        self.op = op
        self.path = path


class PatchTestFailedError(PatchApplyError):
    """A `test` operation found a value different from the expected one."""
    pass


class InvariantViolationError(TaskSyncError):
    """
    A snapshot violates one or more domain invariants.

    Only raised when the caller asks for strict handling; the validator
    itself always returns the violation list.
    """

    def __init__(self, violations: List[str]):
        preview = "; ".join(violations[:5])
        more = f" (+{len(violations) - 5} more)" if len(violations) > 5 else ""
        super().__init__(f"validation failed: {preview}{more}")
        self.violations = list(violations)


class RevisionConflictError(TaskSyncError):
    """
    The live state revision does not match the caller's if-match revision.

    Callers should re-diff against fresh state and retry.
    """

    def __init__(self, expected: str, actual: str):
        super().__init__(f"snapshot_rev mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class FriendlyIDError(TaskSyncError):
    """A friendly ID does not have the `<Letters>-<digits>` shape (strict rebase)."""

    def __init__(self, collection: str, uuid: str, friendly_id: str):
        super().__init__(f"{collection} {uuid}: malformed friendly ID: {friendly_id}")
        self.collection = collection
        self.uuid = uuid
        self.friendly_id = friendly_id


class StorageError(TaskSyncError):
    """
    Error reading or writing live state.

    Raised when:
    - The database cannot be opened
    - A transactional write fails and is rolled back
    """
    pass


class ConfigError(TaskSyncError):
    """Configuration file is missing or invalid."""
    pass
