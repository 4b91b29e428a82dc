"""
Core abstractions: the error taxonomy and the live state store interface.

`StateStore` lives in `tasksync.core.state_store`; it is not re-exported
here because it depends on the snapshot package.
"""

from .exceptions import (
    TaskSyncError,
    MalformedInputError,
    PatchStructureError,
    PatchApplyError,
    PatchTestFailedError,
    InvariantViolationError,
    RevisionConflictError,
    FriendlyIDError,
    StorageError,
    ConfigError,
)

__all__ = [
    "TaskSyncError",
    "MalformedInputError",
    "PatchStructureError",
    "PatchApplyError",
    "PatchTestFailedError",
    "InvariantViolationError",
    "RevisionConflictError",
    "FriendlyIDError",
    "StorageError",
    "ConfigError",
]
