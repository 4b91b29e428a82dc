"""
Patch module: diff, apply, validate, rebase and summarize.
"""

from .models import Patch, PatchOperation, OpType
from .diff import diff
from .apply import apply_patch
from .validate import validate_snapshot, validate_operations, validate_patch, ValidationReport
from .rebase import rebase, RebaseOutcome, IDRewrite
from .summarize import summarize_patch, PatchSummary

__all__ = [
    "Patch",
    "PatchOperation",
    "OpType",
    "diff",
    "apply_patch",
    "validate_snapshot",
    "validate_operations",
    "validate_patch",
    "ValidationReport",
    "rebase",
    "RebaseOutcome",
    "IDRewrite",
    "summarize_patch",
    "PatchSummary",
]
