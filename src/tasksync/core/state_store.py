"""
State store interface for reading and writing live tracker state.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..snapshot.canonical import compute_snapshot_rev
from ..snapshot.models import Snapshot


class StateStore(ABC):
    """
    Abstract base class for live state stores.

    A state store reads the complete live state as a Snapshot and replaces
    it atomically. Implementations never expose partial writes.
    """

    @abstractmethod
    def read_live_state(self, include_events: bool = False) -> Snapshot:
        """
        Read every actor, container, task, comment and link.

        Archived and soft-deleted rows are included.

        Args:
            include_events: Whether to include event-log entries

        Returns:
            Snapshot with meta versions set and no revision stamped
        """
        pass

    @abstractmethod
    def write_live_state(self, snapshot: Snapshot, expected_rev: Optional[str] = None) -> None:
        """
        Replace the live entity state with the snapshot's contents.

        The write is all-or-nothing. Events in the snapshot are ignored.

        Args:
            snapshot: New live state
            expected_rev: If set, the live revision must still equal this
                inside the write transaction

        Raises:
            RevisionConflictError: The live revision is no longer `expected_rev`
            StorageError: If the write fails; the store is left unchanged
        """
        pass

    @abstractmethod
    def is_empty(self) -> bool:
        """
        Check whether the store holds no entities.

        Returns:
            True if there are no actors, containers, tasks, comments or links
        """
        pass

    def current_revision(self) -> str:
        """Revision of the live state, as used for optimistic concurrency checks."""
        return compute_snapshot_rev(self.read_live_state())

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
