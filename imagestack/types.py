"""Shared type definitions for imagestack.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

# Base value meaning "start from nothing"
EMPTY_BASE = "empty"


class SessionState(str, Enum):
    """State of the single working copy."""

    IDLE = "idle"
    CHECKED_OUT = "checked-out"
    COMMITTED = "committed"
    ABORTED = "aborted"


class AbortOutcome(str, Enum):
    """Result of an abort request."""

    ABORTED = "aborted"
    DECLINED = "declined"


class StepKind(str, Enum):
    """Kinds of work a target performs, in execution order."""

    EXPAND = "expand"
    RUN = "run"
    INSTALL = "install"
    ENTRYPOINT = "entrypoint"


@dataclass(frozen=True)
class SyncOptions:
    """Fidelity options for mirroring one tree into another."""

    preserve_hardlinks: bool = True
    numeric_ids: bool = True
    sparse: bool = True
    delete: bool = True
    devices: bool = True


@dataclass
class CheckoutStatus:
    """Snapshot of the on-disk checkout state.

    Attributes:
        state: IDLE or CHECKED_OUT.
        tag: Checked-out tag name, if any.
        digest: Checked-out content digest, if any.
        working_copy: Working copy root.
        issues: Inconsistencies found between record and working copy.
    """

    state: SessionState
    working_copy: Path
    tag: str | None = None
    digest: str | None = None
    issues: list[str] = field(default_factory=list)


@dataclass
class BuildLogEntry:
    """One target built by the scheduler."""

    target: str
    base: str
    digest: str | None
    started_at: datetime
    finished_at: datetime


@dataclass
class BuildLog:
    """Ordered record of the targets built in one invocation."""

    entries: list[BuildLogEntry] = field(default_factory=list)

    @property
    def targets(self) -> list[str]:
        """Target names in build order."""
        return [entry.target for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


__all__ = [
    "EMPTY_BASE",
    "AbortOutcome",
    "BuildLog",
    "BuildLogEntry",
    "CheckoutStatus",
    "SessionState",
    "StepKind",
    "SyncOptions",
]
