"""Checkout session state machine.

    IDLE --checkout--> CHECKED_OUT --commit--> COMMITTED
                                   --abort---> ABORTED

COMMITTED and ABORTED behave like IDLE: a new checkout may start. Leaving
CHECKED_OUT is only possible through commit or abort. The state is derived
from the backend's checkout record at construction, so a session created
after a crash picks up the checkout it left behind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from imagestack.errors import AlreadyCheckedOutError, NotCheckedOutError
from imagestack.types import AbortOutcome, SessionState

if TYPE_CHECKING:
    from imagestack.storage.base import ConfirmFn, StorageBackend

logger = logging.getLogger(__name__)


class CheckoutSession:
    """Drives one working copy through checkout, mutation and commit/abort.

    Attributes:
        backend: Storage backend owning the working copy.
        source: Tag the current working copy was checked out from.
        entrypoint: Entrypoint to record on commit.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend
        self.source: str | None = None
        self.entrypoint: str | None = None
        record = backend.records.load()
        if record is not None:
            self._state = SessionState.CHECKED_OUT
            self.source = record.tag
        else:
            self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_checked_out(self) -> bool:
        return self._state == SessionState.CHECKED_OUT

    @property
    def rootfs(self) -> Path:
        """Root filesystem of the working copy.

        Raises:
            NotCheckedOutError: If nothing is checked out.
        """
        self._require_checked_out()
        return self.backend.rootfs

    def _require_checked_out(self) -> None:
        if not self.is_checked_out:
            raise NotCheckedOutError()

    def checkout(self, source: str) -> Path:
        """Check out source as the working copy.

        Raises:
            AlreadyCheckedOutError: If a working copy is active.
        """
        if self.is_checked_out:
            raise AlreadyCheckedOutError(self.source)
        path = self.backend.checkout(source)
        self._state = SessionState.CHECKED_OUT
        self.source = source
        self.entrypoint = None
        return path

    def set_entrypoint(self, entrypoint: str) -> None:
        """Record the entrypoint applied when committing."""
        self._require_checked_out()
        self.entrypoint = entrypoint

    def commit(self, new_tag: str) -> str | None:
        """Commit the working copy as new_tag.

        Returns:
            Digest of the new tag's top layer.

        Raises:
            NotCheckedOutError: If nothing is checked out.
        """
        self._require_checked_out()
        digest = self.backend.commit(new_tag, entrypoint=self.entrypoint)
        logger.info("Committed %s (%s)", new_tag, digest)
        self._state = SessionState.COMMITTED
        self.entrypoint = None
        return digest

    def abort(self, force: bool = False, confirm: ConfirmFn | None = None) -> AbortOutcome:
        """Discard the working copy; a declined abort changes nothing."""
        outcome = self.backend.abort(force=force, confirm=confirm)
        if outcome == AbortOutcome.ABORTED:
            self._state = SessionState.ABORTED
            self.entrypoint = None
        return outcome


__all__ = ["CheckoutSession"]
