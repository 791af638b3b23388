"""Storage backend contract.

A storage backend owns the single working copy: it materializes a tag into
the working copy on checkout, turns the working copy into a new tag on
commit and discards it on abort. The checkout record on disk is the only
signal that a working copy is active, so the one-working-copy rule holds
across process restarts.

Concrete strategies implement _materialize(), _commit(), _discard() and
_verify_backend(); the record bookkeeping, confirmation gate and
consistency checks are shared here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from imagestack.errors import (
    AlreadyCheckedOutError,
    InconsistentStateError,
    NothingToAbortError,
    NotCheckedOutError,
    SourceNotFoundError,
    TagNotFoundError,
    TagStoreError,
)
from imagestack.images.umoci import Umoci
from imagestack.storage.record import CheckoutRecord, CheckoutRecordStore
from imagestack.types import EMPTY_BASE, AbortOutcome, CheckoutStatus, SessionState

if TYPE_CHECKING:
    from imagestack.config import Settings
    from imagestack.images.layout import OciTagStore

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[str], bool]


def prompt_confirmation(message: str) -> bool:
    """Ask the operator for a single line of confirmation on stdin.

    Only an answer starting with 'y' or 'Y' confirms, ignoring leading
    whitespace. End of input and interrupts count as a refusal.
    """
    try:
        answer = input(f"{message} (y/n) ")
    except (EOFError, KeyboardInterrupt):
        return False
    return answer.strip()[:1] in ("y", "Y")


class StorageBackend(ABC):
    """Checkout/commit/abort over one working copy.

    Attributes:
        settings: Application settings.
        tag_store: Image layout reader.
        umoci: Layer materialization for the same layout.
        records: Checkout record persistence.
    """

    driver: ClassVar[str]

    def __init__(
        self,
        settings: Settings,
        tag_store: OciTagStore,
        umoci: Umoci | None = None,
    ) -> None:
        self.settings = settings
        self.tag_store = tag_store
        self.umoci = umoci or Umoci.from_settings(settings)
        self.records = CheckoutRecordStore(
            settings.record_tag_file, settings.record_digest_file
        )

    @property
    def working_copy(self) -> Path:
        """Root of the working copy (a runtime bundle)."""
        return self.settings.unpack_dir

    @property
    def rootfs(self) -> Path:
        """Root filesystem inside the working copy."""
        return self.working_copy / "rootfs"

    def is_checked_out(self) -> bool:
        return self.records.is_present()

    def status(self) -> CheckoutStatus:
        """Describe the current checkout state without changing it."""
        record = self.records.load()
        return CheckoutStatus(
            state=SessionState.CHECKED_OUT if record else SessionState.IDLE,
            working_copy=self.working_copy,
            tag=record.tag if record else None,
            digest=record.digest if record else None,
            issues=self.verify_state(),
        )

    def verify_state(self) -> list[str]:
        """Collect inconsistencies between the record, the working copy and
        the image store. Nothing is repaired.
        """
        issues: list[str] = []
        if self.records.is_partial():
            issues.append("checkout record is incomplete (one of tag/digest missing)")

        record = self.records.load()
        working_copy_exists = self.working_copy.exists()
        if record is not None and not working_copy_exists:
            issues.append(
                f"checkout of {record.tag} recorded but working copy "
                f"{self.working_copy} is missing"
            )
        if not self.records.has_residue() and working_copy_exists:
            issues.append(
                f"working copy {self.working_copy} exists without a checkout record"
            )
        if record is not None:
            try:
                current = self.tag_store.resolve_digest(record.tag)
            except TagStoreError as e:
                issues.append(f"checked-out tag {record.tag} no longer resolves: {e}")
            else:
                if current != record.digest:
                    issues.append(
                        f"checked-out tag {record.tag} now resolves to {current}, "
                        f"record says {record.digest}"
                    )
        issues.extend(self._verify_backend(record))
        return issues

    def ensure_consistent(self) -> None:
        """Raise if the on-disk state is inconsistent.

        Raises:
            InconsistentStateError: With every issue found.
        """
        issues = self.verify_state()
        if issues:
            for issue in issues:
                logger.warning("Inconsistent state: %s", issue)
            raise InconsistentStateError(issues)

    def checkout(self, source: str) -> Path:
        """Materialize source as the working copy.

        The record is written before materializing so that a crash leaves
        an accurate marker. A materialization error removes the partial
        working copy and the record before re-raising.

        Args:
            source: Tag to check out, or 'empty'.

        Returns:
            Working copy root.

        Raises:
            AlreadyCheckedOutError: If a working copy is active.
            SourceNotFoundError: If source does not resolve.
            InconsistentStateError: If leftover state needs attention.
        """
        existing = self.records.load()
        if existing is not None:
            raise AlreadyCheckedOutError(existing.tag)
        self.ensure_consistent()

        if source == EMPTY_BASE:
            self.umoci.ensure_empty_image(self.tag_store)
        try:
            digest = self.tag_store.resolve_digest(source)
        except TagNotFoundError as e:
            raise SourceNotFoundError(source) from e

        record = CheckoutRecord(tag=source, digest=digest)
        self.records.save(record)
        logger.info("Checking out %s (%s) into %s", source, digest, self.working_copy)
        try:
            self._materialize(record)
        except Exception:
            logger.error("Checkout of %s failed, removing partial working copy", source)
            self._discard()
            self.records.clear()
            raise
        return self.working_copy

    def commit(self, new_tag: str, entrypoint: str | None = None) -> str | None:
        """Store the working copy as new_tag and clear the checkout.

        Args:
            new_tag: Tag to create.
            entrypoint: Optional entrypoint recorded in the image config.

        Returns:
            Digest of the new tag's top layer.

        Raises:
            NotCheckedOutError: If nothing is checked out.
            InconsistentStateError: If the checkout state is inconsistent.
        """
        record = self.records.load()
        if record is None:
            raise NotCheckedOutError()
        self.ensure_consistent()

        logger.info("Committing working copy of %s as %s", record.tag, new_tag)
        digest = self._commit(record, new_tag, entrypoint)
        self.records.clear()
        return digest

    def abort(self, force: bool = False, confirm: ConfirmFn | None = None) -> AbortOutcome:
        """Discard the working copy.

        Args:
            force: Skip the confirmation gate.
            confirm: Confirmation callback (defaults to a stdin prompt).

        Returns:
            ABORTED, or DECLINED when the operator refused (nothing changes).

        Raises:
            NothingToAbortError: If there is no checkout residue at all.
        """
        if not self.records.has_residue() and not self.working_copy.exists():
            raise NothingToAbortError()
        if not force:
            ask = confirm or prompt_confirmation
            if not ask(f"Really delete '{self.working_copy}'?"):
                logger.info("Abort declined, working copy left in place")
                return AbortOutcome.DECLINED

        self._discard()
        self.records.clear()
        logger.info("Aborted checkout, removed %s", self.working_copy)
        return AbortOutcome.ABORTED

    @abstractmethod
    def _materialize(self, record: CheckoutRecord) -> None:
        """Create the working copy for record."""

    @abstractmethod
    def _commit(
        self, record: CheckoutRecord, new_tag: str, entrypoint: str | None
    ) -> str | None:
        """Store the working copy as new_tag and remove it."""

    @abstractmethod
    def _discard(self) -> None:
        """Remove the working copy if it exists."""

    def _verify_backend(self, record: CheckoutRecord | None) -> list[str]:
        """Strategy-specific consistency issues."""
        return []


__all__ = ["ConfirmFn", "StorageBackend", "prompt_confirmation"]
