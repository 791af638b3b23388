"""Persistence of the checkout record.

The record is two small flat files: the checked-out tag name and the
checked-out content digest. Both present means a working copy is checked
out; anything less means idle. A lone file is a leftover from an
interrupted checkout or abort and is reported by the consistency check.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutRecord:
    """The tag and digest of the active working copy.

    Attributes:
        tag: Checked-out tag name.
        digest: Content digest of the tag's top layer; None for an image
            without layers.
    """

    tag: str
    digest: str | None


def _write_atomic(path: Path, content: str) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)


class CheckoutRecordStore:
    """Reads and writes the checkout record files."""

    def __init__(self, tag_file: Path, digest_file: Path) -> None:
        self.tag_file = tag_file
        self.digest_file = digest_file

    def is_present(self) -> bool:
        """Whether a complete record exists."""
        return self.tag_file.is_file() and self.digest_file.is_file()

    def is_partial(self) -> bool:
        """Whether exactly one of the two record files exists."""
        return self.tag_file.is_file() != self.digest_file.is_file()

    def has_residue(self) -> bool:
        """Whether any record file exists."""
        return self.tag_file.is_file() or self.digest_file.is_file()

    def load(self) -> CheckoutRecord | None:
        """Load the record, or None when no complete record exists."""
        if not self.is_present():
            return None
        tag = self.tag_file.read_text(encoding="utf-8").strip()
        digest = self.digest_file.read_text(encoding="utf-8").strip()
        return CheckoutRecord(tag=tag, digest=digest or None)

    def save(self, record: CheckoutRecord) -> None:
        """Write both record files."""
        self.tag_file.parent.mkdir(parents=True, exist_ok=True)
        _write_atomic(self.tag_file, record.tag)
        _write_atomic(self.digest_file, record.digest or "")
        logger.debug("Saved checkout record for %s (%s)", record.tag, record.digest)

    def clear(self) -> None:
        """Remove both record files if present."""
        self.tag_file.unlink(missing_ok=True)
        self.digest_file.unlink(missing_ok=True)
        logger.debug("Cleared checkout record")


__all__ = ["CheckoutRecord", "CheckoutRecordStore"]
