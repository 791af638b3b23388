"""Full-copy storage backend.

Every checkout unpacks the complete image into a fresh directory with no
sharing, so this strategy is only suitable for small images and
development use.
"""

from __future__ import annotations

import logging
import shutil

from imagestack.errors import StorageError
from imagestack.storage.base import StorageBackend
from imagestack.storage.record import CheckoutRecord

logger = logging.getLogger(__name__)


class VfsBackend(StorageBackend):
    """Unpack-on-checkout, repack-on-commit, delete-on-abort."""

    driver = "vfs"

    def _materialize(self, record: CheckoutRecord) -> None:
        self.working_copy.parent.mkdir(parents=True, exist_ok=True)
        self.umoci.unpack(record.tag, self.working_copy)

    def _commit(
        self, record: CheckoutRecord, new_tag: str, entrypoint: str | None
    ) -> str | None:
        self.umoci.repack(new_tag, self.working_copy)
        if entrypoint:
            self.umoci.set_entrypoint(new_tag, entrypoint)
        digest = self.tag_store.resolve_digest(new_tag)
        self._discard()
        return digest

    def _discard(self) -> None:
        if not self.working_copy.exists():
            return
        try:
            shutil.rmtree(self.working_copy)
        except OSError as e:
            raise StorageError(f"Removal of {self.working_copy} failed: {e}") from e


__all__ = ["VfsBackend"]
