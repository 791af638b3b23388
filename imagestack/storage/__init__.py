"""Storage backend module.

This module handles:
- The checkout record on disk
- Full-copy (vfs) and copy-on-write snapshot (btrfs) working copies
- Loopback volume provisioning for the snapshot backend
- Selecting the backend for the configured storage driver
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from imagestack.errors import UnsupportedBackendError
from imagestack.images.layout import OciTagStore
from imagestack.storage.base import ConfirmFn, StorageBackend, prompt_confirmation
from imagestack.storage.btrfs import BtrfsBackend
from imagestack.storage.record import CheckoutRecord, CheckoutRecordStore
from imagestack.storage.vfs import VfsBackend

if TYPE_CHECKING:
    from imagestack.config import Settings
    from imagestack.images.umoci import Umoci

BACKENDS: dict[str, type[StorageBackend]] = {
    VfsBackend.driver: VfsBackend,
    BtrfsBackend.driver: BtrfsBackend,
}


def get_backend(
    settings: Settings,
    tag_store: OciTagStore | None = None,
    umoci: Umoci | None = None,
) -> StorageBackend:
    """Create the storage backend for the configured driver.

    Args:
        settings: Application settings.
        tag_store: Image layout reader (created from settings if omitted).
        umoci: umoci wrapper (created from settings if omitted).

    Returns:
        StorageBackend instance.

    Raises:
        UnsupportedBackendError: If the driver has no implementation.
    """
    backend_cls = BACKENDS.get(settings.storage_driver)
    if backend_cls is None:
        raise UnsupportedBackendError(settings.storage_driver)
    if tag_store is None:
        tag_store = OciTagStore(settings.layout_dir)
    return backend_cls(settings, tag_store, umoci)


__all__ = [
    "BACKENDS",
    "BtrfsBackend",
    "CheckoutRecord",
    "CheckoutRecordStore",
    "ConfirmFn",
    "StorageBackend",
    "VfsBackend",
    "get_backend",
    "prompt_confirmation",
]
