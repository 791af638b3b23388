"""Copy-on-write snapshot storage backend (btrfs).

Layout on the btrfs volume::

    <mount>/<digest>            one subvolume per materialized layer,
                                holding a full umoci bundle
    <mount>/<digest>.partial    a layer being populated (renamed on success)
    <mount>/mounted             the working copy, a snapshot of a layer

Each layer's subvolume is a snapshot of its predecessor's, populated by
mirroring the unpacked image over it, so images that share history share
storage. Checkout is a single snapshot instead of a full unpack.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from imagestack.errors import StorageError, VolumeError
from imagestack.storage.base import StorageBackend
from imagestack.storage.record import CheckoutRecord
from imagestack.storage.volume import provision_volume
from imagestack.tools import run_tool, sync_tree
from imagestack.types import SyncOptions

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"

# Exact mirror: hardlinks, numeric ids, sparse files, device nodes, pruning
LAYER_SYNC_OPTIONS = SyncOptions(
    preserve_hardlinks=True,
    numeric_ids=True,
    sparse=True,
    delete=True,
    devices=True,
)


class BtrfsBackend(StorageBackend):
    """Snapshot-on-checkout backend over a btrfs volume."""

    driver = "btrfs"

    @property
    def mount_point(self) -> Path:
        return self.settings.snapshot_mount

    def subvolume_path(self, digest: str) -> Path:
        """Subvolume holding the layer with this digest."""
        return self.mount_point / digest

    def _btrfs(self, step: str, *args: str | Path) -> None:
        run_tool(
            step,
            [self.settings.btrfs_bin, "subvolume", *args],
            timeout=self.settings.tool_timeout,
        )

    def create_subvolume(self, path: Path) -> None:
        self._btrfs("btrfs subvolume create", "create", path)

    def snapshot_subvolume(self, source: Path, dest: Path) -> None:
        self._btrfs("btrfs subvolume snapshot", "snapshot", source, dest)

    def delete_subvolume(self, path: Path) -> None:
        self._btrfs("btrfs subvolume delete", "delete", path)

    def ensure_volume(self) -> None:
        """Make sure the btrfs volume is available.

        With a configured loopback file the volume is provisioned (a no-op
        when already mounted); otherwise the mount point must already exist.

        Raises:
            VolumeError: If no volume is available.
        """
        if self.settings.loopback_file is not None:
            provision_volume(
                self.settings.volume_size,
                self.settings.loopback_file,
                self.mount_point,
                timeout=self.settings.tool_timeout,
            )
        elif not self.mount_point.is_dir():
            raise VolumeError(
                f"btrfs mount {self.mount_point} does not exist and no "
                "loopback file is configured"
            )

    def _materialize_layer(
        self, parent: str | None, digest: str, content: Path
    ) -> Path:
        """Create the subvolume for digest from its parent and content.

        Args:
            parent: Digest of the predecessor layer, or None for a first layer.
            digest: Digest of the layer being created.
            content: Bundle directory whose contents the layer must mirror.

        Returns:
            Path of the new subvolume.
        """
        final = self.subvolume_path(digest)
        partial = final.with_name(final.name + PARTIAL_SUFFIX)
        try:
            if parent is not None and self.subvolume_path(parent).exists():
                logger.info("Snapshotting layer %s from %s", digest, parent)
                self.snapshot_subvolume(self.subvolume_path(parent), partial)
            else:
                logger.info("Creating first layer %s", digest)
                self.create_subvolume(partial)
            sync_tree(
                content,
                partial,
                LAYER_SYNC_OPTIONS,
                rsync_bin=self.settings.rsync_bin,
                timeout=self.settings.tool_timeout,
            )
            try:
                os.rename(partial, final)
            except OSError as e:
                raise StorageError(f"Cannot move {partial} into place: {e}") from e
        except Exception:
            # Only a killed process may leave a .partial behind
            if partial.exists():
                logger.error("Populating layer %s failed, deleting %s", digest, partial)
                self.delete_subvolume(partial)
            raise
        return final

    def import_tag(self, tag: str) -> list[str]:
        """Materialize the layer chain of tag as subvolumes.

        Walks the tag's layers oldest first. A missing layer is snapshotted
        from the nearest materialized predecessor and populated from an
        image whose top layer it is; layers no tag resolves to cannot be
        unpacked on their own and are skipped, the next layer mirroring the
        full content over the last materialized one.

        Args:
            tag: Tag to import.

        Returns:
            Digests of newly created subvolumes.
        """
        self.ensure_volume()
        digests = self.tag_store.layer_digests(tag)
        sources = self.tag_store.tags_by_digest()
        if digests:
            sources[digests[-1]] = tag

        created: list[str] = []
        previous: str | None = None
        for digest in digests:
            if self.subvolume_path(digest).exists():
                previous = digest
                continue
            source_tag = sources.get(digest)
            if source_tag is None:
                logger.debug("No tag carries layer %s, skipping", digest)
                continue
            with tempfile.TemporaryDirectory(prefix="imagestack_") as tmp:
                bundle = Path(tmp) / "bundle"
                self.umoci.unpack(source_tag, bundle)
                self._materialize_layer(previous, digest, bundle)
            created.append(digest)
            previous = digest
        return created

    def _materialize(self, record: CheckoutRecord) -> None:
        self.ensure_volume()
        if record.digest is None:
            # Layerless image: fresh subvolume holding the unpacked bundle
            self.create_subvolume(self.working_copy)
            with tempfile.TemporaryDirectory(prefix="imagestack_") as tmp:
                bundle = Path(tmp) / "bundle"
                self.umoci.unpack(record.tag, bundle)
                sync_tree(
                    bundle,
                    self.working_copy,
                    LAYER_SYNC_OPTIONS,
                    rsync_bin=self.settings.rsync_bin,
                    timeout=self.settings.tool_timeout,
                )
            return

        if not self.subvolume_path(record.digest).exists():
            self.import_tag(record.tag)
        self.snapshot_subvolume(self.subvolume_path(record.digest), self.working_copy)

    def _commit(
        self, record: CheckoutRecord, new_tag: str, entrypoint: str | None
    ) -> str | None:
        self.umoci.repack(new_tag, self.working_copy)
        if entrypoint:
            self.umoci.set_entrypoint(new_tag, entrypoint)
        digest = self.tag_store.resolve_digest(new_tag)
        if digest is not None and not self.subvolume_path(digest).exists():
            self._materialize_layer(record.digest, digest, self.working_copy)
        self.delete_subvolume(self.working_copy)
        return digest

    def _discard(self) -> None:
        if self.working_copy.exists():
            self.delete_subvolume(self.working_copy)

    def _verify_backend(self, record: CheckoutRecord | None) -> list[str]:
        issues: list[str] = []
        if not self.mount_point.is_dir():
            return issues
        if record is not None and record.digest is not None:
            if not self.subvolume_path(record.digest).exists():
                issues.append(
                    f"checked-out digest {record.digest} has no subvolume "
                    f"under {self.mount_point}"
                )
        for entry in sorted(self.mount_point.glob("*" + PARTIAL_SUFFIX)):
            issues.append(f"orphaned partial subvolume {entry}")
        return issues


__all__ = ["LAYER_SYNC_OPTIONS", "BtrfsBackend"]
