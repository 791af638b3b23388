"""Loopback volume lifecycle for the snapshot backend.

The btrfs backend keeps all subvolumes on a dedicated filesystem, usually a
loop-mounted sparse file. Both operations check the current state before
each step so they can be re-run safely; any failing step stops the
operation immediately.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from imagestack.errors import VolumeError
from imagestack.tools import run_tool

logger = logging.getLogger(__name__)


@dataclass
class VolumeStatus:
    """Current state of the backing volume.

    Attributes:
        backing_file: Path of the loopback file (None if not configured).
        backing_file_exists: Whether the backing file exists.
        mount_point: Mount point of the volume.
        mounted: Whether the mount point is mounted.
    """

    backing_file: Path | None
    backing_file_exists: bool
    mount_point: Path
    mounted: bool


def is_mountpoint(path: Path) -> bool:
    """Check if a path is a mount point."""
    return os.path.ismount(path)


def get_volume_status(backing_file: Path | None, mount_point: Path) -> VolumeStatus:
    """Inspect the backing volume without changing it."""
    return VolumeStatus(
        backing_file=backing_file,
        backing_file_exists=backing_file is not None and backing_file.exists(),
        mount_point=mount_point,
        mounted=is_mountpoint(mount_point),
    )


def provision_volume(
    size: str,
    backing_file: Path,
    mount_point: Path,
    mkfs_bin: str = "mkfs.btrfs",
    timeout: int | None = None,
) -> None:
    """Create and mount the btrfs backing volume if needed.

    The backing file and filesystem are created only if the file is absent;
    the filesystem is mounted only if the mount point is not mounted.

    Args:
        size: Size of the sparse backing file (truncate syntax, e.g. '20G').
        backing_file: Loopback file path.
        mount_point: Where to mount the filesystem.
        mkfs_bin: mkfs executable for btrfs.
        timeout: Per-command timeout in seconds.

    Raises:
        VolumeError: If a directory cannot be created.
        ExternalToolError: If truncate, mkfs or mount fails.
    """
    if not backing_file.exists():
        logger.info("Creating %s backing file %s", size, backing_file)
        try:
            backing_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise VolumeError(f"Cannot create {backing_file.parent}: {e}") from e
        run_tool("truncate", ["truncate", "-s", size, backing_file], timeout=timeout)
        run_tool("mkfs.btrfs", [mkfs_bin, backing_file], timeout=timeout)

    if not is_mountpoint(mount_point):
        logger.info("Mounting %s on %s", backing_file, mount_point)
        try:
            mount_point.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise VolumeError(f"Cannot create mount point {mount_point}: {e}") from e
        run_tool(
            "mount",
            ["mount", "-o", "loop", "-t", "btrfs", backing_file, mount_point],
            timeout=timeout,
        )


def deprovision_volume(
    backing_file: Path,
    mount_point: Path,
    timeout: int | None = None,
) -> None:
    """Unmount the volume and remove its backing file.

    Each step is skipped when already in the desired state. The unmount is
    lazy so a busy mount is detached rather than refused.

    Raises:
        VolumeError: If the backing file cannot be removed.
        ExternalToolError: If umount fails.
    """
    if is_mountpoint(mount_point):
        logger.info("Unmounting %s", mount_point)
        run_tool("umount", ["umount", "--lazy", mount_point], timeout=timeout)
    else:
        logger.debug("%s is not mounted", mount_point)

    if backing_file.exists():
        logger.info("Removing backing file %s", backing_file)
        try:
            backing_file.unlink()
        except OSError as e:
            raise VolumeError(f"Cannot remove {backing_file}: {e}") from e
    else:
        logger.debug("%s does not exist", backing_file)


__all__ = [
    "VolumeStatus",
    "deprovision_volume",
    "get_volume_status",
    "is_mountpoint",
    "provision_volume",
]
