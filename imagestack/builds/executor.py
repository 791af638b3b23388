"""Execution of target work inside a checked-out root filesystem.

The scheduler hands each work item to a StepExecutor. ChrootExecutor is
the host implementation:

- expand: extract an archive into the rootfs with tar
- run: run a shell command chrooted into the rootfs
- install: copy a host file or directory (SRC[:DEST]) into the rootfs

Relative host paths resolve against the recipe's directory.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol

from imagestack.tools import run_tool

if TYPE_CHECKING:
    from imagestack.config import Settings

logger = logging.getLogger(__name__)

MAX_SYMLINKS = 40


class StepExecutor(Protocol):
    """Applies work items to a root filesystem."""

    def expand(self, rootfs: Path, archive: str) -> None: ...

    def run(self, rootfs: Path, command: str) -> None: ...

    def install(self, rootfs: Path, spec: str) -> None: ...


def parse_install_spec(spec: str) -> tuple[str, str]:
    """Split an install step into host source and rootfs destination.

    Args:
        spec: 'SRC' or 'SRC:DEST'.

    Returns:
        (source, destination); destination defaults to '/<basename of SRC>'.

    Raises:
        ValueError: If the source is empty or the destination is relative.
    """
    source, sep, dest = spec.partition(":")
    if not source:
        raise ValueError(f"install step has no source: {spec!r}")
    if not sep or not dest:
        dest = "/" + Path(source).name
    if not dest.startswith("/"):
        raise ValueError(f"install destination must start with '/': {dest!r}")
    return source, dest


def resolve_in_rootfs(rootfs: Path, dest: str) -> Path:
    """Map an absolute image path onto the host, refusing escapes.

    Symlinks found inside the rootfs are followed the way they would be
    after chroot: absolute targets restart at the rootfs and '..' stops at
    it. Components that do not exist yet are taken literally.

    Args:
        rootfs: Root filesystem on the host.
        dest: Absolute path as seen from inside the image.

    Returns:
        Host path of dest, always under rootfs.resolve().

    Raises:
        ValueError: If dest climbs above '/' or symlinks loop.
            Also if the resolved path is not under the rootfs.
    """
    normalized = os.path.normpath(dest.lstrip("/"))
    if normalized == ".." or normalized.startswith("../"):
        raise ValueError(f"install destination escapes the rootfs: {dest!r}")

    root = rootfs.resolve()
    pending = list(reversed(PurePosixPath(normalized).parts))
    resolved: list[str] = []
    links_followed = 0
    while pending:
        part = pending.pop()
        if part in ("", ".", "/"):
            continue
        if part == "..":
            if resolved:
                resolved.pop()
            continue
        candidate = root.joinpath(*resolved, part)
        if not candidate.is_symlink():
            resolved.append(part)
            continue
        links_followed += 1
        if links_followed > MAX_SYMLINKS:
            raise ValueError(f"too many levels of symbolic links in {dest!r}")
        target = PurePosixPath(os.readlink(candidate))
        if target.is_absolute():
            resolved = []
        pending.extend(reversed(target.parts))

    host_path = root.joinpath(*resolved)
    if host_path != root and root not in host_path.parents:
        raise ValueError(f"install destination escapes the rootfs: {dest!r}")
    return host_path


class ChrootExecutor:
    """StepExecutor using tar, chroot and host file copies.

    Attributes:
        context_dir: Directory relative host paths resolve against.
        tar_bin: tar executable.
        chroot_bin: chroot executable.
        shell: Shell inside the rootfs used for run steps.
        timeout: Per-command timeout in seconds.
    """

    def __init__(
        self,
        context_dir: Path,
        tar_bin: str = "tar",
        chroot_bin: str = "chroot",
        shell: str = "/bin/sh",
        timeout: int | None = None,
    ) -> None:
        self.context_dir = context_dir
        self.tar_bin = tar_bin
        self.chroot_bin = chroot_bin
        self.shell = shell
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, context_dir: Path) -> ChrootExecutor:
        return cls(
            context_dir,
            tar_bin=settings.tar_bin,
            chroot_bin=settings.chroot_bin,
            timeout=settings.tool_timeout,
        )

    def host_path(self, path: str) -> Path:
        """Resolve a recipe path against the context directory."""
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.context_dir / candidate

    def expand(self, rootfs: Path, archive: str) -> None:
        archive_path = self.host_path(archive)
        logger.info("Expanding %s into %s", archive_path, rootfs)
        run_tool(
            "expand",
            [self.tar_bin, "-xf", archive_path, "-C", rootfs],
            timeout=self.timeout,
        )

    def run(self, rootfs: Path, command: str) -> None:
        logger.info("Running in %s: %s", rootfs, command)
        run_tool(
            "run",
            [self.chroot_bin, rootfs, self.shell, "-c", command],
            timeout=self.timeout,
        )

    def install(self, rootfs: Path, spec: str) -> None:
        source, dest = parse_install_spec(spec)
        source_path = self.host_path(source)
        logger.info("Installing %s to %s", source_path, dest)

        if not source_path.is_dir():
            dest_path = resolve_in_rootfs(rootfs, dest)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_path, dest_path)
            return

        # Every entry is resolved on its own so that symlinks already in the
        # image cannot redirect the copy onto the host.
        image_root = PurePosixPath(dest)
        resolve_in_rootfs(rootfs, str(image_root)).mkdir(parents=True, exist_ok=True)
        for dirpath, dirnames, filenames in os.walk(source_path):
            relative = Path(dirpath).relative_to(source_path)
            image_dir = image_root.joinpath(*relative.parts)
            for name in sorted(dirnames + filenames):
                self._install_entry(rootfs, Path(dirpath) / name, image_dir / name)

    def _install_entry(self, rootfs: Path, source: Path, image_path: PurePosixPath) -> None:
        """Copy one host file, directory or symlink to image_path."""
        parent = resolve_in_rootfs(rootfs, str(image_path.parent))
        parent.mkdir(parents=True, exist_ok=True)

        if source.is_symlink():
            link = parent / image_path.name
            if link.is_symlink() or link.is_file():
                link.unlink()
            os.symlink(os.readlink(source), link)
        elif source.is_dir():
            resolve_in_rootfs(rootfs, str(image_path)).mkdir(parents=True, exist_ok=True)
        else:
            shutil.copy2(source, resolve_in_rootfs(rootfs, str(image_path)))


__all__ = [
    "ChrootExecutor",
    "StepExecutor",
    "parse_install_spec",
    "resolve_in_rootfs",
]
