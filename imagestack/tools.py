"""Execution of external commands.

Every call out to umoci, rsync, btrfs-progs, tar, chroot or the mount
utilities goes through run_tool(), which logs the command line and turns
non-zero exits, timeouts and spawn failures into ExternalToolError tagged
with the step that issued them. Nothing here retries.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path

from imagestack.errors import ExternalToolError
from imagestack.types import SyncOptions

logger = logging.getLogger(__name__)


def run_tool(
    step: str,
    argv: Sequence[str | Path],
    cwd: Path | None = None,
    timeout: int | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run an external command and fail loudly.

    Args:
        step: Short identity of the operation (e.g., 'umoci unpack').
        argv: Command and arguments.
        cwd: Optional working directory.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        The completed process with captured stdout/stderr.

    Raises:
        ExternalToolError: If the command cannot be started, times out or
            exits non-zero.
    """
    cmd = [str(arg) for arg in argv]
    cmd_str = shlex.join(cmd)
    logger.info("Executing %s: %s", step, cmd_str)

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        logger.error("%s timed out after %s seconds", step, timeout)
        raise ExternalToolError(
            step,
            f"timed out after {timeout} seconds",
            argv=cmd,
            exit_code=-1,
        ) from e
    except OSError as e:
        logger.error("Failed to execute %s: %s", step, e)
        raise ExternalToolError(step, f"failed to execute: {e}", argv=cmd) from e

    if result.returncode != 0:
        output = (result.stderr or result.stdout or "").strip()
        logger.error("%s failed with exit code %d: %s", step, result.returncode, output)
        raise ExternalToolError(
            step,
            f"exited with code {result.returncode}: {output}",
            argv=cmd,
            exit_code=result.returncode,
            output=output,
        )
    return result


def compose_sync_command(
    src: Path,
    dest: Path,
    options: SyncOptions,
    rsync_bin: str = "rsync",
) -> list[str]:
    """Compose the rsync command mirroring the contents of src into dest.

    Args:
        src: Source directory.
        dest: Destination directory.
        options: Fidelity options.
        rsync_bin: rsync executable.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [rsync_bin, "-a", "-x"]
    if options.preserve_hardlinks:
        cmd.append("-H")
    if options.numeric_ids:
        cmd.append("--numeric-ids")
    if options.sparse:
        cmd.append("--sparse")
    if options.delete:
        cmd.append("--delete")
    if options.devices:
        cmd.append("--devices")
    # Trailing slash copies the contents of src rather than src itself
    cmd.append(f"{src}/")
    cmd.append(f"{dest}/")
    return cmd


def sync_tree(
    src: Path,
    dest: Path,
    options: SyncOptions | None = None,
    rsync_bin: str = "rsync",
    timeout: int | None = None,
) -> None:
    """Mirror src into dest exactly.

    Args:
        src: Source directory.
        dest: Destination directory.
        options: Fidelity options (defaults to full fidelity with delete).
        rsync_bin: rsync executable.
        timeout: Timeout in seconds.

    Raises:
        ExternalToolError: If rsync fails.
    """
    cmd = compose_sync_command(src, dest, options or SyncOptions(), rsync_bin)
    run_tool("rsync", cmd, timeout=timeout)


__all__ = ["compose_sync_command", "run_tool", "sync_tree"]
