"""Layer materialization delegated to umoci.

umoci owns every write to the image layout: creating the layout and empty
images, unpacking an image into a runtime bundle (rootfs/ plus umoci's
mtree metadata) and repacking a modified bundle as a new tag.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import TYPE_CHECKING

from imagestack.images.layout import OciTagStore
from imagestack.tools import run_tool
from imagestack.types import EMPTY_BASE

if TYPE_CHECKING:
    from imagestack.config import Settings

logger = logging.getLogger(__name__)


class Umoci:
    """Thin wrapper around the umoci CLI for one image layout.

    Attributes:
        layout_dir: OCI layout directory.
        umoci_bin: umoci executable.
        timeout: Per-command timeout in seconds.
    """

    def __init__(
        self,
        layout_dir: Path,
        umoci_bin: str = "umoci",
        timeout: int | None = None,
    ) -> None:
        self.layout_dir = layout_dir
        self.umoci_bin = umoci_bin
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> Umoci:
        return cls(settings.layout_dir, settings.umoci_bin, settings.tool_timeout)

    def image_ref(self, tag: str) -> str:
        """Compose the '<layout>:<tag>' reference umoci expects."""
        return f"{self.layout_dir}:{tag}"

    def _run(self, step: str, *args: str | Path) -> None:
        run_tool(step, [self.umoci_bin, *args], timeout=self.timeout)

    def init_layout(self) -> None:
        """Create an empty image layout if none exists."""
        if (self.layout_dir / "index.json").is_file():
            return
        self.layout_dir.parent.mkdir(parents=True, exist_ok=True)
        self._run("umoci init", "init", "--layout", self.layout_dir)

    def new_image(self, tag: str) -> None:
        """Create a new image without layers under tag."""
        self._run("umoci new", "new", "--image", self.image_ref(tag))

    def ensure_empty_image(self, tag_store: OciTagStore | None = None) -> str:
        """Make sure the layerless base image for 'empty' exists.

        Returns:
            The tag of the empty image.
        """
        self.init_layout()
        store = tag_store or OciTagStore(self.layout_dir)
        if not store.tag_exists(EMPTY_BASE):
            logger.info("Creating empty base image")
            self.new_image(EMPTY_BASE)
        return EMPTY_BASE

    def unpack(self, tag: str, bundle: Path) -> None:
        """Unpack an image into a runtime bundle directory.

        The bundle must not exist yet; umoci creates it.
        """
        self._run("umoci unpack", "unpack", "--image", self.image_ref(tag), bundle)

    def repack(self, tag: str, bundle: Path) -> None:
        """Repack a bundle's changes as a new layer tagged tag."""
        self._run("umoci repack", "repack", "--image", self.image_ref(tag), bundle)

    def set_entrypoint(self, tag: str, entrypoint: str) -> None:
        """Record an entrypoint in the image config of tag."""
        args: list[str | Path] = ["config", "--image", self.image_ref(tag)]
        for part in shlex.split(entrypoint):
            args.extend(["--config.entrypoint", part])
        self._run("umoci config", *args)


__all__ = ["Umoci"]
