"""Read-only view over an OCI image layout.

The layout is read directly from disk: index.json lists manifest
descriptors whose org.opencontainers.image.ref.name annotation is the tag,
and every blob lives under blobs/<algorithm>/<encoded>. Nothing in this
module writes to the layout; new tags are produced by umoci.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

from imagestack.errors import (
    AmbiguousTagError,
    InvalidLayoutError,
    TagNotFoundError,
)

logger = logging.getLogger(__name__)

REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"
MEDIA_TYPE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"


class TagStore(Protocol):
    """Interface the scheduler and storage backends need from the image store."""

    def list_tags(self) -> list[str]: ...

    def resolve_digest(self, tag: str) -> str | None: ...

    def tag_exists(self, tag: str) -> bool: ...


def split_digest(digest: str) -> tuple[str, str]:
    """Split 'algorithm:encoded' into its parts.

    Raises:
        InvalidLayoutError: If the digest is malformed.
    """
    algorithm, sep, encoded = digest.partition(":")
    if not sep or not algorithm or not encoded:
        raise InvalidLayoutError(f"Malformed digest: {digest!r}")
    return algorithm, encoded


class OciTagStore:
    """TagStore backed by an OCI image layout directory.

    Attributes:
        layout_dir: Root of the image layout.
    """

    def __init__(self, layout_dir: Path) -> None:
        self.layout_dir = layout_dir

    @property
    def index_path(self) -> Path:
        return self.layout_dir / "index.json"

    def exists(self) -> bool:
        """Whether the layout has been initialized."""
        return self.index_path.is_file()

    def _read_json(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidLayoutError(f"Cannot read {path}: {e}") from e
        if not isinstance(data, dict):
            raise InvalidLayoutError(f"Expected a JSON object in {path}")
        return data

    def blob_path(self, digest: str) -> Path:
        """Path of the blob for a digest."""
        algorithm, encoded = split_digest(digest)
        return self.layout_dir / "blobs" / algorithm / encoded

    def read_blob(self, digest: str) -> dict[str, Any]:
        """Load a JSON blob (manifest or config)."""
        return self._read_json(self.blob_path(digest))

    def _descriptors(self) -> list[dict[str, Any]]:
        if not self.exists():
            return []
        manifests = self._read_json(self.index_path).get("manifests") or []
        if not isinstance(manifests, list):
            raise InvalidLayoutError(f"'manifests' is not a list in {self.index_path}")
        return manifests

    def _descriptors_for(self, tag: str) -> list[dict[str, Any]]:
        return [
            d
            for d in self._descriptors()
            if (d.get("annotations") or {}).get(REF_NAME_ANNOTATION) == tag
        ]

    def list_tags(self) -> list[str]:
        """List tags in the layout.

        Returns:
            Sorted unique tag names; empty if the layout does not exist.
        """
        names = {
            (d.get("annotations") or {}).get(REF_NAME_ANNOTATION)
            for d in self._descriptors()
        }
        return sorted(name for name in names if name)

    def tag_exists(self, tag: str) -> bool:
        return bool(self._descriptors_for(tag))

    def _manifest_for(self, tag: str) -> dict[str, Any]:
        descriptors = self._descriptors_for(tag)
        if not descriptors:
            raise TagNotFoundError(tag)
        if len(descriptors) > 1:
            raise AmbiguousTagError(tag, len(descriptors))
        descriptor = descriptors[0]
        if descriptor.get("mediaType") != MEDIA_TYPE_MANIFEST:
            raise InvalidLayoutError(
                f"Tag {tag} points at unsupported media type "
                f"{descriptor.get('mediaType')!r}"
            )
        return self.read_blob(descriptor["digest"])

    def layer_digests(self, tag: str) -> list[str]:
        """Encoded digests of the tag's non-empty layers, oldest first.

        History entries marked empty_layer (config-only changes such as a
        new entrypoint) do not consume a layer. Images without history use
        the manifest layer list as is.

        Raises:
            TagNotFoundError: If the tag does not exist.
            AmbiguousTagError: If the tag names more than one manifest.
            InvalidLayoutError: If manifest or config are malformed.
        """
        manifest = self._manifest_for(tag)
        layers = manifest.get("layers") or []
        config_descriptor = manifest.get("config")
        if not config_descriptor:
            raise InvalidLayoutError(f"Manifest for {tag} has no config")
        history = self.read_blob(config_descriptor["digest"]).get("history") or []

        if not history:
            return [split_digest(layer["digest"])[1] for layer in layers]

        digests: list[str] = []
        layer_idx = 0
        for entry in history:
            if entry.get("empty_layer"):
                continue
            if layer_idx >= len(layers):
                raise InvalidLayoutError(
                    f"History of {tag} references more layers than the manifest has"
                )
            digests.append(split_digest(layers[layer_idx]["digest"])[1])
            layer_idx += 1
        return digests

    def resolve_digest(self, tag: str) -> str | None:
        """Resolve a tag to the digest of its most recent non-empty layer.

        Args:
            tag: Tag name.

        Returns:
            Encoded layer digest, or None for an image without layers.

        Raises:
            TagNotFoundError: If the tag does not exist.
            AmbiguousTagError: If the tag names more than one manifest.
            InvalidLayoutError: If manifest or config are malformed.
        """
        digests = self.layer_digests(tag)
        return digests[-1] if digests else None

    def tags_by_digest(self) -> dict[str, str]:
        """Map each resolvable top-layer digest to one tag carrying it."""
        mapping: dict[str, str] = {}
        for tag in self.list_tags():
            try:
                digest = self.resolve_digest(tag)
            except (AmbiguousTagError, InvalidLayoutError) as e:
                logger.warning("Skipping tag %s: %s", tag, e)
                continue
            if digest is not None:
                mapping.setdefault(digest, tag)
        return mapping


__all__ = [
    "MEDIA_TYPE_MANIFEST",
    "REF_NAME_ANNOTATION",
    "OciTagStore",
    "TagStore",
    "split_digest",
]
