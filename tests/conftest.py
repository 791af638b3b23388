"""Shared fixtures and fakes.

The fakes stand in for umoci, the image layout and the chroot executor so
that storage and scheduling logic can be exercised without root, btrfs,
umoci or rsync.
"""

from pathlib import Path

import pytest

from imagestack.config import Settings
from imagestack.errors import ExternalToolError, TagNotFoundError
from imagestack.types import EMPTY_BASE


class FakeTagStore:
    """In-memory tag store: tag -> layer digests, oldest first."""

    def __init__(self, tags: dict[str, list[str]] | None = None) -> None:
        self.layers: dict[str, list[str]] = dict(tags or {})

    def list_tags(self) -> list[str]:
        return sorted(self.layers)

    def tag_exists(self, tag: str) -> bool:
        return tag in self.layers

    def layer_digests(self, tag: str) -> list[str]:
        if tag not in self.layers:
            raise TagNotFoundError(tag)
        return list(self.layers[tag])

    def resolve_digest(self, tag: str) -> str | None:
        digests = self.layer_digests(tag)
        return digests[-1] if digests else None

    def tags_by_digest(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for tag in self.list_tags():
            digest = self.resolve_digest(tag)
            if digest is not None:
                mapping.setdefault(digest, tag)
        return mapping


class FakeUmoci:
    """Records umoci calls and updates a FakeTagStore like umoci would."""

    def __init__(self, tag_store: FakeTagStore) -> None:
        self.tag_store = tag_store
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise ExternalToolError(f"umoci {name}", "exited with code 1", exit_code=1)

    def init_layout(self) -> None:
        self._record("init")

    def new_image(self, tag: str) -> None:
        self._record("new", tag)
        self.tag_store.layers[tag] = []

    def ensure_empty_image(self, tag_store=None) -> str:
        if not self.tag_store.tag_exists(EMPTY_BASE):
            self.new_image(EMPTY_BASE)
        return EMPTY_BASE

    def unpack(self, tag: str, bundle: Path) -> None:
        self._record("unpack", tag, bundle)
        (bundle / "rootfs").mkdir(parents=True)
        (bundle / "config.json").write_text("{}")

    def repack(self, tag: str, bundle: Path) -> None:
        self._record("repack", tag, bundle)
        source = self.calls_for("unpack")[-1][1] if self.calls_for("unpack") else None
        parent = self.tag_store.layers.get(source, []) if source else []
        self.tag_store.layers[tag] = [*parent, f"layer-{tag}"]

    def set_entrypoint(self, tag: str, entrypoint: str) -> None:
        self._record("config", tag, entrypoint)

    def calls_for(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


class FakeExecutor:
    """StepExecutor that records work items and optionally fails."""

    def __init__(self) -> None:
        self.steps: list[tuple[str, Path, str]] = []
        self.fail_on: dict[str, Exception] = {}

    def _apply(self, kind: str, rootfs: Path, item: str) -> None:
        self.steps.append((kind, rootfs, item))
        if item in self.fail_on:
            raise self.fail_on[item]

    def expand(self, rootfs: Path, archive: str) -> None:
        self._apply("expand", rootfs, archive)

    def run(self, rootfs: Path, command: str) -> None:
        self._apply("run", rootfs, command)

    def install(self, rootfs: Path, spec: str) -> None:
        self._apply("install", rootfs, spec)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory."""
    return Settings(base_dir=tmp_path)


@pytest.fixture
def tag_store() -> FakeTagStore:
    return FakeTagStore()


@pytest.fixture
def umoci(tag_store: FakeTagStore) -> FakeUmoci:
    return FakeUmoci(tag_store)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()
