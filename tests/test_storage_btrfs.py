"""Tests for the btrfs snapshot backend.

btrfs-progs and rsync are patched with plain directory operations:
subvolume create is mkdir, snapshot is a copy, delete is rmtree.
"""

import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from imagestack.config import Settings
from imagestack.errors import ExternalToolError, VolumeError
from imagestack.storage.btrfs import LAYER_SYNC_OPTIONS, PARTIAL_SUFFIX, BtrfsBackend


def fake_btrfs(step, argv, timeout=None):
    args = [str(arg) for arg in argv]
    op = args[2]
    if op == "create":
        Path(args[3]).mkdir()
    elif op == "snapshot":
        shutil.copytree(args[3], args[4], symlinks=True)
    elif op == "delete":
        shutil.rmtree(args[3])


def fake_sync(src, dest, options=None, rsync_bin="rsync", timeout=None):
    shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)


@pytest.fixture
def btrfs_settings(tmp_path: Path) -> Settings:
    settings = Settings(base_dir=tmp_path, storage_driver="btrfs")
    settings.snapshot_mount.mkdir()
    return settings


@pytest.fixture
def backend(btrfs_settings, tag_store, umoci):
    with (
        patch("imagestack.storage.btrfs.run_tool", side_effect=fake_btrfs) as mock_btrfs,
        patch("imagestack.storage.btrfs.sync_tree", side_effect=fake_sync) as mock_sync,
    ):
        backend = BtrfsBackend(btrfs_settings, tag_store, umoci)
        backend.mock_btrfs = mock_btrfs
        backend.mock_sync = mock_sync
        yield backend


class TestImportTag:
    """Tests for import_tag (layer chain materialization)."""

    def test_builds_chain(self, backend, tag_store, umoci):
        """Each layer is snapshotted from its predecessor."""
        tag_store.layers["os"] = ["l1"]
        tag_store.layers["app"] = ["l1", "l2"]

        created = backend.import_tag("app")

        assert created == ["l1", "l2"]
        assert backend.subvolume_path("l1").is_dir()
        assert backend.subvolume_path("l2").is_dir()
        assert [call[1] for call in umoci.calls_for("unpack")] == ["os", "app"]
        steps = [call.args[0] for call in backend.mock_btrfs.call_args_list]
        assert steps == ["btrfs subvolume create", "btrfs subvolume snapshot"]
        assert not list(backend.mount_point.glob("*" + PARTIAL_SUFFIX))

    def test_existing_layers_skipped(self, backend, tag_store):
        tag_store.layers["app"] = ["l1", "l2"]
        backend.subvolume_path("l1").mkdir()

        assert backend.import_tag("app") == ["l2"]
        steps = [call.args[0] for call in backend.mock_btrfs.call_args_list]
        assert steps == ["btrfs subvolume snapshot"]

    def test_untagged_layers_skipped(self, backend, tag_store):
        """Layers no tag resolves to are folded into the next layer."""
        tag_store.layers["app"] = ["l0", "l2"]

        assert backend.import_tag("app") == ["l2"]
        assert not backend.subvolume_path("l0").exists()

    def test_sync_uses_exact_mirror(self, backend, tag_store):
        tag_store.layers["app"] = ["l1"]

        backend.import_tag("app")

        assert backend.mock_sync.call_args.args[2] == LAYER_SYNC_OPTIONS


class TestCheckoutCommit:
    """Tests for checkout/commit/abort on btrfs."""

    def test_checkout_snapshots_layer(self, backend, tag_store):
        tag_store.layers["app"] = ["l1"]

        backend.checkout("app")

        assert backend.working_copy == backend.mount_point / "mounted"
        assert backend.rootfs.is_dir()
        assert backend.subvolume_path("l1").is_dir()

    def test_checkout_empty(self, backend, tag_store):
        """A layerless image becomes a fresh subvolume."""
        backend.checkout("empty")

        assert backend.rootfs.is_dir()
        assert backend.records.load().digest is None

    def test_commit_materializes_new_layer(self, backend, tag_store):
        tag_store.layers["app"] = ["l1"]
        backend.checkout("app")
        (backend.rootfs / "hello").write_text("hi")

        digest = backend.commit("next")

        assert digest == "layer-next"
        assert (backend.subvolume_path("layer-next") / "rootfs" / "hello").exists()
        assert not backend.working_copy.exists()
        assert not backend.records.has_residue()

    def test_abort_deletes_working_copy(self, backend, tag_store):
        tag_store.layers["app"] = ["l1"]
        backend.checkout("app")

        backend.abort(force=True)

        assert not backend.working_copy.exists()
        assert backend.subvolume_path("l1").is_dir()

    def test_missing_volume(self, backend, tag_store):
        tag_store.layers["app"] = ["l1"]
        backend.mount_point.rmdir()

        with pytest.raises(VolumeError):
            backend.checkout("app")
        assert not backend.records.has_residue()


    def test_failed_sync_on_commit_leaves_no_partial(self, backend, tag_store):
        tag_store.layers["app"] = ["l1"]
        backend.checkout("app")
        backend.mock_sync.side_effect = ExternalToolError(
            "rsync", "exited with code 23", exit_code=23
        )

        with pytest.raises(ExternalToolError):
            backend.commit("next")

        assert not list(backend.mount_point.glob("*" + PARTIAL_SUFFIX))
        assert backend.verify_state() == []
        backend.abort(force=True)
        assert not backend.records.has_residue()

    def test_failed_snapshot_on_import_leaves_no_partial(self, backend, tag_store):
        tag_store.layers["os"] = ["l1"]
        tag_store.layers["app"] = ["l1", "l2"]

        def fail_snapshot(step, argv, timeout=None):
            fake_btrfs(step, argv, timeout)
            if step == "btrfs subvolume snapshot":
                raise ExternalToolError(step, "exited with code 1", exit_code=1)

        backend.mock_btrfs.side_effect = fail_snapshot

        with pytest.raises(ExternalToolError):
            backend.import_tag("app")

        assert backend.subvolume_path("l1").is_dir()
        assert not list(backend.mount_point.glob("*" + PARTIAL_SUFFIX))
        steps = [call.args[0] for call in backend.mock_btrfs.call_args_list]
        assert steps[-1] == "btrfs subvolume delete"


class TestVerifyBackend:
    """Tests for btrfs-specific consistency checks."""

    def test_orphaned_partial(self, backend):
        (backend.mount_point / ("l1" + PARTIAL_SUFFIX)).mkdir()
        assert any("orphaned partial" in issue for issue in backend.verify_state())

    def test_missing_layer_subvolume(self, backend, tag_store):
        tag_store.layers["app"] = ["l1"]
        backend.checkout("app")
        shutil.rmtree(backend.subvolume_path("l1"))

        issues = backend.verify_state()

        assert any("has no subvolume" in issue for issue in issues)


class TestEnsureVolume:
    """Tests for loopback provisioning on demand."""

    def test_provisions_loopback(self, tmp_path: Path, tag_store, umoci):
        settings = Settings(
            base_dir=tmp_path,
            storage_driver="btrfs",
            loopback_file=tmp_path / "btrfs.img",
            volume_size="1G",
        )
        backend = BtrfsBackend(settings, tag_store, umoci)

        with patch("imagestack.storage.btrfs.provision_volume") as mock_provision:
            backend.ensure_volume()

        mock_provision.assert_called_once_with(
            "1G", tmp_path / "btrfs.img", tmp_path / "btrfs", timeout=None
        )
