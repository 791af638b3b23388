"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from imagestack.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert settings.base_dir == Path(".")
        assert settings.storage_driver == "vfs"
        assert settings.loopback_file is None
        assert settings.volume_size == "20G"
        assert settings.log_level == "INFO"
        assert settings.tool_timeout is None
        assert settings.umoci_bin == "umoci"

    def test_paths_derive_from_base_dir(self, tmp_path: Path) -> None:
        """Layout and mount default below base_dir."""
        settings = Settings(base_dir=tmp_path)

        assert settings.layout_dir == tmp_path / "oci"
        assert settings.snapshot_mount == tmp_path / "btrfs"
        assert settings.record_tag_file == tmp_path / "checkout.tag"
        assert settings.record_digest_file == tmp_path / "checkout.digest"

    def test_explicit_paths_win(self, tmp_path: Path) -> None:
        """Explicit oci_dir and btrfs_mount are kept."""
        settings = Settings(
            base_dir=tmp_path,
            oci_dir=tmp_path / "images",
            btrfs_mount=tmp_path / "mnt",
        )

        assert settings.layout_dir == tmp_path / "images"
        assert settings.snapshot_mount == tmp_path / "mnt"

    def test_paths_derive_without_validation(self, tmp_path: Path) -> None:
        """Copies that bypass validation still get derived paths."""
        settings = Settings(base_dir=tmp_path).model_copy(
            update={"base_dir": tmp_path / "other", "oci_dir": None, "btrfs_mount": None}
        )

        assert settings.layout_dir == tmp_path / "other" / "oci"
        assert settings.snapshot_mount == tmp_path / "other" / "btrfs"

    def test_unpack_dir_per_driver(self, tmp_path: Path) -> None:
        """The working copy lives on the btrfs mount for the btrfs driver."""
        vfs = Settings(base_dir=tmp_path, storage_driver="vfs")
        btrfs = Settings(base_dir=tmp_path, storage_driver="btrfs")

        assert vfs.unpack_dir == tmp_path / "unpacked"
        assert btrfs.unpack_dir == tmp_path / "btrfs" / "mounted"

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "IMAGESTACK_STORAGE_DRIVER": "btrfs",
                "IMAGESTACK_LOG_LEVEL": "DEBUG",
                "IMAGESTACK_TOOL_TIMEOUT": "30",
            },
        ):
            settings = Settings()
            assert settings.storage_driver == "btrfs"
            assert settings.log_level == "DEBUG"
            assert settings.tool_timeout == 30

    def test_invalid_driver_rejected(self) -> None:
        """Unknown storage drivers fail validation."""
        with pytest.raises(ValidationError):
            Settings(storage_driver="overlay")

    def test_invalid_volume_size_rejected(self) -> None:
        """Volume size must use truncate syntax."""
        with pytest.raises(ValidationError):
            Settings(volume_size="lots")

    def test_yaml_config_file(self, tmp_path: Path, monkeypatch) -> None:
        """imagestack.yml in the working directory is read."""
        (tmp_path / "imagestack.yml").write_text(
            "storage_driver: btrfs\nvolume_size: 5G\n"
        )
        monkeypatch.chdir(tmp_path)

        settings = Settings()

        assert settings.storage_driver == "btrfs"
        assert settings.volume_size == "5G"

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch) -> None:
        """Environment variables take precedence over config files."""
        (tmp_path / "imagestack.yml").write_text("volume_size: 5G\n")
        monkeypatch.chdir(tmp_path)

        with patch.dict(os.environ, {"IMAGESTACK_VOLUME_SIZE": "7G"}):
            settings = Settings()

        assert settings.volume_size == "7G"


class TestGetSettings:
    """Test get_settings function."""

    def test_overrides_take_precedence(self, tmp_path: Path) -> None:
        """Explicit overrides beat the environment."""
        with patch.dict(os.environ, {"IMAGESTACK_STORAGE_DRIVER": "btrfs"}):
            settings = get_settings(base_dir=tmp_path, storage_driver="vfs")

        assert settings.storage_driver == "vfs"
        assert settings.base_dir == tmp_path

    def test_returns_fresh_instances(self) -> None:
        """There is no cached global settings object."""
        assert get_settings() is not get_settings()


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_output_is_valid_json(self, tmp_path: Path) -> None:
        """Should return valid JSON containing every field."""
        output = print_settings_json(Settings(base_dir=tmp_path))
        data = json.loads(output)

        assert data["storage_driver"] == "vfs"
        assert data["oci_dir"] == str(tmp_path / "oci")
        assert "volume_size" in data
