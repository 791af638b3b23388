"""Configuration settings for imagestack.

Uses pydantic-settings for config parsing from environment variables,
YAML config files and defaults. Configuration precedence:
constructor arguments > env vars > ./imagestack.yml > ~/.config/imagestack.yml
> defaults.

A Settings instance is built once per process and passed explicitly to the
tag store, storage backend and scheduler.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

CONFIG_FILE_NAME = "imagestack.yml"


def _default_config_files() -> list[Path]:
    """Return YAML config files in increasing order of precedence."""
    return [Path.home() / ".config" / CONFIG_FILE_NAME, Path(CONFIG_FILE_NAME)]


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IMAGESTACK_
    prefix and from imagestack.yml files. CLI flags can override these at
    runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMAGESTACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        yaml_file=_default_config_files(),
        yaml_file_encoding="utf-8",
    )

    # Paths
    base_dir: Path = Field(
        default=Path("."),
        description="Root directory for checkout state and working copies",
    )
    oci_dir: Path | None = Field(
        default=None,
        description="OCI image layout directory (defaults to <base_dir>/oci)",
    )

    # Storage
    storage_driver: Literal["vfs", "btrfs", "zfs", "lvm"] = Field(
        default="vfs",
        description="Filesystem strategy used to materialize working copies",
    )
    btrfs_mount: Path | None = Field(
        default=None,
        description="Mount point of the btrfs volume (defaults to <base_dir>/btrfs)",
    )
    loopback_file: Path | None = Field(
        default=None,
        description="Backing file for the btrfs loopback volume",
    )
    volume_size: str = Field(
        default="20G",
        pattern=r"^[0-9]+[KMGT]?$",
        description="Size of the loopback backing file (truncate syntax)",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    tool_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout in seconds for each external command (None = no timeout)",
    )

    # External tools
    umoci_bin: str = Field(default="umoci", description="umoci executable")
    rsync_bin: str = Field(default="rsync", description="rsync executable")
    btrfs_bin: str = Field(default="btrfs", description="btrfs-progs executable")
    chroot_bin: str = Field(default="chroot", description="chroot executable")
    tar_bin: str = Field(default="tar", description="tar executable")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _derive_paths(self) -> "Settings":
        """Fill in paths that default relative to base_dir."""
        if self.oci_dir is None:
            self.oci_dir = self.base_dir / "oci"
        if self.btrfs_mount is None:
            self.btrfs_mount = self.base_dir / "btrfs"
        return self

    @property
    def layout_dir(self) -> Path:
        """OCI layout directory with defaults applied."""
        return self.oci_dir or self.base_dir / "oci"

    @property
    def snapshot_mount(self) -> Path:
        """btrfs mount point with defaults applied."""
        return self.btrfs_mount or self.base_dir / "btrfs"

    @property
    def unpack_dir(self) -> Path:
        """Location of the single working copy for the configured driver."""
        if self.storage_driver == "btrfs":
            return self.snapshot_mount / "mounted"
        return self.base_dir / "unpacked"

    @property
    def record_tag_file(self) -> Path:
        """File holding the checked-out tag name."""
        return self.base_dir / "checkout.tag"

    @property
    def record_digest_file(self) -> Path:
        """File holding the checked-out content digest."""
        return self.base_dir / "checkout.digest"


def get_settings(**overrides: object) -> Settings:
    """Build the application settings.

    Args:
        overrides: Explicit values that take precedence over every source.

    Returns:
        Settings instance loaded from overrides, environment and config files.
    """
    return Settings(**overrides)  # type: ignore[arg-type]


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["CONFIG_FILE_NAME", "Settings", "get_settings", "print_settings_json"]
