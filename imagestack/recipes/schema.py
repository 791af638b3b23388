"""Pydantic models for recipe schema validation.

A recipe file is a mapping from target name to a step mapping. This module
validates one step mapping against the closed key set before it becomes a
Target. Structural checks that need the whole graph or the image store live
in recipes/graph.py.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TargetSchema(BaseModel):
    """Schema for a single recipe target.

    Attributes:
        base: Another target name, an existing tag, or 'empty'.
        run: Shell commands run inside the root filesystem.
        install: Host paths (SRC[:DEST]) copied into the root filesystem.
        expand: Archives extracted into the root filesystem.
        entrypoint: Entrypoint recorded in the image config ('cmd' alias).
    """

    model_config = ConfigDict(extra="forbid")

    base: str = Field(default="", description="Base target, tag or 'empty'")
    run: list[str] = Field(default_factory=list, description="Shell commands")
    install: list[str] = Field(default_factory=list, description="Install steps")
    expand: list[str] = Field(default_factory=list, description="Archives to expand")
    entrypoint: str | None = Field(default=None, description="Image entrypoint")

    @model_validator(mode="before")
    @classmethod
    def merge_cmd_alias(cls, data: Any) -> Any:
        """Accept 'cmd' as an alias for 'entrypoint', at most once."""
        if not isinstance(data, dict) or "cmd" not in data:
            return data
        if "entrypoint" in data:
            raise ValueError("only one of 'entrypoint' and 'cmd' may be given")
        data = dict(data)
        data["entrypoint"] = data.pop("cmd")
        return data

    @field_validator("run", "install", "expand", mode="before")
    @classmethod
    def coerce_string_list(cls, v: Any) -> Any:
        """Allow a single string where a list of strings is expected."""
        if isinstance(v, str):
            return [v]
        return v

    @property
    def has_work(self) -> bool:
        """Whether any work field is populated."""
        return bool(self.run or self.install or self.expand or self.entrypoint)


__all__ = ["TargetSchema"]
