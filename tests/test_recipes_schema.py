"""Tests for recipes/schema.py."""

import pytest
from pydantic import ValidationError

from imagestack.recipes.schema import TargetSchema


class TestTargetSchema:
    """Tests for TargetSchema validation."""

    def test_minimal(self):
        """A base and one command validate."""
        schema = TargetSchema.model_validate({"base": "empty", "run": ["true"]})
        assert schema.base == "empty"
        assert schema.run == ["true"]
        assert schema.install == []
        assert schema.entrypoint is None
        assert schema.has_work

    def test_single_string_becomes_list(self):
        """run/install/expand accept a bare string."""
        schema = TargetSchema.model_validate(
            {"base": "empty", "run": "echo hi", "expand": "root.tar", "install": "a"}
        )
        assert schema.run == ["echo hi"]
        assert schema.expand == ["root.tar"]
        assert schema.install == ["a"]

    def test_unknown_key_rejected(self):
        """Keys outside the closed set are errors."""
        with pytest.raises(ValidationError):
            TargetSchema.model_validate({"base": "empty", "copy": ["x"]})

    def test_cmd_alias(self):
        """cmd is accepted as entrypoint."""
        schema = TargetSchema.model_validate({"base": "empty", "cmd": "/bin/sh"})
        assert schema.entrypoint == "/bin/sh"
        assert schema.has_work

    def test_cmd_and_entrypoint_conflict(self):
        """Giving both cmd and entrypoint is an error."""
        with pytest.raises(ValidationError, match="only one of"):
            TargetSchema.model_validate(
                {"base": "empty", "cmd": "/bin/sh", "entrypoint": "/bin/bash"}
            )

    def test_wrong_type_rejected(self):
        """Nested mappings are not valid commands."""
        with pytest.raises(ValidationError):
            TargetSchema.model_validate({"base": "empty", "run": [{"a": 1}]})

    def test_missing_base_defaults_empty_string(self):
        """A missing base is left for graph validation."""
        schema = TargetSchema.model_validate({"run": ["true"]})
        assert schema.base == ""

    def test_no_work(self):
        """has_work is False without any work field."""
        schema = TargetSchema.model_validate({"base": "empty"})
        assert not schema.has_work
