"""Recipe loading.

A recipe looks like::

    base-os:
      base: empty
      expand: rootfs.tar.xz
    app:
      base: base-os
      run:
        - echo hello > /hello
      entrypoint: /bin/sh

YAML is parsed with a loader that rejects duplicate keys, then each step
mapping is validated by TargetSchema and converted into a Target.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from imagestack.errors import RecipeParseError
from imagestack.recipes.graph import RecipeGraph, Target
from imagestack.recipes.schema import TargetSchema


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses mappings with repeated keys."""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> Any:
        seen: set[Any] = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            try:
                duplicate = key in seen
            except TypeError:
                # Unhashable keys are reported by the base constructor
                break
            if duplicate:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def load_yaml_text(text: str) -> dict[str, Any]:
    """Parse recipe YAML text into a mapping.

    Args:
        text: YAML document.

    Returns:
        Parsed mapping (empty for an empty document).

    Raises:
        RecipeParseError: If the text is not valid YAML or not a mapping.
    """
    try:
        data = yaml.load(text, Loader=UniqueKeyLoader)  # noqa: S506
    except yaml.YAMLError as e:
        raise RecipeParseError(f"Invalid recipe YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RecipeParseError(
            f"Expected a mapping of targets, got {type(data).__name__}"
        )
    return data


def parse_target(name: Any, data: Any) -> Target:
    """Validate one target's step mapping.

    Args:
        name: Target name (mapping key).
        data: Step mapping.

    Returns:
        Target instance.

    Raises:
        RecipeParseError: If the name or steps do not match the schema.
    """
    if not isinstance(name, str) or not name:
        raise RecipeParseError(f"Target names must be non-empty strings, got {name!r}")
    if not isinstance(data, dict):
        raise RecipeParseError(
            f"Parse error at {name}: expected a step mapping, "
            f"got {type(data).__name__}",
            target=name,
        )
    try:
        schema = TargetSchema.model_validate(data)
    except ValidationError as e:
        raise RecipeParseError(f"Parse error at {name}: {e}", target=name) from e
    return Target(
        name=name,
        base=schema.base,
        expand=tuple(schema.expand),
        run=tuple(schema.run),
        install=tuple(schema.install),
        entrypoint=schema.entrypoint,
    )


def parse_recipe_data(data: dict[Any, Any]) -> RecipeGraph:
    """Convert a parsed recipe mapping into a RecipeGraph.

    Args:
        data: Mapping from target name to step mapping.

    Returns:
        RecipeGraph with one Target per entry.

    Raises:
        RecipeParseError: If any entry does not match the schema.
    """
    return RecipeGraph.from_targets(
        parse_target(name, steps) for name, steps in data.items()
    )


def parse_recipe(text: str) -> RecipeGraph:
    """Parse recipe YAML text into a RecipeGraph."""
    return parse_recipe_data(load_yaml_text(text))


def load_recipe(path: Path) -> RecipeGraph:
    """Load and parse a recipe file.

    Args:
        path: Path to the recipe YAML file.

    Returns:
        RecipeGraph for the file.

    Raises:
        RecipeParseError: If the file cannot be read or parsed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RecipeParseError(f"Error opening recipe file {path}: {e}") from e
    return parse_recipe(text)


__all__ = [
    "UniqueKeyLoader",
    "load_recipe",
    "load_yaml_text",
    "parse_recipe",
    "parse_recipe_data",
    "parse_target",
]
