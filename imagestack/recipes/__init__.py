"""Recipe module.

This module handles:
- Schema validation of recipe target steps
- Loading recipe YAML into a target graph
- Structural validation of bases and work
"""

from imagestack.recipes.graph import RecipeGraph, Target
from imagestack.recipes.io import load_recipe, parse_recipe, parse_recipe_data
from imagestack.recipes.schema import TargetSchema

__all__ = [
    "RecipeGraph",
    "Target",
    "TargetSchema",
    "load_recipe",
    "parse_recipe",
    "parse_recipe_data",
]
