"""Recipe package.

- models.py: Recipe, Configuration, DependencySpec and package-name helpers
- io.py: reading and writing of JSON recipes
"""

from .io import find_recipe_file, load_recipe, recipe_from_dict, recipe_to_dict
from .models import (
    Configuration,
    DependencySpec,
    Recipe,
    base_name,
    is_subpackage,
    join_name,
    sub_name,
)

__all__ = [
    "Configuration",
    "DependencySpec",
    "Recipe",
    "base_name",
    "find_recipe_file",
    "is_subpackage",
    "join_name",
    "load_recipe",
    "recipe_from_dict",
    "recipe_to_dict",
    "sub_name",
]
