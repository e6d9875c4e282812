"""Selections lockfile package.

- models.py: SelectedVersion and Selections
- manager.py: load/save, inheritance lookup and reuse validation
"""

from .manager import (
    find_selections_file,
    is_reusable,
    load_selections,
    parse_selections,
    save_selections,
    serialize_selections,
)
from .models import SelectedVersion, Selections

__all__ = [
    "SelectedVersion",
    "Selections",
    "find_selections_file",
    "is_reusable",
    "load_selections",
    "parse_selections",
    "save_selections",
    "serialize_selections",
]
