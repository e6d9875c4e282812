"""Dependency resolution.

- resolver.py: VersionResolver
- graph.py: DependencyGraph and Edge
"""

from .graph import DependencyGraph, Edge
from .resolver import VersionResolver

__all__ = ["DependencyGraph", "Edge", "VersionResolver"]
