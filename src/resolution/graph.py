"""Dependency graph built during resolution."""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from constants import DependencyKind
from common.errors import ConstraintSource
from recipe.models import DependencySpec, base_name


@dataclass(frozen=True)
class Edge:
    """One dependency declaration of an active package.

    ``path`` is the absolute directory of a path dependency, resolved against
    the declaring package.
    """
    source: str
    source_version: str
    target: str
    spec: DependencySpec
    kind: DependencyKind
    path: Optional[Path] = None

    @property
    def target_base(self) -> str:
        return base_name(self.target)

    @property
    def activates(self) -> bool:
        """Required and default-enabled optional edges pull their target in."""
        return self.kind is not DependencyKind.OPTIONAL

    def as_source(self) -> ConstraintSource:
        return ConstraintSource(self.source, self.source_version, str(self.spec))


class DependencyGraph:
    """Packages (full names, subpackages included) and the edges between them."""

    def __init__(self, root: str) -> None:
        self.root = root
        self.nodes: Dict[str, str] = {}
        self.edges: List[Edge] = []

    def add_node(self, name: str, version: str) -> None:
        self.nodes[name] = version

    def add_edge(self, edge: Edge) -> None:
        self.edges.append(edge)

    def targets(self) -> Dict[str, List[Edge]]:
        """Edges grouped by target base name, for targets that are active.

        A target is active when at least one activating edge points at it;
        its optional edges still constrain the version. The root package and
        its subpackages are never targets.
        """
        grouped: Dict[str, List[Edge]] = {}
        root_base = base_name(self.root)
        for edge in self.edges:
            if edge.target_base == root_base:
                continue
            grouped.setdefault(edge.target_base, []).append(edge)
        return {
            base: edges
            for base, edges in sorted(grouped.items())
            if any(e.activates for e in edges)
        }

    def successors(self, name: str) -> List[str]:
        return sorted({e.target for e in self.edges if e.source == name and e.activates and e.target in self.nodes})

    def find_cycle(self) -> Optional[List[str]]:
        """Return the first cycle found as ``[a, b, ..., a]``, or ``None``."""
        white, grey, black = 0, 1, 2
        color = {name: white for name in self.nodes}
        for start in sorted(self.nodes, key=lambda n: (n != self.root, n)):
            if color[start] != white:
                continue
            stack = [(start, iter(self.successors(start)))]
            path = [start]
            color[start] = grey
            while stack:
                node, children = stack[-1]
                child = next(children, None)
                if child is None:
                    color[node] = black
                    stack.pop()
                    path.pop()
                    continue
                if color[child] == grey:
                    return path[path.index(child):] + [child]
                if color[child] == white:
                    color[child] = grey
                    stack.append((child, iter(self.successors(child))))
                    path.append(child)
        return None
