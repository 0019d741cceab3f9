"""Import graph of source files and its connected components."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from .importer import SourceImporter
from .sources import FileRecord, SourceFile

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Component:
    """A maximal set of files linked by imports: the atomic compilation unit."""
    index: int
    members: Tuple[int, ...]  # Node indices, ascending
    paths: Tuple[str, ...]  # Source unit names, sorted


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        # Path compression
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self.rank[ra] < self.rank[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1


class SourceGraph:
    """Index-addressed import graph.

    Nodes live in a flat list; edges are (importer index, imported index)
    pairs. Cycles need no special handling: components are computed with
    union-find over undirected edges and no ordering is ever derived.
    """

    def __init__(self, nodes: Sequence[SourceFile], edges: Iterable[Tuple[int, int]]):
        self.nodes: List[SourceFile] = list(nodes)
        self.index: Dict[str, int] = {}
        for i, node in enumerate(self.nodes):
            if node.path in self.index:
                raise ValueError(f"Duplicate source unit name in graph: {node.path}")
            self.index[node.path] = i
        self.edges: List[Tuple[int, int]] = sorted(set(edges))
        for a, b in self.edges:
            if not (0 <= a < len(self.nodes) and 0 <= b < len(self.nodes)):
                raise ValueError(f"Edge ({a}, {b}) references a missing node")
        self._components: Optional[List[Component]] = None

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, path: str) -> bool:
        return path in self.index

    def node(self, path: str) -> SourceFile:
        return self.nodes[self.index[path]]

    def paths(self) -> Set[str]:
        return set(self.index)

    def get_imports(self, path: str) -> Set[str]:
        """Direct imports of a file."""
        i = self.index[path]
        return {self.nodes[b].path for a, b in self.edges if a == i}

    def get_importers(self, path: str) -> Set[str]:
        """Files that directly import this file (reverse edges)."""
        i = self.index[path]
        return {self.nodes[a].path for a, b in self.edges if b == i}

    def components(self) -> List[Component]:
        """Connected components, ordered by their smallest source unit name."""
        if self._components is None:
            uf = _UnionFind(len(self.nodes))
            for a, b in self.edges:
                uf.union(a, b)
            groups: Dict[int, List[int]] = {}
            for i in range(len(self.nodes)):
                groups.setdefault(uf.find(i), []).append(i)
            ordered = sorted(
                groups.values(),
                key=lambda members: min(self.nodes[m].path for m in members),
            )
            self._components = [
                Component(
                    index=ci,
                    members=tuple(sorted(members)),
                    paths=tuple(sorted(self.nodes[m].path for m in members)),
                )
                for ci, members in enumerate(ordered)
            ]
        return self._components

    def component_of(self, path: str) -> Component:
        i = self.index[path]
        for component in self.components():
            if i in component.members:
                return component
        raise KeyError(path)

    @classmethod
    def build(
        cls,
        importer: SourceImporter,
        roots: Sequence[Tuple[str, Path]],
        records: Optional[Mapping[str, FileRecord]] = None,
        max_workers: Optional[int] = None,
    ) -> "SourceGraph":
        """Parse ``roots`` and everything they transitively import.

        Files are parsed breadth-first, one import frontier at a time, with each
        frontier fanned out across a thread pool. Every file is parsed once, so
        import cycles terminate.
        """
        records = records or {}
        loaded: Dict[str, SourceFile] = {}
        frontier: Dict[str, Path] = dict(roots)

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            while frontier:
                names = sorted(frontier)
                results = pool.map(
                    lambda name: importer.load(name, frontier[name], records.get(name)),
                    names,
                )
                next_frontier: Dict[str, Path] = {}
                for source in results:
                    loaded[source.path] = source
                for name in names:
                    for imported in loaded[name].imports:
                        if imported in loaded or imported in frontier or imported in next_frontier:
                            continue
                        fs_path, _ = importer.locate(imported)
                        if fs_path is None:
                            # resolve_import already proved this path exists
                            raise FileNotFoundError(imported)
                        next_frontier[imported] = fs_path
                frontier = next_frontier

        nodes = [loaded[name] for name in sorted(loaded)]
        index = {node.path: i for i, node in enumerate(nodes)}
        edges = [
            (index[node.path], index[imported])
            for node in nodes
            for imported in node.imports
        ]
        graph = cls(nodes, edges)
        logger.info(
            "graph_built",
            files=len(nodes),
            edges=len(graph.edges),
            components=len(graph.components()),
        )
        return graph
