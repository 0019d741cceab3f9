"""Performance sentinels (gated)."""

from __future__ import annotations

import pytest

from solbuild.kernel.graph import SourceGraph
from solbuild.kernel.importer import SourceImporter
from solbuild.kernel.sources import discover_sources

from conftest import contract_source, write_project

MAX_GRAPH_BUILD_MS = 2000.0
MAX_COMPONENTS_MS = 200.0


def _assert_budget(benchmark, max_ms: float) -> None:
    mean_ms = benchmark.stats.stats.mean * 1000.0
    assert mean_ms < max_ms, f"Mean {mean_ms:.2f} ms exceeded budget {max_ms:.2f} ms"


@pytest.fixture
def wide_project(tmp_path):
    """40 independent chains of 10 files each."""
    files = {}
    for chain in range(40):
        for link in range(10):
            imports = [f"./C{chain}_{link + 1}.sol"] if link < 9 else []
            files[f"contracts/C{chain}_{link}.sol"] = contract_source(f"C{chain}_{link}", imports=imports)
    return write_project(tmp_path, files)


@pytest.mark.perf
def test_graph_build_sentinel(benchmark, wide_project):
    importer = SourceImporter(wide_project)
    roots = discover_sources(wide_project, ["contracts"])

    graph = benchmark.pedantic(lambda: SourceGraph.build(importer, roots, max_workers=8), rounds=3, iterations=1)

    assert len(graph) == 400
    assert len(graph.components()) == 40
    _assert_budget(benchmark, MAX_GRAPH_BUILD_MS)


@pytest.mark.perf
def test_components_sentinel(benchmark, wide_project):
    importer = SourceImporter(wide_project)
    graph = SourceGraph.build(importer, discover_sources(wide_project, ["contracts"]))

    components = benchmark.pedantic(lambda: SourceGraph(graph.nodes, graph.edges).components(), rounds=5, iterations=1)

    assert sum(len(c.paths) for c in components) == 400
    _assert_budget(benchmark, MAX_COMPONENTS_MS)
