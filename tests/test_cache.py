"""Tests for the compilation cache: fingerprints, classification, persistence and GC."""

import json
import os

import pytest

from solbuild.kernel.cache import (
    CACHE_FORMAT,
    CACHE_SCHEMA_VERSION,
    CacheEntry,
    CacheSnapshot,
    CompilationCache,
)
from solbuild.kernel.compiler_io import Artifact, Diagnostic
from solbuild.kernel.errors import CacheCorruptionError
from solbuild.kernel.graph import SourceGraph
from solbuild.kernel.hash_utils import hash_content
from solbuild.kernel.resolver import ResolvedComponent
from solbuild.kernel.sources import FileRecord, SourceFile
from solbuild.kernel.versions import CompilerVersion, VersionConstraint
from solbuild._internal.io.cache_file import read_cache_document


SETTINGS = {"optimizer": {"enabled": False, "runs": 200}, "outputSelection": {"*": {"*": ["abi"]}}}


def _node(path, content=None):
    content = content if content is not None else f"contract {path.split('/')[-1][:-4]} {{}}\n"
    return SourceFile(path=path, fs_path=path, content=content, content_hash=hash_content(content))


def _resolved(graph, version="0.8.19"):
    return [
        ResolvedComponent(c, VersionConstraint.any(), CompilerVersion.parse(version))
        for c in graph.components()
    ]


def _entry(fingerprint, sources, contract="A"):
    return CacheEntry(
        fingerprint=fingerprint,
        version="0.8.19",
        sources=tuple(sources),
        artifacts=(Artifact(source_path=sources[0], contract_name=contract, bytecode="6080"),),
        diagnostics=(Diagnostic(severity="warning", message="unused variable"),),
    )


class TestCreateJobs:

    def test_one_job_per_component(self):
        graph = SourceGraph([_node("A.sol"), _node("B.sol"), _node("C.sol")], [(0, 1)])
        jobs = CompilationCache.create_jobs(graph, _resolved(graph), SETTINGS)
        assert [job.sources for job in jobs] == [("A.sol", "B.sol"), ("C.sol",)]
        assert [job.index for job in jobs] == [0, 1]
        assert jobs[0].contents == {"A.sol": graph.node("A.sol").content, "B.sol": graph.node("B.sol").content}

    def test_input_document_shape(self):
        graph = SourceGraph([_node("A.sol")], [])
        [job] = CompilationCache.create_jobs(graph, _resolved(graph), SETTINGS)
        doc = job.input_document()
        assert doc["language"] == "Solidity"
        assert doc["sources"] == {"A.sol": {"content": graph.node("A.sol").content}}
        assert doc["settings"] == SETTINGS

    def test_settings_change_invalidates(self):
        graph = SourceGraph([_node("A.sol")], [])
        [before] = CompilationCache.create_jobs(graph, _resolved(graph), SETTINGS)
        changed = dict(SETTINGS, optimizer={"enabled": True, "runs": 200})
        [after] = CompilationCache.create_jobs(graph, _resolved(graph), changed)
        assert before.fingerprint != after.fingerprint

    def test_version_change_invalidates(self):
        graph = SourceGraph([_node("A.sol")], [])
        [a] = CompilationCache.create_jobs(graph, _resolved(graph, "0.8.19"), SETTINGS)
        [b] = CompilationCache.create_jobs(graph, _resolved(graph, "0.8.10"), SETTINGS)
        assert a.fingerprint != b.fingerprint

    def test_unrelated_component_keeps_fingerprint(self):
        g1 = SourceGraph([_node("A.sol"), _node("B.sol")], [])
        g2 = SourceGraph([_node("A.sol"), _node("B.sol", "contract B { uint x; }\n")], [])
        jobs1 = CompilationCache.create_jobs(g1, _resolved(g1), SETTINGS)
        jobs2 = CompilationCache.create_jobs(g2, _resolved(g2), SETTINGS)
        assert jobs1[0].fingerprint == jobs2[0].fingerprint
        assert jobs1[1].fingerprint != jobs2[1].fingerprint


class TestClassify:

    def test_partition(self):
        graph = SourceGraph([_node("A.sol"), _node("B.sol")], [])
        jobs = CompilationCache.create_jobs(graph, _resolved(graph), SETTINGS)
        snapshot = CacheSnapshot({jobs[0].fingerprint: _entry(jobs[0].fingerprint, ["A.sol"])})
        hits, dirty = CompilationCache.classify(jobs, snapshot)
        assert hits == [jobs[0]]
        assert dirty == [jobs[1]]

    def test_force_makes_everything_dirty(self):
        graph = SourceGraph([_node("A.sol")], [])
        jobs = CompilationCache.create_jobs(graph, _resolved(graph), SETTINGS)
        snapshot = CacheSnapshot({jobs[0].fingerprint: _entry(jobs[0].fingerprint, ["A.sol"])})
        hits, dirty = CompilationCache.classify(jobs, snapshot, force=True)
        assert hits == []
        assert dirty == jobs


class TestSnapshot:

    def test_is_read_only(self):
        snapshot = CacheSnapshot({"sha256:x": _entry("sha256:x", ["A.sol"])})
        with pytest.raises(TypeError):
            snapshot.entries["sha256:y"] = _entry("sha256:y", ["B.sol"])

    def test_gc_drops_entries_with_missing_sources(self):
        snapshot = CacheSnapshot(
            {
                "sha256:keep": _entry("sha256:keep", ["A.sol", "B.sol"]),
                "sha256:drop": _entry("sha256:drop", ["A.sol", "Gone.sol"]),
            },
            {
                "A.sol": FileRecord(content_hash="sha256:a", mtime_ns=1, size=1),
                "Gone.sol": FileRecord(content_hash="sha256:g", mtime_ns=1, size=1),
            },
        )
        collected = snapshot.collect_garbage({"A.sol", "B.sol"})
        assert set(collected.entries) == {"sha256:keep"}
        assert set(collected.files) == {"A.sol"}
        # The original snapshot is untouched
        assert len(snapshot) == 2

    def test_retain_keeps_only_reachable_entries(self):
        files = {"A.sol": FileRecord(content_hash="sha256:a", mtime_ns=1, size=1)}
        snapshot = CacheSnapshot(
            {
                "sha256:current": _entry("sha256:current", ["A.sol"]),
                "sha256:old": _entry("sha256:old", ["A.sol"]),
            },
            files,
        )
        retained = snapshot.retain({"sha256:current", "sha256:unknown"})
        assert set(retained.entries) == {"sha256:current"}
        assert set(retained.files) == {"A.sol"}


class TestPersistence:

    def test_missing_file_is_empty(self, tmp_path):
        snapshot, error = CompilationCache(tmp_path / "cache.json").load()
        assert len(snapshot) == 0
        assert error is None

    def test_write_then_load(self, tmp_path):
        cache = CompilationCache(tmp_path / "cache" / "solbuild-cache.json")
        entry = _entry("sha256:abc", ["contracts/A.sol"])
        record = FileRecord(content_hash="sha256:a", mtime_ns=123, size=10, raw_imports=("./B.sol",), version_pragmas=("^0.8.0",))
        cache.write(CacheSnapshot({"sha256:abc": entry}, {"contracts/A.sol": record}))

        snapshot, error = cache.load()
        assert error is None
        assert snapshot.get("sha256:abc") == entry
        assert snapshot.files["contracts/A.sol"] == record

    def test_file_is_tagged_and_canonical(self, tmp_path):
        path = tmp_path / "cache.json"
        CompilationCache(path).write(CacheSnapshot({"sha256:abc": _entry("sha256:abc", ["A.sol"])}))
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        assert data["format"] == CACHE_FORMAT
        assert data["schema_version"] == CACHE_SCHEMA_VERSION
        assert text == json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False) + "\n"

    def test_no_temp_files_left(self, tmp_path):
        path = tmp_path / "cache.json"
        CompilationCache(path).write(CacheSnapshot())
        CompilationCache(path).write(CacheSnapshot())
        assert sorted(p.name for p in tmp_path.iterdir()) == ["cache.json"]

    def test_failed_write_keeps_previous_file(self, tmp_path, monkeypatch):
        path = tmp_path / "cache.json"
        cache = CompilationCache(path)
        cache.write(CacheSnapshot({"sha256:old": _entry("sha256:old", ["A.sol"])}))
        before = path.read_bytes()

        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", boom)
        with pytest.raises(OSError, match="disk full"):
            cache.write(CacheSnapshot({"sha256:new": _entry("sha256:new", ["A.sol"])}))
        assert path.read_bytes() == before
        assert sorted(p.name for p in tmp_path.iterdir()) == ["cache.json"]

    @pytest.mark.parametrize("content,reason", [
        ("{not json", "invalid JSON"),
        ("[]", "top level"),
        ('{"format": "other", "schema_version": "1"}', "unexpected format"),
        ('{"format": "solbuild.cache", "schema_version": "0"}', "schema_version"),
        ('{"format": "solbuild.cache", "schema_version": "1", "entries": {"x": {"bogus": 1}}}', "schema validation"),
    ])
    def test_corrupt_file_is_empty_with_error(self, tmp_path, content, reason):
        path = tmp_path / "cache.json"
        path.write_text(content, encoding="utf-8")
        snapshot, error = CompilationCache(path).load()
        assert len(snapshot) == 0
        assert isinstance(error, CacheCorruptionError)
        assert reason in error.reason

    def test_read_missing_returns_none(self, tmp_path):
        assert read_cache_document(tmp_path / "nope.json") is None

    def test_clear(self, tmp_path):
        path = tmp_path / "cache.json"
        cache = CompilationCache(path)
        assert cache.clear() is False
        cache.write(CacheSnapshot())
        assert cache.clear() is True
        assert not path.exists()
