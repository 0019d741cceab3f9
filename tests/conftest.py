"""Pytest configuration and shared fixtures.

No sys.path hacks - tests import from the installed solbuild package.

Compilation tests run a real subprocess: a small Python script that speaks
the compiler's standard-JSON protocol. It emits one contract per
``contract``/``library``/``interface`` declaration and reacts to markers in
source text:

    FAKE_ERROR        an error diagnostic for that file (no artifacts)
    FAKE_WARNING      a warning diagnostic for that file
    FAKE_SLEEP(<s>)   sleep before answering
    FAKE_CRASH        exit 3 with a message on stderr
    FAKE_GARBAGE      answer with something that is not JSON

If ``FAKE_SOLC_LOG`` is set, every invocation appends the sorted list of
source names it received to that file.
"""

import os
import stat
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from solbuild.config import BuildRequest
from solbuild.kernel.errors import VersionUnavailableError
from solbuild.kernel.versions import CompilerVersion


FAKE_SOLC_SOURCE = r'''
import json
import os
import re
import sys
import time

VERSION = "{version}"

request = json.load(sys.stdin)
log = os.environ.get("FAKE_SOLC_LOG")
if log:
    with open(log, "a", encoding="utf-8") as f:
        f.write(json.dumps({{"version": VERSION, "sources": sorted(request["sources"])}}) + "\n")

errors = []
contracts = {{}}
for path in sorted(request["sources"]):
    content = request["sources"][path]["content"]
    sleep = re.search(r"FAKE_SLEEP\(([0-9.]+)\)", content)
    if sleep:
        time.sleep(float(sleep.group(1)))
    if "FAKE_CRASH" in content:
        sys.stderr.write("Internal compiler error\n")
        sys.exit(3)
    if "FAKE_GARBAGE" in content:
        sys.stdout.write("this is not json")
        sys.exit(0)
    if "FAKE_WARNING" in content:
        start = content.index("FAKE_WARNING")
        errors.append({{
            "severity": "warning",
            "type": "Warning",
            "component": "general",
            "message": "Fake warning",
            "formattedMessage": "Warning: Fake warning",
            "errorCode": "5667",
            "sourceLocation": {{"file": path, "start": start, "end": start + 12}},
        }})
    if "FAKE_ERROR" in content:
        start = content.index("FAKE_ERROR")
        errors.append({{
            "severity": "error",
            "type": "TypeError",
            "component": "general",
            "message": "Fake type error",
            "formattedMessage": "TypeError: Fake type error",
            "errorCode": "9574",
            "sourceLocation": {{"file": path, "start": start, "end": start + 10}},
        }})
        continue
    for name in re.findall(r"\b(?:contract|library|interface)\s+(\w+)", content):
        contracts.setdefault(path, {{}})[name] = {{
            "abi": [{{"type": "function", "name": "f", "inputs": [], "outputs": [], "stateMutability": "view"}}],
            "evm": {{
                "bytecode": {{"object": "6080" + name.encode().hex(), "linkReferences": {{}}}},
                "deployedBytecode": {{"object": "60aa" + name.encode().hex(), "linkReferences": {{}}}},
                "methodIdentifiers": {{"f()": "26121ff0"}},
            }},
            "metadata": json.dumps({{"compiler": {{"version": VERSION}}}}),
        }}

json.dump({{
    "errors": errors,
    "contracts": contracts,
    "sources": {{p: {{"id": i}} for i, p in enumerate(sorted(request["sources"]))}},
}}, sys.stdout)
'''


def write_fake_solc(path: Path, version: str) -> Path:
    """Write an executable fake compiler for ``version`` at ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n" + FAKE_SOLC_SOURCE.format(version=version), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class FakeVersionManager:
    """In-memory version manager: versions map straight to executables."""

    def __init__(
        self,
        installed: Optional[Dict[CompilerVersion, Path]] = None,
        available: Optional[Dict[CompilerVersion, Path]] = None,
    ):
        self.installed = dict(installed or {})
        self.available = dict(available or {})
        self.install_calls: List[CompilerVersion] = []

    def installed_versions(self) -> List[CompilerVersion]:
        return sorted(self.installed)

    def available_versions(self) -> List[CompilerVersion]:
        return sorted(set(self.installed) | set(self.available))

    def install(self, version: CompilerVersion) -> Path:
        self.install_calls.append(version)
        if version not in self.available:
            raise VersionUnavailableError(f"={version}", [], detail="not available")
        self.installed[version] = self.available[version]
        return self.installed[version]

    def executable(self, version: CompilerVersion) -> Optional[Path]:
        return self.installed.get(version)


def write_project(root: Path, files: Dict[str, str]) -> Path:
    for name, content in files.items():
        target = root / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


def contract_source(name: str, pragma: Optional[str] = "^0.8.0", imports: Iterable[str] = (), body: str = "") -> str:
    """A small, valid source file declaring one contract."""
    lines = ["// SPDX-License-Identifier: MIT"]
    if pragma is not None:
        lines.append(f"pragma solidity {pragma};")
    lines.extend(f'import "{target}";' for target in imports)
    lines.append(f"contract {name} {{ {body} }}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def solc_factory(tmp_path):
    """Create (once per version) a fake compiler executable."""
    made: Dict[str, Path] = {}

    def make(version: str) -> Path:
        if version not in made:
            made[version] = write_fake_solc(tmp_path / "compilers" / version / "solc", version)
        return made[version]

    return make


@pytest.fixture
def manager(solc_factory):
    """Fake version manager with 0.7.6, 0.8.10 and 0.8.19 installed."""
    versions = ["0.7.6", "0.8.10", "0.8.19"]
    return FakeVersionManager(installed={CompilerVersion.parse(v): solc_factory(v) for v in versions})


@pytest.fixture
def project_root(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def make_request(project_root):
    def make(**kwargs) -> BuildRequest:
        kwargs.setdefault("project_root", project_root)
        kwargs.setdefault("max_concurrency", 4)
        return BuildRequest(**kwargs)

    return make


@pytest.fixture
def invocation_log(tmp_path, monkeypatch):
    """Record every fake compiler invocation; returns a reader for the log."""
    import json

    log_path = tmp_path / "solc-invocations.jsonl"
    monkeypatch.setenv("FAKE_SOLC_LOG", str(log_path))

    def read() -> List[dict]:
        if not log_path.exists():
            return []
        return [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines() if line]

    return read


def pytest_addoption(parser):
    """Add gated perf test option."""
    parser.addoption(
        "--run-perf",
        action="store_true",
        default=False,
        help="Run performance sentinel benchmarks (gated)."
    )


def pytest_collection_modifyitems(config, items):
    """Skip perf-marked tests unless --run-perf is set."""
    if config.getoption("--run-perf"):
        return
    skip_perf = pytest.mark.skip(reason="perf tests gated; pass --run-perf")
    for item in items:
        if "perf" in item.keywords:
            item.add_marker(skip_perf)


def pytest_sessionfinish(session, exitstatus):
    """Best-effort cleanup for basetemp on Windows without patching pytest internals."""
    if os.name != "nt":
        return
    basetemp = getattr(session.config.option, "basetemp", None)
    if not basetemp:
        return
    basetemp_path = Path(basetemp)
    if not basetemp_path.exists():
        return
    try:
        import shutil
        shutil.rmtree(basetemp_path)
    except (PermissionError, OSError):
        import warnings
        warnings.warn(f"Could not remove basetemp: {basetemp_path}")
