"""Test public API surface - ensure imports work correctly and no side effects."""

import logging
import types

import pytest


def test_api_exports_core_functions():
    from solbuild.api import build, clean, plan

    for func in (build, plan, clean):
        assert isinstance(func, types.FunctionType)


def test_root_exports_match_all():
    import solbuild

    for name in solbuild.__all__:
        assert hasattr(solbuild, name), f"solbuild.{name} is in __all__ but missing"
    assert solbuild.__version__


def test_internal_not_public():
    import solbuild
    import solbuild._internal.logging  # noqa: F401

    assert "_internal" not in solbuild.__all__
    assert "kernel" not in solbuild.__all__


def test_contracts_module_is_self_contained():
    """Result models import without going through the package root."""
    from solbuild.contracts import BuildPlan, BuildResult, PlannedJob
    from solbuild.codes import BuildStatus

    result = BuildResult(status=BuildStatus.SUCCESS)
    assert result.ok
    assert result.errors == []
    plan = BuildPlan(files=0, jobs=[
        PlannedJob(index=0, fingerprint="sha256:0", version="0.8.19", constraint="*",
                   pinned=False, sources=["A.sol"], cached=True),
    ], warnings=[])
    assert plan.dirty == []


def test_import_has_no_logging_side_effects():
    """Importing solbuild never installs handlers; only the CLI configures logging."""
    root = logging.getLogger()
    before = list(root.handlers)
    import solbuild  # noqa: F401
    import solbuild.api  # noqa: F401
    assert root.handlers == before


@pytest.mark.parametrize("module", [
    "solbuild.kernel.aggregator",
    "solbuild.kernel.cache",
    "solbuild.kernel.scheduler",
    "solbuild.kernel.resolver",
    "solbuild._internal.io.cache_file",
])
def test_kernel_modules_import_cleanly(module):
    import importlib

    assert importlib.import_module(module) is not None
