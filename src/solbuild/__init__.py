"""solbuild: incremental, parallel compilation of multi-file Solidity projects."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("solbuild")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from solbuild.api import build, plan, clean
from solbuild.config import BuildRequest, load_build_request
from solbuild.contracts import Artifact, BuildPlan, BuildResult, Diagnostic, JobReport, PlannedJob
from solbuild.codes import BuildStatus, DiagnosticCode, JobStatus

__all__ = [
    "__version__",
    "build",
    "plan",
    "clean",
    "BuildRequest",
    "load_build_request",
    "Artifact",
    "BuildPlan",
    "BuildResult",
    "Diagnostic",
    "JobReport",
    "PlannedJob",
    "BuildStatus",
    "DiagnosticCode",
    "JobStatus",
]
