"""Public result models for solbuild package."""

from typing import List

from pydantic import BaseModel

from solbuild.kernel.aggregator import BuildResult, JobReport
from solbuild.kernel.compiler_io import Artifact, Diagnostic, SourceLocation


class PlannedJob(BaseModel):
    """One job as it would run, without running it."""
    index: int
    fingerprint: str
    version: str
    constraint: str  # Combined constraint of the component, e.g. ">=0.8.10 <0.9.0"
    pinned: bool
    sources: List[str]  # sorted
    cached: bool  # True if the fingerprint is in the cache snapshot


class BuildPlan(BaseModel):
    """Result of ``plan``: the jobs a build would dispatch and which are cache hits."""
    files: int
    jobs: List[PlannedJob]
    warnings: List[Diagnostic]

    @property
    def dirty(self) -> List[PlannedJob]:
        return [j for j in self.jobs if not j.cached]


__all__ = [
    "Artifact",
    "BuildPlan",
    "BuildResult",
    "Diagnostic",
    "JobReport",
    "PlannedJob",
    "SourceLocation",
]
