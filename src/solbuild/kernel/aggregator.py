"""Merge fresh and cached job results into one build result, then persist the cache.

Fail-late: one failing job marks the build as failed but never hides the
diagnostics or artifacts of any other job. Only jobs that ran to completion
produce new cache entries; timed-out, cancelled or crashed jobs are never
cached.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field

from solbuild.codes import BuildStatus, DiagnosticCode, JobStatus
from .artifacts import ArtifactOutput
from .cache import CacheEntry, CacheSnapshot, CompilationCache, CompilationJob
from .compiler_io import Artifact, Diagnostic, to_artifacts, to_diagnostics
from .graph import SourceGraph
from .scheduler import JobOutcome

logger = structlog.get_logger(__name__)


class JobReport(BaseModel):
    """Summary of one job in a build."""
    index: int
    fingerprint: str
    version: str
    sources: List[str]
    status: str  # JobStatus value, or "cached"
    cached: bool
    duration: float = 0.0


class BuildResult(BaseModel):
    """Merged output of a whole build.

    ``diagnostics`` is always complete, on success and on failure; warnings
    never change ``status``.
    """
    status: BuildStatus
    artifacts: List[Artifact] = Field(default_factory=list)  # Sorted by (source_path, contract_name)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    cache_hits: int = 0
    compiled: int = 0
    jobs: List[JobReport] = Field(default_factory=list)
    written: List[str] = Field(default_factory=list)  # Artifact files written this build

    @property
    def ok(self) -> bool:
        return self.status == BuildStatus.SUCCESS

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]

    def artifacts_by_key(self) -> Dict[Tuple[str, str], Artifact]:
        return {a.key: a for a in self.artifacts}

    def artifact(self, source_path: str, contract_name: str) -> Optional[Artifact]:
        return self.artifacts_by_key().get((source_path, contract_name))


def _job_error_diagnostic(outcome: JobOutcome) -> Diagnostic:
    """Turn a job-scoped failure into an error diagnostic."""
    files = ", ".join(outcome.job.sources)
    if outcome.status == JobStatus.TIMED_OUT:
        code = DiagnosticCode.COMPILER_TIMEOUT
        detail = str(outcome.error) if outcome.error else "Compiler invocation timed out"
    elif outcome.status == JobStatus.CANCELLED:
        code = DiagnosticCode.JOB_CANCELLED
        detail = "Compilation cancelled"
    else:
        code = DiagnosticCode.COMPILER_PROCESS_ERROR
        detail = str(outcome.error) if outcome.error else "Compiler process failed"
    return Diagnostic(
        severity="error",
        message=f"{detail} [solc {outcome.job.version}; {files}]",
        code=code.value,
        origin="solbuild",
    )


class OutputAggregator:
    """Sole writer of the cache; builds the final BuildResult.

    Args:
        cache: Cache to persist into
        artifact_output: Artifact shape used when writing files
        artifacts_dir: Where to write artifact files, or None to skip writing
    """

    def __init__(
        self,
        cache: CompilationCache,
        artifact_output: ArtifactOutput,
        artifacts_dir: Optional[Path] = None,
    ):
        self.cache = cache
        self.artifact_output = artifact_output
        self.artifacts_dir = artifacts_dir

    def aggregate(
        self,
        graph: SourceGraph,
        snapshot: CacheSnapshot,
        hits: Sequence[CompilationJob],
        outcomes: Sequence[JobOutcome],
        warnings: Sequence[Diagnostic] = (),
        persist: bool = True,
    ) -> BuildResult:
        per_job: Dict[int, Tuple[JobReport, List[Artifact], List[Diagnostic]]] = {}
        new_entries: Dict[str, CacheEntry] = {}

        for job in hits:
            entry = snapshot.get(job.fingerprint)
            if entry is None:
                raise KeyError(f"Cache hit without entry: {job.fingerprint}")
            report = JobReport(
                index=job.index,
                fingerprint=job.fingerprint,
                version=str(job.version),
                sources=list(job.sources),
                status="cached",
                cached=True,
            )
            per_job[job.index] = (report, list(entry.artifacts), list(entry.diagnostics))

        for outcome in outcomes:
            job = outcome.job
            if outcome.status == JobStatus.COMPLETED and outcome.output is not None:
                artifacts = to_artifacts(outcome.output)
                diagnostics = to_diagnostics(outcome.output)
            else:
                artifacts = []
                diagnostics = [_job_error_diagnostic(outcome)]
            if outcome.cacheable and job.fingerprint not in snapshot:
                new_entries[job.fingerprint] = CacheEntry(
                    fingerprint=job.fingerprint,
                    version=str(job.version),
                    sources=job.sources,
                    artifacts=tuple(artifacts),
                    diagnostics=tuple(diagnostics),
                )
            report = JobReport(
                index=job.index,
                fingerprint=job.fingerprint,
                version=str(job.version),
                sources=list(job.sources),
                status=outcome.status.value,
                cached=False,
                duration=round(outcome.duration, 6),
            )
            per_job[job.index] = (report, artifacts, diagnostics)

        diagnostics: List[Diagnostic] = list(warnings)
        merged: Dict[Tuple[str, str], Artifact] = {}
        reports: List[JobReport] = []
        for index in sorted(per_job):
            report, artifacts, job_diagnostics = per_job[index]
            reports.append(report)
            diagnostics.extend(job_diagnostics)
            for artifact in artifacts:
                if artifact.key in merged:
                    logger.warning("duplicate_artifact", source=artifact.source_path, contract=artifact.contract_name)
                    continue
                merged[artifact.key] = artifact

        if persist:
            reachable = {job.fingerprint for job in hits} | {o.job.fingerprint for o in outcomes}
            diagnostics.extend(self._persist(graph, snapshot.retain(reachable), new_entries))

        written: List[str] = []
        if self.artifacts_dir is not None and merged:
            paths = self.artifact_output.write(self.artifacts_dir, [merged[k] for k in sorted(merged)])
            written = [str(p) for p in paths]

        failed = any(d.is_error for d in diagnostics)
        result = BuildResult(
            status=BuildStatus.FAILURE if failed else BuildStatus.SUCCESS,
            artifacts=[merged[k] for k in sorted(merged)],
            diagnostics=diagnostics,
            cache_hits=len(hits),
            compiled=sum(1 for o in outcomes if o.status == JobStatus.COMPLETED),
            jobs=reports,
            written=written,
        )
        logger.info(
            "build_aggregated",
            status=result.status.value,
            artifacts=len(result.artifacts),
            errors=len(result.errors),
            warnings=len(result.warnings),
            cache_hits=result.cache_hits,
            compiled=result.compiled,
            new_cache_entries=len(new_entries),
        )
        return result

    def _persist(
        self,
        graph: SourceGraph,
        snapshot: CacheSnapshot,
        new_entries: Dict[str, CacheEntry],
    ) -> List[Diagnostic]:
        """Write the retained snapshot plus new entries. A failed write is a warning, not a build failure."""
        entries = dict(snapshot.entries)
        for fingerprint, entry in new_entries.items():
            # Existing entries are immutable
            entries.setdefault(fingerprint, entry)
        files = {node.path: node.to_record() for node in graph.nodes}
        try:
            self.cache.write(CacheSnapshot(entries, files))
        except OSError as e:
            logger.warning("cache_write_failed", path=str(self.cache.path), error=str(e))
            return [Diagnostic(
                severity="warning",
                message=f"Could not write build cache {self.cache.path}: {e}",
                code=DiagnosticCode.CACHE_WRITE_FAILED.value,
                origin="solbuild",
            )]
        return []
