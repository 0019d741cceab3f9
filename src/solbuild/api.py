"""Public API for solbuild.

High-level functions that take a BuildRequest and return complete,
structured results. Errors that make the unit of compilation impossible to
determine (ParseError, ImportResolutionError, VersionConflictError,
VersionUnavailableError, ConfigError) propagate; everything job-scoped is
reported in ``BuildResult.diagnostics``.
"""

import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from solbuild._internal.logging import bind_context, clear_context
from solbuild.codes import DiagnosticCode
from solbuild.config import BuildRequest, load_build_request
from solbuild.contracts import BuildPlan, BuildResult, PlannedJob
from solbuild.kernel.aggregator import OutputAggregator
from solbuild.kernel.artifacts import ArtifactOutput, artifact_output_for
from solbuild.kernel.cache import CompilationCache, CompilationJob
from solbuild.kernel.compiler_io import Diagnostic
from solbuild.kernel.context import BuildContext, CancellationToken
from solbuild.kernel.graph import SourceGraph
from solbuild.kernel.importer import SourceImporter
from solbuild.kernel.resolver import ResolvedComponent, VersionResolver
from solbuild.kernel.scheduler import CompilationScheduler
from solbuild.kernel.sources import discover_sources
from solbuild.kernel.version_manager import LocalVersionManager, VersionManager


@dataclass
class _Prepared:
    """Everything up to and including cache classification."""
    context: BuildContext
    graph: SourceGraph
    resolved: List[ResolvedComponent]
    jobs: List[CompilationJob]
    hits: List[CompilationJob]
    dirty: List[CompilationJob]
    artifact_output: ArtifactOutput


def _as_request(request: Union[BuildRequest, str, Path]) -> BuildRequest:
    if isinstance(request, BuildRequest):
        return request
    return load_build_request(request)


def _settings_input(request: BuildRequest, artifact_output: ArtifactOutput) -> Dict[str, Any]:
    """The settings object sent to the compiler and hashed into every fingerprint."""
    settings = (
        request.settings
        .with_remappings(request.remappings)
        .with_default_output_selection(artifact_output.output_selection())
    )
    return settings.to_input()


def _prepare(
    request: BuildRequest,
    manager: Optional[VersionManager],
    token: Optional[CancellationToken],
) -> _Prepared:
    artifact_output = artifact_output_for(request.artifact_format)
    importer = SourceImporter(request.project_root, request.remappings, request.include_paths)
    resolver = VersionResolver(
        manager or LocalVersionManager(),
        pinned=request.pinned_version,
        offline=request.offline,
    )
    cache = CompilationCache(request.cache_file)
    context = BuildContext(
        importer=importer,
        resolver=resolver,
        cache=cache,
        token=token or CancellationToken(),
    )

    context.log.info(
        "build_start",
        root=str(request.project_root),
        compiler_version=request.compiler_version,
        force=request.force,
        offline=request.offline,
    )

    snapshot, corruption = cache.load()
    if corruption is not None:
        context.warnings.append(Diagnostic(
            severity="warning",
            message=f"Build cache ignored: {corruption}",
            code=DiagnosticCode.CACHE_CORRUPTED.value,
            origin="solbuild",
        ))

    roots = discover_sources(request.project_root, request.source_roots)
    graph = SourceGraph.build(
        importer,
        roots,
        records=snapshot.files if request.mtime_fast_path else None,
        max_workers=request.max_concurrency,
    )
    context.snapshot = snapshot.collect_garbage(graph.paths())

    resolved = resolver.resolve(graph)
    context.warnings.extend(resolver.warnings)

    jobs = cache.create_jobs(graph, resolved, _settings_input(request, artifact_output))
    hits, dirty = cache.classify(jobs, context.snapshot, force=request.force)
    return _Prepared(context, graph, resolved, jobs, hits, dirty, artifact_output)


def build(
    request: Union[BuildRequest, str, Path],
    manager: Optional[VersionManager] = None,
    token: Optional[CancellationToken] = None,
) -> BuildResult:
    """Compile a project.

    The global timeout covers the whole build, from discovery through
    compiler installation to the last compiler process. When it expires,
    pending installs are skipped and outstanding jobs are cancelled.

    Args:
        request: Build request, or a project root to load one from
        manager: Version manager (default: LocalVersionManager at SOLBUILD_HOME)
        token: Cancellation token; ``token.cancel()`` from any thread aborts
            every outstanding compiler process

    Returns:
        BuildResult with status, merged artifacts and the full diagnostic list.
    """
    request = _as_request(request)
    token = token or CancellationToken()
    started = time.monotonic()
    deadline = None
    if request.global_timeout is not None:
        deadline = threading.Timer(request.global_timeout, token.cancel, args=("global timeout",))
        deadline.daemon = True
        deadline.start()

    try:
        prepared = _prepare(request, manager, token)
        context = prepared.context
        bind_context(build_id=context.build_id)

        executables = context.resolver.ensure_installed(
            (job.version for job in prepared.dirty),
            cancelled=lambda: token.cancelled,
        )
        remaining = None
        if request.global_timeout is not None:
            remaining = max(request.global_timeout - (time.monotonic() - started), 0.0)
        scheduler = CompilationScheduler(
            executables,
            max_concurrency=request.max_concurrency,
            job_timeout=request.job_timeout,
            max_spawn_retries=request.max_spawn_retries,
            spawn_backoff=request.spawn_backoff,
            token=token,
        )
        outcomes = scheduler.run(prepared.dirty, global_timeout=remaining)

        aggregator = OutputAggregator(context.cache, prepared.artifact_output, request.artifacts_path)
        result = aggregator.aggregate(
            prepared.graph,
            context.snapshot,
            prepared.hits,
            outcomes,
            warnings=context.warnings,
        )
        context.log.info(
            "build_finished",
            status=result.status.value,
            cache_hits=result.cache_hits,
            compiled=result.compiled,
            cancelled=token.reason,
        )
        return result
    finally:
        if deadline is not None:
            deadline.cancel()
        clear_context("build_id")


def plan(
    request: Union[BuildRequest, str, Path],
    manager: Optional[VersionManager] = None,
) -> BuildPlan:
    """Resolve and fingerprint every job without compiling or writing anything."""
    request = _as_request(request)
    prepared = _prepare(request, manager, None)
    hit_fingerprints = {job.fingerprint for job in prepared.hits}
    by_index = {rc.component.index: rc for rc in prepared.resolved}
    jobs = []
    for job in prepared.jobs:
        rc = by_index[job.index]
        jobs.append(PlannedJob(
            index=job.index,
            fingerprint=job.fingerprint,
            version=str(job.version),
            constraint=str(rc.constraint),
            pinned=rc.pinned,
            sources=list(job.sources),
            cached=job.fingerprint in hit_fingerprints,
        ))
    return BuildPlan(files=len(prepared.graph), jobs=jobs, warnings=list(prepared.context.warnings))


def clean(request: Union[BuildRequest, str, Path]) -> List[Path]:
    """Remove the cache file and the artifacts directory. Returns what was removed."""
    request = _as_request(request)
    removed: List[Path] = []
    if CompilationCache(request.cache_file).clear():
        removed.append(request.cache_file)
    artifacts = request.artifacts_path
    if artifacts is not None and artifacts.is_dir():
        shutil.rmtree(artifacts)
        removed.append(artifacts)
    return removed
