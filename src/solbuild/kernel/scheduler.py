"""Dispatch dirty jobs to the external compiler with bounded concurrency.

Each job is one process: ``<solc> --standard-json`` receives the request on
stdin and answers on stdout. At most ``max_concurrency`` processes run at
once. A job that outlives ``job_timeout`` is killed and reported as timed
out; a build-wide cancellation (explicit or global timeout) kills every
outstanding process. Neither affects sibling jobs' results.

Only failures to *start* a process for resource reasons are retried;
compiler-reported failures are deterministic and are not.
"""

import asyncio
import errno
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

import structlog

from solbuild.codes import JobStatus
from .cache import CompilationJob
from .compiler_io import CompilerOutput, encode_input, parse_output
from .context import CancellationToken
from .errors import CompilationTimeoutError, CompilerProcessError, SolbuildError
from .versions import CompilerVersion

logger = structlog.get_logger(__name__)

RETRYABLE_SPAWN_ERRNOS = frozenset({errno.EAGAIN, errno.ENOMEM, errno.EMFILE, errno.ENFILE})


@dataclass
class JobOutcome:
    """What happened to one dispatched job."""
    job: CompilationJob
    status: JobStatus
    output: Optional[CompilerOutput] = None
    error: Optional[SolbuildError] = None
    duration: float = 0.0
    attempts: int = 0

    @property
    def cacheable(self) -> bool:
        """Only jobs that ran to completion are ever written to the cache."""
        return self.status == JobStatus.COMPLETED and self.output is not None


def default_concurrency() -> int:
    return os.cpu_count() or 1


class CompilationScheduler:
    """Bounded pool of compiler processes.

    Args:
        executables: Compiler executable per resolved version
        max_concurrency: Cap on simultaneously running processes (default: CPU count)
        job_timeout: Per-job deadline in seconds, or None
        max_spawn_retries: Retries for transient spawn failures
        spawn_backoff: Initial retry delay in seconds, doubled per attempt
        token: Build-wide cancellation token
    """

    def __init__(
        self,
        executables: Mapping[CompilerVersion, Path],
        max_concurrency: Optional[int] = None,
        job_timeout: Optional[float] = None,
        max_spawn_retries: int = 3,
        spawn_backoff: float = 0.1,
        token: Optional[CancellationToken] = None,
    ):
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.executables = dict(executables)
        self.max_concurrency = max_concurrency or default_concurrency()
        self.job_timeout = job_timeout
        self.max_spawn_retries = max_spawn_retries
        self.spawn_backoff = spawn_backoff
        self.token = token or CancellationToken()

    def run(self, jobs: Sequence[CompilationJob], global_timeout: Optional[float] = None) -> List[JobOutcome]:
        """Synchronous entry point; outcomes are returned in job order."""
        if not jobs:
            return []
        return asyncio.run(self.run_async(jobs, global_timeout))

    async def run_async(
        self,
        jobs: Sequence[CompilationJob],
        global_timeout: Optional[float] = None,
    ) -> List[JobOutcome]:
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        deadline = None
        if global_timeout is not None:
            deadline = loop.call_later(global_timeout, self.token.cancel, "global timeout")
        logger.info(
            "dispatch_start",
            jobs=len(jobs),
            max_concurrency=self.max_concurrency,
            job_timeout=self.job_timeout,
            global_timeout=global_timeout,
        )
        try:
            outcomes = await asyncio.gather(*(self._run_job(job, semaphore) for job in jobs))
        finally:
            if deadline is not None:
                deadline.cancel()
        return list(outcomes)

    async def _run_job(self, job: CompilationJob, semaphore: asyncio.Semaphore) -> JobOutcome:
        log = logger.bind(job=job.index, version=str(job.version), fingerprint=job.fingerprint[:19])
        async with semaphore:
            if self.token.cancelled:
                log.debug("job_skipped_cancelled")
                return JobOutcome(job, JobStatus.CANCELLED)

            executable = self.executables.get(job.version)
            if executable is None:
                return JobOutcome(
                    job,
                    JobStatus.FAILED,
                    error=CompilerProcessError(f"No compiler executable for version {job.version}"),
                )

            start = time.perf_counter()
            try:
                proc, attempts = await self._spawn(executable)
            except CompilerProcessError as e:
                log.warning("job_spawn_failed", error=str(e))
                return JobOutcome(job, JobStatus.FAILED, error=e, duration=time.perf_counter() - start)
            if proc is None:
                return JobOutcome(job, JobStatus.CANCELLED, attempts=attempts)

            log.debug("job_started", pid=proc.pid, sources=len(job.sources))
            try:
                status, stdout, stderr = await self._exchange(proc, encode_input(job.input_document()))
            finally:
                await _kill(proc)
            duration = time.perf_counter() - start

        if status == JobStatus.TIMED_OUT:
            log.warning("job_timed_out", timeout=self.job_timeout)
            return JobOutcome(job, status, error=CompilationTimeoutError(self.job_timeout or 0.0),
                              duration=duration, attempts=attempts)
        if status == JobStatus.CANCELLED:
            log.warning("job_cancelled", reason=self.token.reason)
            return JobOutcome(job, status, duration=duration, attempts=attempts)

        if proc.returncode != 0:
            error = CompilerProcessError(
                "Compiler exited abnormally", returncode=proc.returncode, stderr=stderr.decode("utf-8", "replace")
            )
            log.warning("job_failed", returncode=proc.returncode)
            return JobOutcome(job, JobStatus.FAILED, error=error, duration=duration, attempts=attempts)
        try:
            output = parse_output(stdout)
        except CompilerProcessError as e:
            log.warning("job_bad_response", error=e.reason)
            return JobOutcome(job, JobStatus.FAILED, error=e, duration=duration, attempts=attempts)

        log.info("job_completed", duration=round(duration, 3), errors=len(output.errors))
        return JobOutcome(job, JobStatus.COMPLETED, output=output, duration=duration, attempts=attempts)

    async def _spawn(self, executable: Path) -> Tuple[Optional[asyncio.subprocess.Process], int]:
        """Start the compiler; returns (None, attempts) if cancelled while backing off.

        Raises:
            CompilerProcessError: If the process cannot be started.
        """
        delay = self.spawn_backoff
        attempt = 0
        while True:
            attempt += 1
            try:
                proc = await asyncio.create_subprocess_exec(
                    str(executable),
                    "--standard-json",
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
                return proc, attempt
            except OSError as e:
                if e.errno in RETRYABLE_SPAWN_ERRNOS and attempt <= self.max_spawn_retries:
                    logger.warning("spawn_retry", attempt=attempt, delay=delay, error=str(e))
                    await asyncio.sleep(delay)
                    delay *= 2
                    if self.token.cancelled:
                        return None, attempt
                    continue
                raise CompilerProcessError(f"Failed to start compiler {executable}: {e}") from e

    async def _exchange(
        self,
        proc: asyncio.subprocess.Process,
        payload: bytes,
    ) -> Tuple[JobStatus, bytes, bytes]:
        """One request/response round-trip, raced against the deadline and the token."""
        communicate = asyncio.ensure_future(proc.communicate(payload))
        cancelled = asyncio.ensure_future(self.token.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate, cancelled},
                timeout=self.job_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancelled.cancel()
            await asyncio.gather(cancelled, return_exceptions=True)

        if communicate in done:
            stdout, stderr = communicate.result()
            return JobStatus.COMPLETED, stdout, stderr

        await _kill(proc)
        communicate.cancel()
        await asyncio.gather(communicate, return_exceptions=True)
        if cancelled in done:
            return JobStatus.CANCELLED, b"", b""
        return JobStatus.TIMED_OUT, b"", b""


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill and reap ``proc`` if it is still running."""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()
