"""Diagnostic code constants for diagnostics raised by the build itself.

Compiler diagnostics carry the compiler's own numeric error codes; these
codes mark diagnostics with ``origin="solbuild"``.
"""

from enum import Enum


class DiagnosticCode(str, Enum):
    """Build-level diagnostic codes."""

    # Errors (job-scoped, fail the build)
    COMPILER_PROCESS_ERROR = "COMPILER_PROCESS_ERROR"
    COMPILER_TIMEOUT = "COMPILER_TIMEOUT"
    JOB_CANCELLED = "JOB_CANCELLED"

    # Warnings (non-blocking)
    CACHE_CORRUPTED = "CACHE_CORRUPTED"
    CACHE_WRITE_FAILED = "CACHE_WRITE_FAILED"
    VERSION_PIN_MISMATCH = "VERSION_PIN_MISMATCH"


class BuildStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class JobStatus(str, Enum):
    """Outcome of one scheduled job."""
    COMPLETED = "completed"  # Process exited cleanly with a well-formed response
    FAILED = "failed"  # Spawn failure, crash, non-zero exit or malformed response
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
