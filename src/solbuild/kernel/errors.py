"""Error taxonomy for the build kernel.

Build-aborting errors (raised before any compiler runs):
    ParseError, ImportResolutionError, VersionConflictError,
    VersionUnavailableError, ConfigError

Job-scoped errors (converted to diagnostics by the scheduler/aggregator):
    CompilerProcessError, CompilationTimeoutError

Recovered locally (build continues with an empty cache):
    CacheCorruptionError
"""

from typing import Dict, List, Optional, Sequence


class SolbuildError(Exception):
    """Base exception for all build errors."""
    pass


class ConfigError(SolbuildError, ValueError):
    """Raised when the build configuration is invalid."""
    pass


class ParseError(SolbuildError):
    """Raised when a source file's imports or pragmas cannot be parsed."""
    def __init__(self, path: str, message: str, line: Optional[int] = None):
        self.path = path
        self.line = line
        self.reason = message
        location = f"{path}:{line}" if line is not None else path
        super().__init__(f"{location}: {message}")


class ImportResolutionError(SolbuildError):
    """Raised when an import cannot be located under any remapping or include path."""
    def __init__(self, importer: str, import_path: str, tried: Sequence[str]):
        self.importer = importer
        self.import_path = import_path
        self.tried = list(tried)
        tried_str = "\n".join(f"  - {t}" for t in self.tried)
        msg = f'Unable to resolve import "{import_path}" in {importer}'
        if tried_str:
            msg += f"\n  Tried:\n{tried_str}"
        super().__init__(msg)


class VersionConflictError(SolbuildError):
    """Raised when the version constraints of one component have an empty intersection.

    Attributes:
        constraints: source path -> list of declared pragma expressions, for every
            file in the component that declares one
    """
    def __init__(self, constraints: Dict[str, List[str]]):
        self.constraints = {path: list(exprs) for path, exprs in sorted(constraints.items())}
        lines = [
            f"  {path}: {' '.join(exprs)}"
            for path, exprs in self.constraints.items()
        ]
        super().__init__(
            "Conflicting compiler version requirements:\n" + "\n".join(lines)
        )

    @property
    def files(self) -> List[str]:
        return list(self.constraints)


class VersionUnavailableError(SolbuildError):
    """Raised when no installed or installable compiler satisfies a constraint."""
    def __init__(self, constraint: str, files: Sequence[str], detail: Optional[str] = None):
        self.constraint = constraint
        self.files = sorted(files)
        files_str = "\n".join(f"  {f}" for f in self.files)
        msg = f"No compiler release satisfies {constraint}"
        if detail:
            msg += f" ({detail})"
        if files_str:
            msg += f" required by:\n{files_str}"
        super().__init__(msg)


class CompilerProcessError(SolbuildError):
    """Raised when the compiler process fails to start, crashes, or returns garbage."""
    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        self.reason = message
        msg = message
        if returncode is not None:
            msg += f" (exit code {returncode})"
        tail = stderr.strip()
        if tail:
            msg += f": {tail[-2000:]}"
        super().__init__(msg)


class CompilationTimeoutError(SolbuildError, TimeoutError):
    """Raised when one compiler invocation exceeds its deadline."""
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Compiler invocation exceeded {timeout:g}s deadline")


class CacheCorruptionError(SolbuildError):
    """Raised when the persisted cache cannot be read or has the wrong schema."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Unreadable build cache {path}: {reason}")
