"""Source files and project source discovery."""

from pathlib import Path
from typing import Iterable, List, Tuple

from pydantic import BaseModel, ConfigDict

from .versions import VersionConstraint, intersect_all


SOURCE_SUFFIX = ".sol"


class FileRecord(BaseModel):
    """Per-file parse record persisted in the cache for the mtime fast path.

    Imports are stored as written in the source (not resolved) so that a
    remapping change never reuses a stale resolution.
    """
    content_hash: str
    mtime_ns: int
    size: int
    raw_imports: Tuple[str, ...] = ()
    version_pragmas: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True, extra="forbid")


class SourceFile(BaseModel):
    """One parsed source file. Immutable for the duration of a build."""
    path: str  # Source unit name, e.g. "contracts/Token.sol"
    fs_path: Path
    content: str
    content_hash: str  # "sha256:<hex>"
    raw_imports: Tuple[str, ...] = ()  # As written, in declaration order
    imports: Tuple[str, ...] = ()  # Resolved source unit names, same order
    version_pragmas: Tuple[str, ...] = ()
    mtime_ns: int = 0
    size: int = 0

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def constraint(self) -> VersionConstraint:
        """Intersection of every pragma declared in this file (unconstrained if none)."""
        return intersect_all(VersionConstraint.parse(p) for p in self.version_pragmas)

    def to_record(self) -> FileRecord:
        return FileRecord(
            content_hash=self.content_hash,
            mtime_ns=self.mtime_ns,
            size=self.size,
            raw_imports=self.raw_imports,
            version_pragmas=self.version_pragmas,
        )


def source_unit_name(project_root: Path, fs_path: Path) -> str:
    """Project-relative POSIX path, or the absolute path for files outside the root."""
    try:
        return fs_path.resolve().relative_to(project_root.resolve()).as_posix()
    except ValueError:
        return fs_path.resolve().as_posix()


def discover_sources(project_root: Path, source_roots: Iterable[str]) -> List[Tuple[str, Path]]:
    """Find every source file under the configured roots.

    Returns:
        Sorted list of (source unit name, filesystem path); duplicates across
        overlapping roots are collapsed.
    """
    found = {}
    for root in source_roots:
        base = (project_root / root)
        if base.is_file() and base.suffix == SOURCE_SUFFIX:
            candidates = [base]
        elif base.is_dir():
            candidates = base.rglob(f"*{SOURCE_SUFFIX}")
        else:
            continue
        for candidate in candidates:
            if candidate.is_file():
                found[source_unit_name(project_root, candidate)] = candidate.resolve()
    return sorted(found.items())
