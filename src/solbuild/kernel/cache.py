"""Content-addressed compilation cache.

Entries are keyed by job fingerprint and never mutated: a changed job gets a
new fingerprint and a new entry. During a build every reader works on the
immutable snapshot taken at build start; only the aggregator writes, once,
after every job has finished.
"""

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Set, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field

from .compiler_io import Artifact, Diagnostic, build_input
from .errors import CacheCorruptionError
from .graph import SourceGraph
from .hash_utils import compute_fingerprint
from .resolver import ResolvedComponent
from .sources import FileRecord
from .versions import CompilerVersion

logger = structlog.get_logger(__name__)

CACHE_FORMAT = "solbuild.cache"
CACHE_SCHEMA_VERSION = "1"


class CacheEntry(BaseModel):
    """Results of one completed job. Immutable once written."""
    fingerprint: str
    version: str
    sources: Tuple[str, ...]
    artifacts: Tuple[Artifact, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = ()

    model_config = ConfigDict(frozen=True, extra="forbid")


class CacheDocument(BaseModel):
    """On-disk cache file."""
    format: Literal["solbuild.cache"] = CACHE_FORMAT
    schema_version: str = CACHE_SCHEMA_VERSION
    files: Dict[str, FileRecord] = Field(default_factory=dict)
    entries: Dict[str, CacheEntry] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


@dataclass(eq=False)
class CompilationJob:
    """One component, one compiler version, one settings object: one invocation."""
    index: int
    version: CompilerVersion
    sources: Tuple[str, ...]
    fingerprint: str
    settings: Dict = field(repr=False)
    contents: Mapping[str, str] = field(repr=False)

    def input_document(self) -> Dict:
        return build_input(self.contents, self.settings)


class CacheSnapshot:
    """Read-only view of the cache as loaded at build start."""

    def __init__(
        self,
        entries: Optional[Mapping[str, CacheEntry]] = None,
        files: Optional[Mapping[str, FileRecord]] = None,
    ):
        self.entries: Mapping[str, CacheEntry] = MappingProxyType(dict(entries or {}))
        self.files: Mapping[str, FileRecord] = MappingProxyType(dict(files or {}))

    @classmethod
    def empty(cls) -> "CacheSnapshot":
        return cls()

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self.entries

    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        return self.entries.get(fingerprint)

    def collect_garbage(self, present: Set[str]) -> "CacheSnapshot":
        """Drop entries referencing any source not in ``present``, and stale file records."""
        kept = {
            fp: entry for fp, entry in self.entries.items()
            if all(path in present for path in entry.sources)
        }
        files = {path: rec for path, rec in self.files.items() if path in present}
        dropped = len(self.entries) - len(kept)
        if dropped:
            logger.info("cache_gc", dropped=dropped, kept=len(kept))
        return CacheSnapshot(kept, files)

    def retain(self, fingerprints: Set[str]) -> "CacheSnapshot":
        """Keep only the entries some current job can still hit."""
        kept = {fp: entry for fp, entry in self.entries.items() if fp in fingerprints}
        dropped = len(self.entries) - len(kept)
        if dropped:
            logger.info("cache_unreachable_dropped", dropped=dropped, kept=len(kept))
        return CacheSnapshot(kept, self.files)

    def to_document(self) -> CacheDocument:
        return CacheDocument(files=dict(self.files), entries=dict(self.entries))


class CompilationCache:
    """Fingerprinting, classification and persistence of compilation jobs."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Tuple[CacheSnapshot, Optional[CacheCorruptionError]]:
        """Load the snapshot for this build.

        A missing file is an empty cache. A corrupt or mismatched file is also
        treated as empty; the error is returned so it can be reported as a
        warning instead of failing the build.
        """
        from solbuild._internal.io.cache_file import read_cache_document

        try:
            document = read_cache_document(self.path)
        except CacheCorruptionError as e:
            logger.warning("cache_corrupted", path=str(self.path), reason=e.reason)
            return CacheSnapshot.empty(), e
        if document is None:
            logger.debug("cache_missing", path=str(self.path))
            return CacheSnapshot.empty(), None
        logger.debug("cache_loaded", path=str(self.path), entries=len(document.entries))
        return CacheSnapshot(document.entries, document.files), None

    def write(self, snapshot: CacheSnapshot) -> None:
        from solbuild._internal.io.cache_file import write_cache_document

        write_cache_document(self.path, snapshot.to_document())
        logger.debug("cache_written", path=str(self.path), entries=len(snapshot))

    def clear(self) -> bool:
        if self.path.exists():
            self.path.unlink()
            return True
        return False

    @staticmethod
    def create_jobs(
        graph: SourceGraph,
        resolved: Sequence[ResolvedComponent],
        settings: Dict,
    ) -> List[CompilationJob]:
        """Build one fingerprinted job per resolved component."""
        jobs = []
        for rc in resolved:
            paths = rc.component.paths
            fingerprint = compute_fingerprint(
                str(rc.version),
                settings,
                ((p, graph.node(p).content_hash) for p in paths),
            )
            jobs.append(CompilationJob(
                index=rc.component.index,
                version=rc.version,
                sources=paths,
                fingerprint=fingerprint,
                settings=settings,
                contents={p: graph.node(p).content for p in paths},
            ))
        return jobs

    @staticmethod
    def classify(
        jobs: Iterable[CompilationJob],
        snapshot: CacheSnapshot,
        force: bool = False,
    ) -> Tuple[List[CompilationJob], List[CompilationJob]]:
        """Partition jobs into (cache hits, dirty) in a single pass."""
        hits: List[CompilationJob] = []
        dirty: List[CompilationJob] = []
        for job in jobs:
            if not force and job.fingerprint in snapshot:
                hits.append(job)
            else:
                dirty.append(job)
        logger.info("jobs_classified", cache_hits=len(hits), dirty=len(dirty), forced=force)
        return hits, dirty
