"""Per-build context passed explicitly through every stage.

One context is created at build start and discarded when the build ends;
there is no process-wide registry or cache singleton.
"""

import asyncio
import threading
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

from .cache import CacheSnapshot, CompilationCache
from .compiler_io import Diagnostic
from .importer import SourceImporter
from .resolver import VersionResolver


class CancellationToken:
    """Build-wide cancellation signal, safe to trigger from any thread.

    Coroutines await ``wait()``; ``cancel()`` wakes every waiter on its own
    event loop.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "aborted") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            waiters = list(self._waiters)
        for loop, event in waiters:
            if loop.is_closed():
                continue
            try:
                loop.call_soon_threadsafe(event.set)
            except RuntimeError:
                # Loop closed between the check and the call
                pass

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        event = asyncio.Event()
        with self._lock:
            if self._event.is_set():
                return
            self._waiters.append((loop, event))
        try:
            await event.wait()
        finally:
            with self._lock:
                self._waiters.remove((loop, event))


@dataclass
class BuildContext:
    """Everything one build needs, created once at build start."""
    importer: SourceImporter
    resolver: VersionResolver
    cache: CompilationCache
    snapshot: CacheSnapshot = field(default_factory=CacheSnapshot.empty)
    token: CancellationToken = field(default_factory=CancellationToken)
    warnings: List[Diagnostic] = field(default_factory=list)
    build_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def __post_init__(self) -> None:
        self.log = structlog.get_logger("solbuild.build").bind(build_id=self.build_id)

    def cancel(self, reason: str = "aborted") -> None:
        self.token.cancel(reason)
