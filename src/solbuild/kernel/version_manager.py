"""Version-manager collaborator: which compiler releases exist and where they live.

The kernel only depends on the ``VersionManager`` protocol. ``LocalVersionManager``
is a directory-backed implementation:

    <home>/compilers/<version>/solc     installed executables
    <home>/list.json                    {"releases": {"0.8.10": "solc-linux-v0.8.10"}}
    <home>/mirror/<filename>            release binaries available for install
"""

import json
import os
import shutil
import stat
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

import structlog

from .errors import VersionUnavailableError
from .versions import CompilerVersion

logger = structlog.get_logger(__name__)

EXECUTABLE_NAME = "solc"


@runtime_checkable
class VersionManager(Protocol):
    def installed_versions(self) -> List[CompilerVersion]:
        ...

    def available_versions(self) -> List[CompilerVersion]:
        ...

    def install(self, version: CompilerVersion) -> Path:
        ...

    def executable(self, version: CompilerVersion) -> Optional[Path]:
        ...


def default_home() -> Path:
    env = os.environ.get("SOLBUILD_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".solbuild"


class LocalVersionManager:
    """Compilers installed under a home directory, installable from a local mirror."""

    def __init__(self, home: Optional[Path] = None):
        self.home = (home or default_home()).expanduser()
        self._lock = threading.Lock()

    @property
    def compilers_dir(self) -> Path:
        return self.home / "compilers"

    def _release_index(self) -> Dict[str, str]:
        index_path = self.home / "list.json"
        if not index_path.is_file():
            return {}
        try:
            data = json.loads(index_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("release_index_unreadable", path=str(index_path), error=str(e))
            return {}
        releases = data.get("releases", {}) if isinstance(data, dict) else {}
        return {str(k): str(v) for k, v in releases.items()} if isinstance(releases, dict) else {}

    def executable(self, version: CompilerVersion) -> Optional[Path]:
        candidate = self.compilers_dir / str(version) / EXECUTABLE_NAME
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate
        return None

    def installed_versions(self) -> List[CompilerVersion]:
        if not self.compilers_dir.is_dir():
            return []
        versions = []
        for entry in self.compilers_dir.iterdir():
            try:
                version = CompilerVersion.parse(entry.name)
            except ValueError:
                continue
            if self.executable(version) is not None:
                versions.append(version)
        return sorted(versions)

    def available_versions(self) -> List[CompilerVersion]:
        versions = []
        for text in self._release_index():
            try:
                versions.append(CompilerVersion.parse(text))
            except ValueError:
                logger.warning("release_index_bad_version", version=text)
        return sorted(set(versions))

    def install(self, version: CompilerVersion) -> Path:
        """Copy the release binary from the mirror into the compilers directory.

        Raises:
            VersionUnavailableError: If the release is not listed or its binary is missing.
        """
        with self._lock:
            existing = self.executable(version)
            if existing is not None:
                return existing

            filename = self._release_index().get(str(version))
            if filename is None:
                raise VersionUnavailableError(f"={version}", [], detail="not in release index")
            source = self.home / "mirror" / filename
            if not source.is_file():
                raise VersionUnavailableError(f"={version}", [], detail=f"release binary {source} missing")

            target_dir = self.compilers_dir / str(version)
            target_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target_dir, prefix=".solc-")
            os.close(fd)
            tmp = Path(tmp_name)
            try:
                shutil.copyfile(source, tmp)
                tmp.chmod(tmp.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
                target = target_dir / EXECUTABLE_NAME
                os.replace(tmp, target)
            finally:
                if tmp.exists():
                    tmp.unlink()
            logger.info("compiler_installed", version=str(version), path=str(target))
            return target
