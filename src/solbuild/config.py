"""Build configuration: ``solbuild.json``, ``remappings.txt`` and overrides."""

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from solbuild.kernel.errors import ConfigError
from solbuild.kernel.remappings import Remapping, load_remappings_file
from solbuild.kernel.settings import CompilerSettings
from solbuild.kernel.versions import CompilerVersion

CONFIG_FILENAME = "solbuild.json"
REMAPPINGS_FILENAME = "remappings.txt"
DEFAULT_CACHE_PATH = Path("cache") / "solbuild-cache.json"


class BuildRequest(BaseModel):
    """Everything one build needs to know. Relative paths are relative to ``project_root``."""
    project_root: Path
    source_roots: List[str] = Field(default_factory=lambda: ["contracts"])
    include_paths: List[str] = Field(default_factory=lambda: ["lib", "node_modules"])
    remappings: List[Remapping] = Field(default_factory=list)
    settings: CompilerSettings = Field(default_factory=CompilerSettings)
    compiler_version: str = "auto"  # "auto" or an exact version pinned for the whole project
    max_concurrency: Optional[int] = Field(None, ge=1)
    job_timeout: Optional[float] = Field(None, gt=0)
    global_timeout: Optional[float] = Field(None, gt=0)
    cache_path: Path = DEFAULT_CACHE_PATH
    artifacts_dir: Optional[Path] = None
    artifact_format: Literal["full", "minimal", "hardhat"] = "full"
    offline: bool = False
    force: bool = False
    mtime_fast_path: bool = False
    max_spawn_retries: int = Field(3, ge=0)
    spawn_backoff: float = Field(0.1, ge=0)

    model_config = ConfigDict(extra="forbid")

    @field_validator("remappings", mode="before")
    @classmethod
    def parse_remapping_strings(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return [Remapping.parse(item) if isinstance(item, str) else item for item in v]
        return v

    @field_validator("compiler_version")
    @classmethod
    def validate_compiler_version(cls, v: str) -> str:
        if v != "auto":
            CompilerVersion.parse(v)
        return v

    @field_validator("source_roots")
    @classmethod
    def validate_source_roots(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("source_roots must not be empty")
        return v

    @property
    def pinned_version(self) -> Optional[CompilerVersion]:
        if self.compiler_version == "auto":
            return None
        return CompilerVersion.parse(self.compiler_version)

    @property
    def cache_file(self) -> Path:
        return self.project_root / self.cache_path

    @property
    def artifacts_path(self) -> Optional[Path]:
        if self.artifacts_dir is None:
            return None
        return self.project_root / self.artifacts_dir


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be an object")
    if "project_root" in data:
        raise ConfigError(f"{path}: project_root cannot be set in the config file")
    return data


def load_build_request(
    project_root: Union[str, Path],
    overrides: Optional[Mapping[str, Any]] = None,
) -> BuildRequest:
    """Assemble a BuildRequest for a project.

    Order: ``solbuild.json`` (if present), then ``remappings.txt`` appended to
    the configured remappings, then ``overrides`` (``None`` values are ignored).

    Raises:
        ConfigError: If any layer is invalid.
    """
    root = Path(project_root).resolve()
    if not root.is_dir():
        raise ConfigError(f"Project root is not a directory: {root}")

    data: Dict[str, Any] = {}
    config_path = root / CONFIG_FILENAME
    if config_path.is_file():
        data.update(_read_config_file(config_path))

    remappings: List[Any] = list(data.get("remappings", []))
    remappings.extend(load_remappings_file(root / REMAPPINGS_FILENAME))
    data["remappings"] = remappings

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    data["project_root"] = root

    try:
        return BuildRequest.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid build configuration: {e}") from e
