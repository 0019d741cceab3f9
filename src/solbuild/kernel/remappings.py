"""Import remappings: ``[context:]prefix=target``."""

from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from .errors import ConfigError


class Remapping(BaseModel):
    """A single import remapping rule.

    ``context`` restricts the rule to importing files whose source unit name
    starts with it; an empty context applies everywhere.
    """
    context: str = ""
    prefix: str
    target: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def parse(cls, text: str) -> "Remapping":
        raw = text.strip()
        if "=" not in raw:
            raise ConfigError(f"Invalid remapping {text!r}: expected [context:]prefix=target")
        lhs, target = raw.split("=", 1)
        context = ""
        if ":" in lhs:
            context, lhs = lhs.split(":", 1)
        if not lhs:
            raise ConfigError(f"Invalid remapping {text!r}: empty prefix")
        return cls(context=context, prefix=lhs, target=target)

    def __str__(self) -> str:
        head = f"{self.context}:" if self.context else ""
        return f"{head}{self.prefix}={self.target}"


def parse_remappings(lines: Iterable[str]) -> List[Remapping]:
    """Parse remapping lines, skipping blanks and ``#`` comments."""
    remappings = []
    for line in lines:
        stripped = line.split("#", 1)[0].strip()
        if stripped:
            remappings.append(Remapping.parse(stripped))
    return remappings


def load_remappings_file(path: Path) -> List[Remapping]:
    """Load ``remappings.txt``; a missing file yields no remappings."""
    if not path.is_file():
        return []
    return parse_remappings(path.read_text(encoding="utf-8").splitlines())


def apply_remappings(remappings: Iterable[Remapping], importer: str, import_path: str) -> Optional[str]:
    """Rewrite ``import_path`` with the best matching remapping.

    The longest matching context wins, then the longest prefix. Returns None
    when nothing matches.
    """
    best: Optional[Remapping] = None
    for remapping in remappings:
        if remapping.context and not importer.startswith(remapping.context):
            continue
        if not import_path.startswith(remapping.prefix):
            continue
        if best is None or (len(remapping.context), len(remapping.prefix)) > (len(best.context), len(best.prefix)):
            best = remapping
    if best is None:
        return None
    return best.target + import_path[len(best.prefix):]
