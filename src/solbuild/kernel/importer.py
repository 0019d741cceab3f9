"""Source importer: extracts import statements and version pragmas from one file.

Comments are blanked out before matching, and string contents are masked
while locating statements, so commented-out or quoted ``import`` text is
never picked up.
"""

import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import structlog

from .errors import ImportResolutionError, ParseError
from .hash_utils import hash_content
from .remappings import Remapping, apply_remappings
from .sources import FileRecord, SourceFile
from .versions import VersionConstraint

logger = structlog.get_logger(__name__)

_IMPORT_RE = re.compile(r"\bimport\b")
_PRAGMA_RE = re.compile(r"\bpragma\s+solidity\b")
_FROM_RE = re.compile(r"\bfrom\b")
_STRING_RE = re.compile(r"\"((?:[^\"\\\n]|\\.)*)\"|'((?:[^'\\\n]|\\.)*)'")


@dataclass
class ParsedSource:
    """Import texts and pragma expressions, in declaration order."""
    imports: List[str]
    pragmas: List[str]


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def _strip_comments(path: str, content: str) -> Tuple[str, str]:
    """Return (code, masked).

    ``code`` has comments replaced by spaces (newlines kept); ``masked`` is
    ``code`` with string literal contents also replaced by spaces. Both have
    the same length as ``content`` so offsets line up.
    """
    code = list(content)
    masked = list(content)
    i = 0
    n = len(content)
    while i < n:
        ch = content[i]
        nxt = content[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            while i < n and content[i] != "\n":
                code[i] = masked[i] = " "
                i += 1
        elif ch == "/" and nxt == "*":
            start = i
            end = content.find("*/", i + 2)
            if end == -1:
                raise ParseError(path, "unterminated block comment", _line_of(content, start))
            for j in range(i, end + 2):
                if content[j] != "\n":
                    code[j] = masked[j] = " "
            i = end + 2
        elif ch in ("\"", "'"):
            start = i
            i += 1
            while i < n and content[i] != ch:
                if content[i] == "\n":
                    raise ParseError(path, "unterminated string literal", _line_of(content, start))
                if content[i] == "\\":
                    masked[i] = " "
                    i += 1
                    if i >= n:
                        break
                masked[i] = " "
                i += 1
            if i >= n:
                raise ParseError(path, "unterminated string literal", _line_of(content, start))
            i += 1
        else:
            i += 1
    return "".join(code), "".join(masked)


def parse_source(path: str, content: str) -> ParsedSource:
    """Extract import paths and ``pragma solidity`` expressions.

    Raises:
        ParseError: On malformed comments/strings, import statements without a
            path, unterminated statements, or unparsable pragma expressions.
    """
    code, masked = _strip_comments(path, content)

    imports: List[str] = []
    for match in _IMPORT_RE.finditer(masked):
        end = masked.find(";", match.end())
        line = _line_of(content, match.start())
        if end == -1:
            raise ParseError(path, "import statement is missing ';'", line)
        statement_masked = masked[match.end():end]
        statement = code[match.end():end]
        literals = [m for m in _STRING_RE.finditer(statement)]
        if not literals:
            raise ParseError(path, "import statement without a path", line)
        from_match = _FROM_RE.search(statement_masked)
        if from_match:
            after = [m for m in literals if m.start() > from_match.start()]
            if not after:
                raise ParseError(path, "import statement without a path after 'from'", line)
            literal = after[0]
        else:
            literal = literals[0]
        value = literal.group(1) if literal.group(1) is not None else literal.group(2)
        if not value:
            raise ParseError(path, "empty import path", line)
        imports.append(value)

    pragmas: List[str] = []
    for match in _PRAGMA_RE.finditer(masked):
        end = masked.find(";", match.end())
        line = _line_of(content, match.start())
        if end == -1:
            raise ParseError(path, "pragma is missing ';'", line)
        expression = " ".join(code[match.end():end].split())
        try:
            VersionConstraint.parse(expression)
        except ValueError as e:
            raise ParseError(path, f"invalid version pragma: {e}", line) from e
        pragmas.append(expression)

    return ParsedSource(imports=imports, pragmas=pragmas)


class SourceImporter:
    """Reads, hashes, parses and resolves the imports of one source file at a time."""

    def __init__(
        self,
        project_root: Path,
        remappings: Sequence[Remapping] = (),
        include_paths: Sequence[str] = (),
    ):
        self.project_root = project_root.resolve()
        self.remappings = list(remappings)
        self.include_paths = list(include_paths)

    def resolve_name(self, importer: str, import_path: str) -> str:
        """Map import text written in ``importer`` to a source unit name."""
        if import_path.startswith(("./", "../")):
            joined = posixpath.join(posixpath.dirname(importer), import_path)
            return posixpath.normpath(joined)
        remapped = apply_remappings(self.remappings, importer, import_path)
        if remapped is not None:
            return posixpath.normpath(remapped)
        return posixpath.normpath(import_path)

    def locate(self, name: str) -> Tuple[Optional[Path], List[str]]:
        """Find the file for a source unit name. Returns (path or None, tried locations)."""
        tried: List[str] = []
        candidates = [self.project_root / name]
        candidates.extend(self.project_root / inc / name for inc in self.include_paths)
        if posixpath.isabs(name):
            candidates.append(Path(name))
        for candidate in candidates:
            tried.append(str(candidate))
            if candidate.is_file():
                return candidate.resolve(), tried
        return None, tried

    def resolve_import(self, importer: str, import_path: str) -> Tuple[str, Path]:
        """Resolve an import to (source unit name, filesystem path).

        Raises:
            ImportResolutionError: If the file exists under no candidate location.
        """
        name = self.resolve_name(importer, import_path)
        fs_path, tried = self.locate(name)
        if fs_path is None:
            raise ImportResolutionError(importer, import_path, tried)
        return name, fs_path

    def load(self, name: str, fs_path: Path, record: Optional[FileRecord] = None) -> SourceFile:
        """Build the SourceFile for ``name``.

        When ``record`` matches the file's (mtime_ns, size) its hash and parse
        results are reused; the content is still read.
        """
        stat = fs_path.stat()
        raw = fs_path.read_bytes()
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(name, f"not valid UTF-8: {e}") from e

        if record is not None and record.mtime_ns == stat.st_mtime_ns and record.size == stat.st_size:
            content_hash = record.content_hash
            raw_imports = list(record.raw_imports)
            pragmas = list(record.version_pragmas)
            logger.debug("source_reused", path=name)
        else:
            content_hash = hash_content(raw)
            parsed = parse_source(name, content)
            raw_imports = parsed.imports
            pragmas = parsed.pragmas

        resolved = [self.resolve_import(name, text)[0] for text in raw_imports]
        return SourceFile(
            path=name,
            fs_path=fs_path,
            content=content,
            content_hash=content_hash,
            raw_imports=tuple(raw_imports),
            imports=tuple(resolved),
            version_pragmas=tuple(pragmas),
            mtime_ns=stat.st_mtime_ns,
            size=stat.st_size,
        )
