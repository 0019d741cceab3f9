"""Compiler versions and version-constraint algebra.

A constraint is a union of ranges. Parsing follows the semver rules the
Solidity compiler applies to ``pragma solidity`` expressions:

    ^0.8.1        >=0.8.1 <0.9.0      (left-most non-zero component is bumped)
    ~0.8.1        >=0.8.1 <0.9.0
    0.8           >=0.8.0 <0.9.0      (partial version = wildcard)
    >=0.6 <0.9    conjunction
    0.4.26 || ^0.8.0   disjunction
    0.6.0 - 0.7   hyphen range        (>=0.6.0 <0.8.0)

Pre-release and build suffixes on versions are ignored.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple


_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)(?:[-+].*)?$")
_PARTIAL_RE = re.compile(r"^v?([0-9]+|[xX*])(?:\.([0-9]+|[xX*]))?(?:\.([0-9]+|[xX*]))?(?:[-+][0-9A-Za-z.+-]*)?$")
_COMPARATOR_RE = re.compile(r"(\^|~|>=|<=|>|<|=)?\s*(v?[0-9xX*]+(?:\.[0-9xX*]+){0,2}(?:[-+][0-9A-Za-z.+-]*)?)")
_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")


@dataclass(frozen=True, order=True)
class CompilerVersion:
    """One external compiler release, totally ordered by (major, minor, patch)."""
    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> "CompilerVersion":
        """Parse ``0.8.10``, ``v0.8.10`` or ``0.8.10+commit.abc``."""
        match = _VERSION_RE.match(str(text).strip())
        if not match:
            raise ValueError(f"Invalid compiler version: {text!r}")
        return cls(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class VersionRange:
    """A contiguous range of versions. ``None`` bounds are unbounded."""
    lower: Optional[CompilerVersion] = None
    lower_inclusive: bool = True
    upper: Optional[CompilerVersion] = None
    upper_inclusive: bool = False

    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower > self.upper:
            return True
        if self.lower == self.upper:
            return not (self.lower_inclusive and self.upper_inclusive)
        return False

    def contains(self, version: CompilerVersion) -> bool:
        if self.lower is not None:
            if version < self.lower or (version == self.lower and not self.lower_inclusive):
                return False
        if self.upper is not None:
            if version > self.upper or (version == self.upper and not self.upper_inclusive):
                return False
        return True

    def intersect(self, other: "VersionRange") -> "VersionRange":
        lower, lower_inclusive = self.lower, self.lower_inclusive
        if other.lower is not None:
            if lower is None or other.lower > lower:
                lower, lower_inclusive = other.lower, other.lower_inclusive
            elif other.lower == lower:
                lower_inclusive = lower_inclusive and other.lower_inclusive

        upper, upper_inclusive = self.upper, self.upper_inclusive
        if other.upper is not None:
            if upper is None or other.upper < upper:
                upper, upper_inclusive = other.upper, other.upper_inclusive
            elif other.upper == upper:
                upper_inclusive = upper_inclusive and other.upper_inclusive

        return VersionRange(lower, lower_inclusive, upper, upper_inclusive)

    def __str__(self) -> str:
        if self.lower is None and self.upper is None:
            return "*"
        if self.lower is not None and self.lower == self.upper and not self.is_empty():
            return f"={self.lower}"
        parts = []
        if self.lower is not None:
            parts.append(f"{'>=' if self.lower_inclusive else '>'}{self.lower}")
        if self.upper is not None:
            parts.append(f"{'<=' if self.upper_inclusive else '<'}{self.upper}")
        return " ".join(parts)


class VersionConstraint:
    """A union of version ranges; the result of parsing one or more pragma expressions."""

    def __init__(self, ranges: Iterable[VersionRange]):
        kept = [r for r in ranges if not r.is_empty()]
        # Stable order for printing and equality
        kept.sort(key=_range_sort_key)
        deduped: List[VersionRange] = []
        for r in kept:
            if not deduped or deduped[-1] != r:
                deduped.append(r)
        self.ranges: Tuple[VersionRange, ...] = tuple(deduped)

    @classmethod
    def any(cls) -> "VersionConstraint":
        return cls([VersionRange()])

    @classmethod
    def parse(cls, expression: str) -> "VersionConstraint":
        """Parse a pragma expression. Raises ValueError on malformed input."""
        text = expression.strip()
        if not text:
            raise ValueError("Empty version expression")

        ranges: List[VersionRange] = []
        for alternative in text.split("||"):
            alternative = alternative.strip()
            if not alternative:
                raise ValueError(f"Empty alternative in version expression {expression!r}")
            ranges.extend(_parse_conjunction(alternative, expression))
        return cls(ranges)

    def is_empty(self) -> bool:
        return not self.ranges

    def contains(self, version: CompilerVersion) -> bool:
        return any(r.contains(version) for r in self.ranges)

    def intersect(self, other: "VersionConstraint") -> "VersionConstraint":
        return VersionConstraint(a.intersect(b) for a in self.ranges for b in other.ranges)

    __and__ = intersect

    def select_highest(self, candidates: Iterable[CompilerVersion]) -> Optional[CompilerVersion]:
        """Return the highest candidate satisfying this constraint, or None."""
        return max((v for v in candidates if self.contains(v)), default=None)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionConstraint):
            return NotImplemented
        return self.ranges == other.ranges

    def __hash__(self) -> int:
        return hash(self.ranges)

    def __str__(self) -> str:
        if not self.ranges:
            return "<empty>"
        return " || ".join(str(r) for r in self.ranges)

    def __repr__(self) -> str:
        return f"VersionConstraint({str(self)!r})"


def intersect_all(constraints: Iterable[VersionConstraint]) -> VersionConstraint:
    """Intersect every constraint; the empty iterable yields the unconstrained set."""
    combined = VersionConstraint.any()
    for constraint in constraints:
        combined = combined.intersect(constraint)
    return combined


def _range_sort_key(r: VersionRange) -> tuple:
    lower = (0, (0, 0, 0)) if r.lower is None else (1, (r.lower.major, r.lower.minor, r.lower.patch))
    upper = (1, (0, 0, 0)) if r.upper is None else (0, (r.upper.major, r.upper.minor, r.upper.patch))
    return (lower, not r.lower_inclusive, upper, r.upper_inclusive)


def _parse_conjunction(text: str, expression: str) -> List[VersionRange]:
    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        low = _comparator_range(">=", hyphen.group(1), expression)
        high = _comparator_range("<=", hyphen.group(2), expression)
        return [low.intersect(high)]

    current = VersionRange()
    position = 0
    found = False
    for match in _COMPARATOR_RE.finditer(text):
        gap = text[position:match.start()]
        if gap.strip():
            raise ValueError(f"Unexpected {gap.strip()!r} in version expression {expression!r}")
        position = match.end()
        found = True
        current = current.intersect(
            _comparator_range(match.group(1) or "=", match.group(2), expression)
        )
    if not found or text[position:].strip():
        raise ValueError(f"Invalid version expression {expression!r}")
    return [current]


def _parse_partial(text: str, expression: str) -> List[Optional[int]]:
    match = _PARTIAL_RE.match(text)
    if not match:
        raise ValueError(f"Invalid version {text!r} in {expression!r}")
    parts: List[Optional[int]] = []
    wildcard = False
    for group in match.groups():
        if group is None or group in ("x", "X", "*") or wildcard:
            wildcard = True
            parts.append(None)
        else:
            parts.append(int(group))
    return parts


def _specified(parts: Sequence[Optional[int]]) -> int:
    count = 0
    for part in parts:
        if part is None:
            break
        count += 1
    return count


def _filled(parts: Sequence[Optional[int]]) -> CompilerVersion:
    values = [p if p is not None else 0 for p in parts]
    return CompilerVersion(values[0], values[1], values[2])


def _bump(parts: Sequence[Optional[int]], count: int) -> CompilerVersion:
    """The first version past the partial version that has ``count`` fixed components."""
    major, minor, _ = [p if p is not None else 0 for p in parts]
    if count == 1:
        return CompilerVersion(major + 1, 0, 0)
    return CompilerVersion(major, minor + 1, 0)


def _comparator_range(op: str, version_text: str, expression: str) -> VersionRange:
    parts = _parse_partial(version_text, expression)
    n = _specified(parts)
    base = _filled(parts)

    if n == 0:
        if op in ("<", ">"):
            # "<*" / ">*" match nothing
            return VersionRange(CompilerVersion(0, 0, 1), True, CompilerVersion(0, 0, 0), False)
        return VersionRange()

    if op == "=":
        if n == 3:
            return VersionRange(base, True, base, True)
        return VersionRange(base, True, _bump(parts, n), False)
    if op == ">=":
        return VersionRange(base, True, None, False)
    if op == ">":
        if n == 3:
            return VersionRange(base, False, None, False)
        return VersionRange(_bump(parts, n), True, None, False)
    if op == "<":
        return VersionRange(None, True, base, False)
    if op == "<=":
        if n == 3:
            return VersionRange(None, True, base, True)
        return VersionRange(None, True, _bump(parts, n), False)
    if op == "~":
        if n == 1:
            return VersionRange(base, True, _bump(parts, 1), False)
        return VersionRange(base, True, _bump(parts, 2), False)
    if op == "^":
        major, minor, patch = base.major, base.minor, base.patch
        if major > 0 or n == 1:
            upper = CompilerVersion(major + 1, 0, 0)
        elif minor > 0 or n == 2:
            upper = CompilerVersion(0, minor + 1, 0)
        else:
            upper = CompilerVersion(0, 0, patch + 1)
        return VersionRange(base, True, upper, False)
    raise ValueError(f"Unknown operator {op!r} in {expression!r}")
