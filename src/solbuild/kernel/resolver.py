"""Select one compiler release per connected component.

The combined constraint of a component is the intersection of every
member's pragmas. The selected release is the highest one, among installed
and installable releases, that satisfies it; the same pragmas against the
same release index always select the same version.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from solbuild.codes import DiagnosticCode
from .compiler_io import Diagnostic
from .errors import VersionConflictError, VersionUnavailableError
from .graph import Component, SourceGraph
from .version_manager import VersionManager
from .versions import CompilerVersion, VersionConstraint, intersect_all

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolvedComponent:
    """A component with its combined constraint and selected compiler release."""
    component: Component
    constraint: VersionConstraint
    version: CompilerVersion
    pinned: bool = False


class VersionResolver:
    """Resolves compiler versions against a version manager.

    Args:
        manager: Version-manager collaborator
        pinned: Explicit version for the whole project; bypasses pragma inference
        offline: Only consider installed releases
    """

    def __init__(
        self,
        manager: VersionManager,
        pinned: Optional[CompilerVersion] = None,
        offline: bool = False,
    ):
        self.manager = manager
        self.pinned = pinned
        self.offline = offline
        self.warnings: List[Diagnostic] = []
        self._installed: Optional[List[CompilerVersion]] = None
        self._candidates: Optional[List[CompilerVersion]] = None

    def installed(self) -> List[CompilerVersion]:
        if self._installed is None:
            self._installed = sorted(set(self.manager.installed_versions()))
        return self._installed

    def candidates(self) -> List[CompilerVersion]:
        """Installed releases plus, unless offline, installable ones."""
        if self._candidates is None:
            versions = set(self.installed())
            if not self.offline:
                versions.update(self.manager.available_versions())
            self._candidates = sorted(versions)
        return self._candidates

    @staticmethod
    def declared_pragmas(graph: SourceGraph, component: Component) -> Dict[str, List[str]]:
        """Pragma expressions per member that declares any."""
        declared: Dict[str, List[str]] = {}
        for path in component.paths:
            source = graph.node(path)
            if source.version_pragmas:
                declared[path] = list(source.version_pragmas)
        return declared

    @classmethod
    def combined_constraint(cls, graph: SourceGraph, component: Component) -> VersionConstraint:
        """Intersect the pragmas of every member.

        Raises:
            VersionConflictError: If the intersection is empty; names every
                member that declares a pragma, with its expressions.
        """
        declared = cls.declared_pragmas(graph, component)
        combined = intersect_all(graph.node(path).constraint for path in declared)
        if combined.is_empty():
            raise VersionConflictError(declared)
        return combined

    def resolve_component(self, graph: SourceGraph, component: Component) -> ResolvedComponent:
        if self.pinned is not None:
            return self._resolve_pinned(graph, component)

        constraint = self.combined_constraint(graph, component)

        selected = constraint.select_highest(self.candidates())
        if selected is None:
            raise VersionUnavailableError(
                str(constraint),
                component.paths,
                detail="offline, only installed releases considered" if self.offline else None,
            )
        logger.debug(
            "version_resolved",
            component=component.index,
            constraint=str(constraint),
            version=str(selected),
        )
        return ResolvedComponent(component, constraint, selected)

    def _resolve_pinned(self, graph: SourceGraph, component: Component) -> ResolvedComponent:
        # Pragmas only decide whether to warn; an empty intersection is a mismatch too.
        declared = self.declared_pragmas(graph, component)
        constraint = intersect_all(graph.node(path).constraint for path in declared)
        if self.pinned not in self.candidates():
            raise VersionUnavailableError(f"={self.pinned}", component.paths, detail="pinned version")
        if not constraint.contains(self.pinned):
            self.warnings.append(Diagnostic(
                severity="warning",
                message=(
                    f"Pinned compiler {self.pinned} does not satisfy {constraint} "
                    f"declared by {', '.join(component.paths)}"
                ),
                code=DiagnosticCode.VERSION_PIN_MISMATCH.value,
                origin="solbuild",
            ))
        logger.debug("version_pinned", component=component.index, version=str(self.pinned))
        return ResolvedComponent(component, constraint, self.pinned, pinned=True)

    def resolve(self, graph: SourceGraph) -> List[ResolvedComponent]:
        """Resolve every component of the graph, in component order."""
        return [self.resolve_component(graph, c) for c in graph.components()]

    def ensure_installed(
        self,
        versions: Iterable[CompilerVersion],
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> Dict[CompilerVersion, Path]:
        """Return executables for ``versions``, installing missing ones.

        Installation stops early once ``cancelled()`` is true; the versions
        not yet installed are left out of the result.

        Raises:
            VersionUnavailableError: If the manager cannot provide a release.
        """
        executables: Dict[CompilerVersion, Path] = {}
        for version in sorted(set(versions)):
            path = self.manager.executable(version)
            if path is None:
                if self.offline:
                    raise VersionUnavailableError(f"={version}", [], detail="not installed and offline")
                if cancelled is not None and cancelled():
                    logger.info("compiler_install_skipped", version=str(version))
                    continue
                logger.info("compiler_install", version=str(version))
                path = self.manager.install(version)
            executables[version] = path
        return executables
