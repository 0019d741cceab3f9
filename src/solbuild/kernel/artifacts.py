"""Artifact output shapes.

A small closed set of variants, selected once by name from configuration and
handed to the aggregator. Each variant declares which compiler outputs it
needs and how one artifact is rendered to disk.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .compiler_io import Artifact
from .errors import ConfigError


def _hex(code: str) -> str:
    if not code:
        return "0x"
    return code if code.startswith("0x") else f"0x{code}"


class ArtifactOutput(ABC):
    """Capabilities every artifact shape provides."""

    name: str = ""

    @abstractmethod
    def output_selection(self) -> Dict[str, Dict[str, List[str]]]:
        """Compiler ``outputSelection`` this shape needs."""

    @abstractmethod
    def shape(self, artifact: Artifact) -> Dict[str, Any]:
        """The JSON document written for one artifact."""

    def relative_path(self, artifact: Artifact) -> Path:
        return Path(artifact.source_path.lstrip("/")) / f"{artifact.contract_name}.json"

    def write(self, out_dir: Path, artifacts: Iterable[Artifact]) -> List[Path]:
        """Write one file per artifact under ``out_dir``; returns written paths."""
        written = []
        for artifact in artifacts:
            target = out_dir / self.relative_path(artifact)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(
                json.dumps(self.shape(artifact), indent=2, sort_keys=True, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
            written.append(target)
        return written


class FullArtifactOutput(ArtifactOutput):
    """Everything the compiler returned for the contract."""

    name = "full"

    def output_selection(self) -> Dict[str, Dict[str, List[str]]]:
        return {
            "*": {
                "*": [
                    "abi",
                    "evm.bytecode",
                    "evm.deployedBytecode",
                    "evm.methodIdentifiers",
                    "metadata",
                    "devdoc",
                    "userdoc",
                    "storageLayout",
                ],
                "": ["ast"],
            }
        }

    def shape(self, artifact: Artifact) -> Dict[str, Any]:
        doc = {
            "sourcePath": artifact.source_path,
            "contractName": artifact.contract_name,
            "abi": artifact.abi,
            "bytecode": {"object": _hex(artifact.bytecode), "linkReferences": artifact.link_references},
            "deployedBytecode": {
                "object": _hex(artifact.deployed_bytecode),
                "linkReferences": artifact.deployed_link_references,
            },
            "metadata": artifact.metadata,
        }
        for key, value in artifact.extra.items():
            doc.setdefault(key, value)
        return doc


class MinimalArtifactOutput(ArtifactOutput):
    """ABI and bytecodes only."""

    name = "minimal"

    def output_selection(self) -> Dict[str, Dict[str, List[str]]]:
        return {"*": {"*": ["abi", "evm.bytecode.object", "evm.deployedBytecode.object"]}}

    def shape(self, artifact: Artifact) -> Dict[str, Any]:
        return {
            "abi": artifact.abi,
            "bytecode": _hex(artifact.bytecode),
            "deployedBytecode": _hex(artifact.deployed_bytecode),
        }


class HardhatArtifactOutput(ArtifactOutput):
    """``hh-sol-artifact-1`` documents."""

    name = "hardhat"

    def output_selection(self) -> Dict[str, Dict[str, List[str]]]:
        return {
            "*": {
                "*": ["abi", "evm.bytecode", "evm.deployedBytecode", "evm.methodIdentifiers", "metadata"],
                "": ["ast"],
            }
        }

    def shape(self, artifact: Artifact) -> Dict[str, Any]:
        return {
            "_format": "hh-sol-artifact-1",
            "contractName": artifact.contract_name,
            "sourceName": artifact.source_path,
            "abi": artifact.abi,
            "bytecode": _hex(artifact.bytecode),
            "deployedBytecode": _hex(artifact.deployed_bytecode),
            "linkReferences": artifact.link_references,
            "deployedLinkReferences": artifact.deployed_link_references,
        }


ARTIFACT_OUTPUTS = {
    cls.name: cls for cls in (FullArtifactOutput, MinimalArtifactOutput, HardhatArtifactOutput)
}


def artifact_output_for(name: str) -> ArtifactOutput:
    """Select an artifact shape by configuration name."""
    try:
        return ARTIFACT_OUTPUTS[name]()
    except KeyError:
        known = ", ".join(sorted(ARTIFACT_OUTPUTS))
        raise ConfigError(f"Unknown artifact format {name!r} (expected one of: {known})") from None
