"""Compiler process protocol: standard-JSON request and response documents.

The response models accept unknown keys: the compiler's output shape is a
fixed external contract and newer releases add fields we do not use.
"""

import json
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from solbuild._internal.canonical_json import canonical_bytes
from .errors import CompilerProcessError


# --- Normalized results ---------------------------------------------------

class SourceLocation(BaseModel):
    """Byte range in a source unit; -1 when the compiler gives no offsets."""
    file: str
    start: int = -1
    end: int = -1

    model_config = ConfigDict(frozen=True)


class Diagnostic(BaseModel):
    """One error or warning, from the compiler or from the build itself."""
    severity: Literal["error", "warning"]
    message: str
    location: Optional[SourceLocation] = None
    code: Optional[str] = None  # Compiler errorCode or a solbuild DiagnosticCode value
    type: Optional[str] = None  # e.g. "TypeError", "Warning"
    formatted_message: Optional[str] = None
    origin: Literal["compiler", "solbuild"] = "compiler"

    model_config = ConfigDict(frozen=True)

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


class Artifact(BaseModel):
    """Compiler output for one contract, keyed by (source_path, contract_name)."""
    source_path: str
    contract_name: str
    abi: List[Any] = Field(default_factory=list)
    bytecode: str = ""
    deployed_bytecode: str = ""
    metadata: Optional[str] = None
    link_references: Dict[str, Any] = Field(default_factory=dict)
    deployed_link_references: Dict[str, Any] = Field(default_factory=dict)
    extra: Dict[str, Any] = Field(default_factory=dict)  # methodIdentifiers, devdoc, userdoc, storageLayout, ...

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source_path, self.contract_name)


# --- Wire models -----------------------------------------------------------

class _Wire(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class SolcSourceLocation(_Wire):
    file: str
    start: int = -1
    end: int = -1


class SolcError(_Wire):
    severity: str
    message: str
    type: Optional[str] = None
    component: Optional[str] = None
    formatted_message: Optional[str] = Field(None, alias="formattedMessage")
    error_code: Optional[str] = Field(None, alias="errorCode")
    source_location: Optional[SolcSourceLocation] = Field(None, alias="sourceLocation")


class SolcBytecode(_Wire):
    object: str = ""
    link_references: Dict[str, Any] = Field(default_factory=dict, alias="linkReferences")


class SolcEvm(_Wire):
    bytecode: Optional[SolcBytecode] = None
    deployed_bytecode: Optional[SolcBytecode] = Field(None, alias="deployedBytecode")
    method_identifiers: Optional[Dict[str, str]] = Field(None, alias="methodIdentifiers")


class SolcContract(_Wire):
    abi: List[Any] = Field(default_factory=list)
    evm: Optional[SolcEvm] = None
    metadata: Optional[str] = None


class CompilerOutput(_Wire):
    errors: List[SolcError] = Field(default_factory=list)
    contracts: Dict[str, Dict[str, SolcContract]] = Field(default_factory=dict)
    sources: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


# --- Encoding / decoding ---------------------------------------------------

def build_input(sources: Mapping[str, str], settings: Dict[str, Any]) -> Dict[str, Any]:
    """The standard-JSON request document for one job."""
    return {
        "language": "Solidity",
        "sources": {path: {"content": sources[path]} for path in sorted(sources)},
        "settings": settings,
    }


def encode_input(document: Dict[str, Any]) -> bytes:
    return canonical_bytes(document)


def parse_output(stdout: bytes) -> CompilerOutput:
    """Decode the compiler's stdout.

    Raises:
        CompilerProcessError: If stdout is empty, not JSON, or not the expected shape.
    """
    if not stdout.strip():
        raise CompilerProcessError("Compiler produced no output")
    try:
        data = json.loads(stdout.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CompilerProcessError(f"Malformed compiler response: {e}") from e
    if not isinstance(data, dict):
        raise CompilerProcessError("Malformed compiler response: top level is not an object")
    try:
        return CompilerOutput.model_validate(data)
    except ValidationError as e:
        raise CompilerProcessError(f"Malformed compiler response: {e}") from e


def to_diagnostics(output: CompilerOutput) -> List[Diagnostic]:
    """Compiler errors as diagnostics; ``info`` severity is folded into ``warning``."""
    diagnostics = []
    for error in output.errors:
        location = None
        if error.source_location is not None:
            location = SourceLocation(
                file=error.source_location.file,
                start=error.source_location.start,
                end=error.source_location.end,
            )
        diagnostics.append(Diagnostic(
            severity="error" if error.severity.lower() == "error" else "warning",
            message=error.message,
            location=location,
            code=error.error_code,
            type=error.type,
            formatted_message=error.formatted_message,
        ))
    return diagnostics


def to_artifacts(output: CompilerOutput) -> List[Artifact]:
    """Every contract in the response, sorted by (source path, contract name)."""
    artifacts = []
    for source_path in sorted(output.contracts):
        for name in sorted(output.contracts[source_path]):
            contract = output.contracts[source_path][name]
            evm = contract.evm or SolcEvm()
            bytecode = evm.bytecode or SolcBytecode()
            deployed = evm.deployed_bytecode or SolcBytecode()
            extra: Dict[str, Any] = dict(contract.model_extra or {})
            if evm.method_identifiers is not None:
                extra["methodIdentifiers"] = evm.method_identifiers
            artifacts.append(Artifact(
                source_path=source_path,
                contract_name=name,
                abi=contract.abi,
                bytecode=bytecode.object,
                deployed_bytecode=deployed.object,
                metadata=contract.metadata,
                link_references=bytecode.link_references,
                deployed_link_references=deployed.link_references,
                extra=extra,
            ))
    return artifacts
