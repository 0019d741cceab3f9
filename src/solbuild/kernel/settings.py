"""Compiler settings in the compiler's standard-JSON shape."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .remappings import Remapping


DEFAULT_OUTPUT_SELECTION = {
    "*": {
        "*": ["abi", "evm.bytecode", "evm.deployedBytecode", "evm.methodIdentifiers", "metadata"],
        "": ["ast"],
    }
}


class OptimizerSettings(BaseModel):
    """Optimizer flags. ``details`` is passed through untouched."""
    enabled: bool = False
    runs: int = 200
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("runs")
    @classmethod
    def validate_runs(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"optimizer runs must be non-negative, got {v}")
        return v


class CompilerSettings(BaseModel):
    """The ``settings`` object of a compiler request.

    Field names follow the compiler's camelCase keys when serialized with
    ``to_input()``. Everything here is part of the job fingerprint.
    """
    optimizer: OptimizerSettings = Field(default_factory=OptimizerSettings)
    evm_version: Optional[str] = Field(None, alias="evmVersion")
    via_ir: Optional[bool] = Field(None, alias="viaIR")
    output_selection: Optional[Dict[str, Dict[str, List[str]]]] = Field(None, alias="outputSelection")
    remappings: List[str] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    libraries: Optional[Dict[str, Dict[str, str]]] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("remappings")
    @classmethod
    def validate_remappings(cls, v: List[str]) -> List[str]:
        """Reject malformed remappings early; keep the text as written."""
        for item in v:
            Remapping.parse(item)
        return v

    def with_remappings(self, remappings: List[Remapping]) -> "CompilerSettings":
        """Return a copy whose remappings are the given rules, in order, without duplicates."""
        merged: List[str] = []
        for text in [*self.remappings, *(str(r) for r in remappings)]:
            if text not in merged:
                merged.append(text)
        return self.model_copy(update={"remappings": merged})

    def with_default_output_selection(self, selection: Dict[str, Dict[str, List[str]]]) -> "CompilerSettings":
        if self.output_selection is not None:
            return self
        return self.model_copy(update={"output_selection": selection})

    def to_input(self) -> Dict[str, Any]:
        """Settings as the compiler expects them (camelCase, unset fields omitted)."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        if data.get("outputSelection") is None:
            data["outputSelection"] = DEFAULT_OUTPUT_SELECTION
        return data
