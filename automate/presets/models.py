"""
Automate - Preset Models (Pydantic)

The preset document: a name, typed variables and an ordered list of steps.
JSON keys follow the document format (onError, else, ...); Python code uses
the snake_case attribute names.
"""

from typing import Optional, List, Dict, Any, Union
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================

class VariableType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


class OnError(str, Enum):
    STOP = "stop"
    CONTINUE = "continue"
    SKIP = "skip"


Scalar = Union[bool, int, float, str]


# =============================================================================
# Document
# =============================================================================

class PresetVariable(BaseModel):
    """Variable definition. Read once when the run context is built."""
    type: VariableType = VariableType.STRING
    description: str = ""
    default: Optional[Scalar] = None
    required: bool = True


class PresetStep(BaseModel):
    """One step of a preset."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_-]+$")
    name: str = ""
    action: str = Field(..., min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)
    on_error: OnError = Field(OnError.STOP, alias="onError")
    interactive: bool = False
    output: Optional[str] = None

    # Only meaningful for the "if" action
    condition: Optional[str] = None
    then: Optional[str] = None
    else_: Optional[str] = Field(None, alias="else")

    @property
    def label(self) -> str:
        return self.name or self.id

    def with_id(self, step_id: str) -> "PresetStep":
        """Copy of this step under another id (loop iterations)."""
        return self.model_copy(update={"id": step_id})


class Preset(BaseModel):
    """A named automation program."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    vars: Dict[str, PresetVariable] = Field(default_factory=dict)
    steps: List[PresetStep] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready dict using document key names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
