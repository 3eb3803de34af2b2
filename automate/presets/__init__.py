"""
Automate - Presets
"""
from .models import Preset, PresetStep, PresetVariable, VariableType, OnError
from .loader import (
    ValidationError,
    PresetNotFoundError,
    validate_step_graph,
    ensure_valid,
    parse_preset,
    resolve_preset_path,
    load_preset,
    list_presets,
    save_preset,
)

__all__ = [
    "Preset",
    "PresetStep",
    "PresetVariable",
    "VariableType",
    "OnError",
    "ValidationError",
    "PresetNotFoundError",
    "validate_step_graph",
    "ensure_valid",
    "parse_preset",
    "resolve_preset_path",
    "load_preset",
    "list_presets",
    "save_preset",
]
