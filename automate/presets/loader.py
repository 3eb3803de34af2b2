"""
Automate - Preset Loader

Finding, parsing and validating preset documents on disk.
"""
import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union, TYPE_CHECKING

import pydantic

from ..config.logging import get_logger
from .models import Preset, PresetStep

if TYPE_CHECKING:
    from ..executor.run_logger import RunLogger

logger = get_logger("presets")

COMBINATOR_BODY_ACTIONS = ("forEach", "while")


class ValidationError(Exception):
    """Preset document or step graph is invalid. Raised before any step runs."""

    def __init__(self, errors: List[str], source: Optional[str] = None):
        self.errors = list(errors)
        self.source = source
        where = f" ({source})" if source else ""
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Preset validation errors{where}:\n{lines}")


class PresetNotFoundError(Exception):
    """No preset file matches the given name or path."""

    def __init__(self, name: str, searched: List[Path]):
        self.name = name
        self.searched = searched
        paths = "\n".join(f"  - {p}" for p in searched)
        super().__init__(f'Preset "{name}" not found. Searched:\n{paths}')


# ==================== VALIDATION ====================

def _child_step(raw: Any, where: str, ids: set, errors: List[str]) -> Optional[PresetStep]:
    """Inline child of forEach/while: a step object or the id of a listed step."""
    if isinstance(raw, PresetStep):
        return raw
    if isinstance(raw, str):
        if raw not in ids:
            errors.append(f'{where}: child step "{raw}" not found')
        return None
    if isinstance(raw, dict):
        try:
            return PresetStep.model_validate(raw)
        except pydantic.ValidationError as e:
            errors.append(f"{where}: invalid child step: {_first_error(e)}")
            return None
    errors.append(f'{where}: "params.step" is required')
    return None


def _check_step(step: PresetStep, ids: set, errors: List[str], where: str) -> None:
    if step.action == "if":
        for target in (step.then, step.else_):
            if target and target not in ids:
                errors.append(f'{where}: jump target "{target}" not found')

    elif step.action == "parallel":
        children = step.params.get("steps")
        if not isinstance(children, list) or not children:
            errors.append(f'{where}: "params.steps" must be a non-empty list of step ids')
        else:
            for child_id in children:
                if not isinstance(child_id, str) or child_id not in ids:
                    errors.append(f'{where}: parallel child "{child_id}" not found')
                elif child_id == step.id:
                    errors.append(f"{where}: parallel step cannot contain itself")

    elif step.action in COMBINATOR_BODY_ACTIONS:
        if step.action == "forEach" and "items" not in step.params:
            errors.append(f'{where}: "params.items" is required')
        if step.action == "while" and not step.params.get("condition"):
            errors.append(f'{where}: "params.condition" is required')
        child = _child_step(step.params.get("step"), where, ids, errors)
        if child is not None:
            _check_step(child, ids, errors, f"{where} > {child.id}")


def validate_step_graph(steps: Iterable[PresetStep]) -> List[str]:
    """
    Check ids and references of a step list.

    Returns:
        All errors found (empty list when valid)
    """
    steps = list(steps)
    errors: List[str] = []
    ids = set()
    for step in steps:
        if step.id in ids:
            errors.append(f'Duplicate step id "{step.id}"')
        ids.add(step.id)

    for index, step in enumerate(steps):
        _check_step(step, ids, errors, f'Step {index} "{step.id}"')
    return errors


def ensure_valid(preset: Preset) -> Preset:
    """Raise ValidationError if the step graph is broken."""
    errors = validate_step_graph(preset.steps)
    if errors:
        raise ValidationError(errors, source=preset.name)
    return preset


# ==================== PARSING ====================

def _first_error(e: pydantic.ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def parse_preset(data: Dict[str, Any], source: Optional[str] = None) -> Preset:
    """Validate a decoded preset document (shape and step graph)."""
    try:
        preset = Preset.model_validate(data)
    except pydantic.ValidationError as e:
        errors = []
        for err in e.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()))
            errors.append(f"{loc}: {err.get('msg')}")
        raise ValidationError(errors, source=source) from e
    errors = validate_step_graph(preset.steps)
    if errors:
        raise ValidationError(errors, source=source or preset.name)
    return preset


def _presets_dir(presets_dir: Optional[Union[str, Path]]) -> Path:
    if presets_dir is not None:
        return Path(presets_dir)
    from ..config.settings import settings
    return settings.presets.presets_dir


def resolve_preset_path(name_or_path: str, presets_dir: Optional[Union[str, Path]] = None) -> Path:
    """
    Locate a preset file.

    Order: an existing .json path, then <dir>/<name>.json, then <dir>/<name>.
    """
    direct = Path(name_or_path).expanduser()
    if direct.suffix == ".json" and direct.is_file():
        return direct.resolve()

    base = _presets_dir(presets_dir)
    candidates = [base / f"{name_or_path}.json", base / name_or_path]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise PresetNotFoundError(name_or_path, [direct.resolve()] + candidates)


def load_preset(name_or_path: str, presets_dir: Optional[Union[str, Path]] = None) -> Preset:
    """Load and validate a preset by name or file path."""
    path = resolve_preset_path(name_or_path, presets_dir)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError([f"Invalid JSON: {e}"], source=str(path)) from e
    if not isinstance(data, dict):
        raise ValidationError(["Preset document must be a JSON object"], source=str(path))
    preset = parse_preset(data, source=str(path))
    logger.debug(f"Loaded preset '{preset.name}' from {path}")
    return preset


def list_presets(
    presets_dir: Optional[Union[str, Path]] = None,
    run_logger: Optional["RunLogger"] = None,
) -> List[Dict[str, Any]]:
    """
    Summaries of the valid presets in a directory, sorted by file name.

    With a run logger each entry also carries run_count and last_run_at.
    """
    base = _presets_dir(presets_dir)
    if not base.is_dir():
        return []

    result = []
    for path in sorted(base.glob("*.json")):
        try:
            preset = parse_preset(json.loads(path.read_text(encoding="utf-8")), source=str(path))
        except (ValueError, ValidationError, OSError, TypeError) as e:
            logger.debug(f"Skipping invalid preset file {path.name}: {e}")
            continue
        entry = {
            "name": preset.name,
            "file_name": path.name,
            "description": preset.description,
            "step_count": len(preset.steps),
        }
        if run_logger is not None:
            entry.update(run_logger.preset_stats(preset.name, path.stem))
        result.append(entry)
    return result


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def save_preset(preset: Preset, presets_dir: Optional[Union[str, Path]] = None) -> Path:
    """Write a preset as <dir>/<slug>.json and return the path."""
    ensure_valid(preset)
    base = _presets_dir(presets_dir)
    base.mkdir(parents=True, exist_ok=True)
    slug = slugify(preset.name)
    if not slug:
        raise ValueError(f"Cannot derive a file name from preset name {preset.name!r}")
    path = base / f"{slug}.json"
    path.write_text(json.dumps(preset.to_document(), indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info(f"Saved preset '{preset.name}' to {path}")
    return path
