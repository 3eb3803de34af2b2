"""
Automate - Executor Models

Data classes for one run: StepResult, ExecutionContext, RunMetadata,
RunOptions and the final EngineResult.
"""
import asyncio
import os
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional, Any, List, Dict, Mapping, FrozenSet, Tuple
from enum import Enum

from ..presets.models import PresetStep


class StepStatus(str, Enum):
    """Outcome of one step invocation."""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Status of a persisted run."""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class TriggerType(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"


def elapsed_ms(start: float) -> float:
    """Milliseconds since a time.perf_counter() reading."""
    return max(0.0, (time.perf_counter() - start) * 1000.0)


@dataclass
class StepResult:
    """Result of a single step invocation. Duration is in milliseconds."""
    status: StepStatus
    output: Any = None
    duration: float = 0.0
    exit_code: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, output: Any = None, duration: float = 0.0, **kwargs) -> "StepResult":
        return cls(status=StepStatus.SUCCESS, output=output, duration=duration, **kwargs)

    @classmethod
    def failure(cls, error: str, output: Any = None, duration: float = 0.0, **kwargs) -> "StepResult":
        return cls(status=StepStatus.ERROR, output=output, duration=duration, error=error, **kwargs)

    @classmethod
    def skipped(cls, output: Any = None, duration: float = 0.0) -> "StepResult":
        return cls(status=StepStatus.SKIPPED, output=output, duration=duration)

    @property
    def ok(self) -> bool:
        return self.status != StepStatus.ERROR

    def to_dict(self) -> Dict[str, Any]:
        """
        Expression-facing view (steps.<id>.output, steps.<id>.exitCode, ...).

        The output is shared, not copied.
        """
        data = {
            "status": self.status.value,
            "output": self.output,
            "duration": self.duration,
        }
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class StepOutcome:
    """A step result plus the jump target chosen by an "if" step."""
    result: StepResult
    jump_to: Optional[str] = None


@dataclass
class ExecutionContext:
    """
    Mutable state of one run.

    `steps` is append-only during the run; concurrent writers go through
    record(), which holds `lock`.
    """
    vars: Dict[str, Any] = field(default_factory=dict)
    steps: Dict[str, StepResult] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @classmethod
    def create(cls, variables: Optional[Dict[str, Any]] = None, env: Optional[Mapping[str, str]] = None) -> "ExecutionContext":
        """New context with a read-only snapshot of the process environment."""
        snapshot = dict(os.environ if env is None else env)
        return cls(vars=dict(variables or {}), env=MappingProxyType(snapshot))

    async def record(self, step_id: str, result: StepResult) -> None:
        async with self.lock:
            self.steps[step_id] = result


@dataclass(frozen=True)
class RunMetadata:
    """Read-only facts about the run, passed next to the context."""
    all_steps: Tuple[PresetStep, ...] = ()
    steps_by_id: Mapping[str, PresetStep] = field(default_factory=dict)
    index_by_id: Mapping[str, int] = field(default_factory=dict)
    combinator_child_ids: FrozenSet[str] = frozenset()
    dry_run: bool = False
    verbose: bool = False

    @classmethod
    def build(cls, steps: List[PresetStep], dry_run: bool = False, verbose: bool = False) -> "RunMetadata":
        child_ids = set()
        for step in steps:
            if step.action == "parallel":
                child_ids.update(c for c in step.params.get("steps") or [] if isinstance(c, str))
            elif step.action in ("forEach", "while") and isinstance(step.params.get("step"), str):
                child_ids.add(step.params["step"])
        return cls(
            all_steps=tuple(steps),
            steps_by_id=MappingProxyType({s.id: s for s in steps}),
            index_by_id=MappingProxyType({s.id: i for i, s in enumerate(steps)}),
            combinator_child_ids=frozenset(child_ids),
            dry_run=dry_run,
            verbose=verbose,
        )


@dataclass
class RunOptions:
    """Options for one run (from the command line or a schedule)."""
    dry_run: bool = False
    vars: List[str] = field(default_factory=list)
    verbose: bool = False


@dataclass
class StepRecord:
    """One executed top-level step, in execution order."""
    index: int
    step_id: str
    name: str
    action: str
    result: StepResult


@dataclass
class EngineResult:
    """Outcome of a whole run."""
    preset: str
    success: bool
    steps: List[StepRecord] = field(default_factory=list)
    total_duration_ms: float = 0.0
    error: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    run_id: Optional[int] = None

    @property
    def executed_ids(self) -> List[str]:
        return [r.step_id for r in self.steps]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preset": self.preset,
            "success": self.success,
            "steps": [
                {"id": r.step_id, "name": r.name, "action": r.action, **r.result.to_dict()}
                for r in self.steps
            ],
            "total_duration_ms": self.total_duration_ms,
            "error": self.error,
            "notes": self.notes,
            "run_id": self.run_id,
        }
