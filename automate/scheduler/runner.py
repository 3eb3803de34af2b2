"""
Automate - Scheduled Runner

Runs one schedule firing: load the preset, apply the schedule's variable
overrides, execute non-interactively and record the run.
"""
from pathlib import Path
from typing import Optional, Union

from ..config.logging import get_logger
from ..executor import BoundRunLogger, EngineResult, Executor, RunLogger, RunOptions, RunStatus, TriggerType
from ..presets import PresetNotFoundError, ValidationError, load_preset
from ..storage import Database
from .models import Schedule

logger = get_logger("scheduler.runner")


class ScheduledRunner:
    """
    Default run_schedule callable for SchedulerLoop.

    Args:
        db: Database for the run log
        executor: Executor (default: non-interactive, global registry)
        presets_dir: Where preset names are looked up
    """

    def __init__(
        self,
        db: Database,
        executor: Optional[Executor] = None,
        presets_dir: Optional[Union[str, Path]] = None,
    ):
        self.run_logger = RunLogger(db)
        self._executor = executor
        self.presets_dir = presets_dir

    @property
    def executor(self) -> Executor:
        """Get executor (lazy init)."""
        if self._executor is None:
            self._executor = Executor(prompter=None)
        return self._executor

    async def __call__(self, schedule: Schedule) -> Optional[EngineResult]:
        bound = BoundRunLogger(
            self.run_logger,
            schedule.preset_name,
            schedule_id=schedule.id,
            trigger_type=TriggerType.SCHEDULE,
        )

        try:
            preset = load_preset(schedule.preset_name, self.presets_dir)
        except (PresetNotFoundError, ValidationError) as e:
            logger.error(f"Schedule '{schedule.name}': cannot load preset '{schedule.preset_name}': {e}")
            # Still leave a trace in the run history
            if bound.start() is not None:
                bound.finish(RunStatus.ERROR, 0, 0.0, str(e))
            return None

        options = RunOptions(vars=schedule.var_overrides())
        result = await self.executor.run(preset, options, bound)

        if result.success:
            logger.info(f"Schedule '{schedule.name}' run {result.run_id} succeeded")
        else:
            logger.warning(f"Schedule '{schedule.name}' run {result.run_id} failed: {result.error}")
        return result
