"""
Automate - Run Logger

Audit trail of preset runs in the runs / run_logs tables.
"""
from typing import Any, Dict, List, Optional

from ..config.logging import get_logger
from ..storage.database import Database, from_iso, to_json, now_iso
from .models import RunStatus, StepResult, TriggerType

logger = get_logger("run_logger")

TRUNCATE_LIMIT = 65536
TRUNCATED_SUFFIX = "\n... (truncated)"


def serialize_output(output: Any, limit: int = TRUNCATE_LIMIT) -> Optional[str]:
    """Text stored in run_logs.output (JSON unless already a string)."""
    if output is None:
        return None
    if isinstance(output, str):
        text = output
    else:
        try:
            text = to_json(output)
        except (TypeError, ValueError):
            text = str(output)
    if len(text) > limit:
        return text[:limit] + TRUNCATED_SUFFIX
    return text


class RunLogger:
    """
    Writes and reads run records.

    Usage:
        run_id = run_logger.start_run("deploy", None, TriggerType.MANUAL)
        run_logger.log_step(run_id, 0, "build", "Build", "shell", "success", "ok", 12.5)
        run_logger.finish_run(run_id, RunStatus.SUCCESS, 1, 40.0)
    """

    def __init__(self, db: Database, truncate_limit: Optional[int] = None):
        self.db = db
        if truncate_limit is None:
            from ..config.settings import settings
            truncate_limit = settings.engine.output_truncate_chars
        self.truncate_limit = truncate_limit

    def start_run(
        self,
        preset_name: str,
        schedule_id: Optional[int] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
    ) -> int:
        return self.db.execute(
            """
            INSERT INTO runs (schedule_id, preset_name, trigger_type, started_at, status)
            VALUES (?, ?, ?, ?, ?)
            """,
            (schedule_id, preset_name, TriggerType(trigger_type).value, now_iso(), RunStatus.RUNNING.value),
        )

    def log_step(
        self,
        run_id: int,
        step_index: int,
        step_id: str,
        step_name: str,
        action: str,
        status: str,
        output: Any,
        duration_ms: float,
        error: Optional[str] = None,
    ) -> None:
        self.db.execute(
            """
            INSERT INTO run_logs
                (run_id, step_index, step_id, step_name, action, status, output, duration_ms, error, logged_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run_id,
                step_index,
                step_id,
                step_name,
                action,
                getattr(status, "value", status),
                serialize_output(output, self.truncate_limit),
                int(round(duration_ms)),
                error,
                now_iso(),
            ),
        )

    def finish_run(
        self,
        run_id: int,
        status: RunStatus,
        step_count: int,
        duration_ms: float,
        error: Optional[str] = None,
    ) -> None:
        self.db.execute(
            """
            UPDATE runs
            SET finished_at = ?, status = ?, step_count = ?, duration_ms = ?, error = ?
            WHERE id = ?
            """,
            (now_iso(), RunStatus(status).value, step_count, int(round(duration_ms)), error, run_id),
        )

    # ==================== QUERIES ====================

    def list_runs(self, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self.db.fetch_all(
            "SELECT * FROM runs ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
        )
        return [dict(row) for row in rows]

    def get_run(self, run_id: int) -> Optional[Dict[str, Any]]:
        row = self.db.fetch_one("SELECT * FROM runs WHERE id = ?", (run_id,))
        return dict(row) if row else None

    def get_run_logs(self, run_id: int) -> List[Dict[str, Any]]:
        rows = self.db.fetch_all(
            "SELECT * FROM run_logs WHERE run_id = ? ORDER BY step_index, id", (run_id,)
        )
        return [dict(row) for row in rows]

    def preset_stats(self, preset_name: str, *aliases: str) -> Dict[str, Any]:
        """
        Run count and last start time for a preset.

        Runs are recorded under whatever name the caller used, so a preset
        can be looked up by its display name and its file stem together.
        """
        names = tuple(dict.fromkeys((preset_name,) + aliases))
        placeholders = ", ".join("?" for _ in names)
        row = self.db.fetch_one(
            f"SELECT COUNT(*) AS run_count, MAX(started_at) AS last_run_at "
            f"FROM runs WHERE preset_name IN ({placeholders})",
            names,
        )
        return {
            "run_count": row["run_count"],
            "last_run_at": from_iso(row["last_run_at"]),
        }


class BoundRunLogger:
    """
    One run's view of a RunLogger.

    Every write is best effort: failures are logged and swallowed so that
    bookkeeping never stops the automation.
    """

    def __init__(
        self,
        run_logger: RunLogger,
        preset_name: str,
        schedule_id: Optional[int] = None,
        trigger_type: TriggerType = TriggerType.MANUAL,
    ):
        self._run_logger = run_logger
        self.preset_name = preset_name
        self.schedule_id = schedule_id
        self.trigger_type = trigger_type
        self.run_id: Optional[int] = None

    def start(self) -> Optional[int]:
        try:
            self.run_id = self._run_logger.start_run(self.preset_name, self.schedule_id, self.trigger_type)
        except Exception as e:
            logger.warning(f"Could not record start of run for '{self.preset_name}': {e}")
        return self.run_id

    def log_step(self, index: int, step_id: str, name: str, action: str, result: StepResult) -> None:
        if self.run_id is None:
            return
        try:
            self._run_logger.log_step(
                self.run_id, index, step_id, name, action,
                result.status.value, result.output, result.duration, result.error,
            )
        except Exception as e:
            logger.warning(f"Could not log step '{step_id}' of run {self.run_id}: {e}")

    def finish(self, status: RunStatus, step_count: int, duration_ms: float, error: Optional[str] = None) -> None:
        if self.run_id is None:
            return
        try:
            self._run_logger.finish_run(self.run_id, status, step_count, duration_ms, error)
        except Exception as e:
            logger.warning(f"Could not finish run {self.run_id}: {e}")
