"""
Automate - Schedule Store

CRUD over the schedules table.
"""
import sqlite3
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from ..config.logging import get_logger
from ..storage import Database, to_json, to_iso, now_iso
from .interval import compute_next_run_at, parse_interval
from .models import Schedule

logger = get_logger("scheduler.store")


class ScheduleStore:
    """
    Schedule Store - persisted schedules.

    Operations:
        - create_schedule(): Add a schedule
        - get_due_schedules(): Enabled schedules whose next_run_at has passed
        - set_enabled(): Pause / resume
        - update_after_run(): Move a schedule forward after it fired
    """

    def __init__(self, db: Optional[Database] = None):
        self._db = db

    @property
    def db(self) -> Database:
        """Get database instance (lazy init)."""
        if self._db is None:
            self._db = Database()
        return self._db

    # ==================== MANAGEMENT ====================

    def create_schedule(
        self,
        name: str,
        preset_name: str,
        interval: str,
        vars: Optional[Dict[str, Any]] = None,
        next_run_at: Optional[datetime] = None,
        enabled: bool = True,
    ) -> Schedule:
        """
        Create a schedule.

        Args:
            name: Unique schedule name
            preset_name: Preset name or path
            interval: Interval string ("every 5 minutes")
            vars: Variable overrides for each run
            next_run_at: First run (default: now + interval)
            enabled: Start enabled

        Raises:
            ValueError: Invalid interval or duplicate name
        """
        parsed = parse_interval(interval)
        if next_run_at is None:
            next_run_at = compute_next_run_at(parsed)

        now = now_iso()
        try:
            schedule_id = self.db.execute(
                """INSERT INTO schedules
                   (name, preset_name, interval, enabled, next_run_at, vars_json, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    name,
                    preset_name,
                    interval,
                    1 if enabled else 0,
                    to_iso(next_run_at),
                    to_json(vars) if vars else None,
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f'Schedule "{name}" already exists') from e

        logger.info(f"Created schedule '{name}' for preset '{preset_name}' ({interval})")
        return self.get_schedule_by_id(schedule_id)

    def get_schedule(self, name: str) -> Optional[Schedule]:
        row = self.db.fetch_one("SELECT * FROM schedules WHERE name = ?", (name,))
        return Schedule.from_row(row)

    def get_schedule_by_id(self, schedule_id: int) -> Optional[Schedule]:
        row = self.db.fetch_one("SELECT * FROM schedules WHERE id = ?", (schedule_id,))
        return Schedule.from_row(row)

    def list_schedules(self, enabled_only: bool = False) -> List[Schedule]:
        sql = "SELECT * FROM schedules"
        if enabled_only:
            sql += " WHERE enabled = 1"
        rows = self.db.fetch_all(sql + " ORDER BY name")
        return [Schedule.from_row(row) for row in rows]

    def set_enabled(self, name: str, enabled: bool, now: Optional[datetime] = None) -> Optional[Schedule]:
        """
        Pause or resume a schedule.

        Resuming starts a fresh interval from now.
        """
        schedule = self.get_schedule(name)
        if schedule is None:
            return None

        if enabled:
            next_run = compute_next_run_at(parse_interval(schedule.interval), now)
            self.db.execute(
                "UPDATE schedules SET enabled = 1, next_run_at = ?, updated_at = ? WHERE id = ?",
                (to_iso(next_run), now_iso(), schedule.id),
            )
        else:
            self.db.execute(
                "UPDATE schedules SET enabled = 0, updated_at = ? WHERE id = ?",
                (now_iso(), schedule.id),
            )
        return self.get_schedule_by_id(schedule.id)

    def delete_schedule(self, name: str) -> bool:
        """
        Delete a schedule. Past runs keep their rows (schedule_id becomes NULL).

        Returns:
            True if deleted, False if not found
        """
        return self.db.execute_rowcount("DELETE FROM schedules WHERE name = ?", (name,)) > 0

    # ==================== SCHEDULER SIDE ====================

    def get_due_schedules(self, now: Optional[datetime] = None) -> List[Schedule]:
        """Enabled schedules with next_run_at <= now, soonest first."""
        now = now or datetime.now(timezone.utc)
        rows = self.db.fetch_all(
            """SELECT * FROM schedules
               WHERE enabled = 1 AND next_run_at <= ?
               ORDER BY next_run_at""",
            (to_iso(now),),
        )
        return [Schedule.from_row(row) for row in rows]

    def update_after_run(self, schedule_id: int, last_run_at: datetime, next_run_at: datetime) -> None:
        self.db.execute(
            """UPDATE schedules
               SET last_run_at = ?, next_run_at = ?, updated_at = ?
               WHERE id = ?""",
            (to_iso(last_run_at), to_iso(next_run_at), now_iso(), schedule_id),
        )
