"""
Automate - Scheduler Models

Data classes for schedules.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any

from ..storage.database import from_iso, from_json


@dataclass
class Schedule:
    """
    A preset bound to a recurring interval.

    next_run_at is the moment the schedule becomes due; the scheduler
    moves it forward after each firing.
    """
    id: int
    name: str
    preset_name: str
    interval: str
    enabled: bool = True
    vars: Dict[str, Any] = field(default_factory=dict)

    # Tracking
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def var_overrides(self) -> list:
        """vars as ["key=value", ...] run overrides."""
        result = []
        for key, value in self.vars.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            result.append(f"{key}={value}")
        return result

    @classmethod
    def from_row(cls, row) -> Optional["Schedule"]:
        """Create Schedule from database row."""
        if row is None:
            return None

        data = dict(row)
        variables = from_json(data.get("vars_json")) or {}

        return cls(
            id=data["id"],
            name=data["name"],
            preset_name=data["preset_name"],
            interval=data["interval"],
            enabled=bool(data.get("enabled", 1)),
            vars=variables if isinstance(variables, dict) else {},
            next_run_at=from_iso(data.get("next_run_at")),
            last_run_at=from_iso(data.get("last_run_at")),
            created_at=from_iso(data.get("created_at")),
            updated_at=from_iso(data.get("updated_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "preset_name": self.preset_name,
            "interval": self.interval,
            "enabled": self.enabled,
            "vars": self.vars,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }
