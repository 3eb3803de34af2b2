"""
Automate - Scheduler

Interval schedules for presets.
"""
from .models import Schedule
from .interval import ParsedInterval, parse_interval, compute_next_run_at
from .store import ScheduleStore
from .loop import SchedulerLoop
from .runner import ScheduledRunner

__all__ = [
    "Schedule",
    "ParsedInterval",
    "parse_interval",
    "compute_next_run_at",
    "ScheduleStore",
    "SchedulerLoop",
    "ScheduledRunner",
]
