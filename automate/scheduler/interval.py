"""
Automate - Interval parsing

Human interval strings for schedules:

    every 5 minutes     every minute     every 1.5 hours
    30s   10m   2h   1d   1w
"""
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Union

from apscheduler.triggers.interval import IntervalTrigger

_UNITS = {
    "seconds": ("s", "sec", "secs", "second", "seconds"),
    "minutes": ("m", "min", "mins", "minute", "minutes"),
    "hours": ("h", "hr", "hrs", "hour", "hours"),
    "days": ("d", "day", "days"),
    "weeks": ("w", "wk", "wks", "week", "weeks"),
}
_UNIT_ALIASES = {alias: unit for unit, aliases in _UNITS.items() for alias in aliases}

_EVERY_RE = re.compile(r"^every\s+(?:(\d+(?:\.\d+)?)\s*)?([a-z]+)$")
_SHORT_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-z]+)$")


@dataclass(frozen=True)
class ParsedInterval:
    amount: Union[int, float]
    unit: str

    @property
    def trigger_kwargs(self) -> Dict[str, Union[int, float]]:
        return {self.unit: self.amount}

    @property
    def timedelta(self) -> timedelta:
        return timedelta(**self.trigger_kwargs)

    @property
    def seconds(self) -> float:
        return self.timedelta.total_seconds()

    def __str__(self) -> str:
        unit = self.unit[:-1] if self.amount == 1 else self.unit
        return f"every {self.amount} {unit}"


def parse_interval(text: str) -> ParsedInterval:
    """
    Parse an interval string.

    Raises:
        ValueError: Unknown format, unknown unit or non-positive amount
    """
    normalized = " ".join(str(text).strip().lower().split())
    match = _EVERY_RE.match(normalized) or _SHORT_RE.match(normalized)
    if not match:
        raise ValueError(f'Invalid interval "{text}" (expected e.g. "every 5 minutes" or "5m")')

    raw_amount, raw_unit = match.groups()
    unit = _UNIT_ALIASES.get(raw_unit)
    if unit is None:
        raise ValueError(f'Unknown interval unit "{raw_unit}" in "{text}"')

    amount: Union[int, float] = 1
    if raw_amount is not None:
        amount = float(raw_amount)
        if amount.is_integer():
            amount = int(amount)
    if amount <= 0:
        raise ValueError(f'Interval must be positive: "{text}"')
    return ParsedInterval(amount=amount, unit=unit)


def compute_next_run_at(parsed: ParsedInterval, after: Optional[datetime] = None) -> datetime:
    """First fire time strictly after `after` (default: now), in UTC."""
    if after is None:
        after = datetime.now(timezone.utc)
    elif after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    trigger = IntervalTrigger(timezone=timezone.utc, start_date=after, **parsed.trigger_kwargs)
    return trigger.get_next_fire_time(after, after).astimezone(timezone.utc)
