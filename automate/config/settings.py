"""
Automate - Configuration Settings

Every path can be overridden from the environment:
    AUTOMATE_HOME          base directory (default: ~/.automate)
    AUTOMATE_DB_PATH       SQLite database file
    AUTOMATE_PRESETS_DIR   directory with preset JSON files
"""
import os
from dataclasses import dataclass, field
from pathlib import Path


def _home() -> Path:
    return Path(os.environ.get("AUTOMATE_HOME", Path.home() / ".automate"))


def _env_path(name: str, default: Path) -> Path:
    value = os.environ.get(name)
    return Path(value).expanduser() if value else default


@dataclass
class DatabaseSettings:
    """Database configuration."""
    path: Path = field(default_factory=lambda: _env_path("AUTOMATE_DB_PATH", _home() / "automate.db"))
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


@dataclass
class PresetSettings:
    """Where preset documents live."""
    presets_dir: Path = field(default_factory=lambda: _env_path("AUTOMATE_PRESETS_DIR", _home() / "presets"))


@dataclass
class EngineSettings:
    """Step engine limits."""
    shell_timeout_seconds: int = 300
    while_max_iterations: int = 100
    output_truncate_chars: int = 65536


@dataclass
class SchedulerSettings:
    """Scheduler loop cadence."""
    min_sleep_seconds: float = 1.0
    max_sleep_seconds: float = 60.0
    shutdown_grace_seconds: float = 30.0


@dataclass
class Settings:
    """Main settings container."""
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    presets: PresetSettings = field(default_factory=PresetSettings)
    engine: EngineSettings = field(default_factory=EngineSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)


# Global settings instance
settings = Settings()
