"""
Automate - Configuration
"""
from .settings import (
    Settings,
    DatabaseSettings,
    PresetSettings,
    EngineSettings,
    SchedulerSettings,
    settings,
)
from .logging import (
    setup_logging,
    get_logger,
    log_step_result,
    log_error,
    JSONFormatter,
    ColoredFormatter,
)

__all__ = [
    "Settings",
    "DatabaseSettings",
    "PresetSettings",
    "EngineSettings",
    "SchedulerSettings",
    "settings",
    # Logging
    "setup_logging",
    "get_logger",
    "log_step_result",
    "log_error",
    "JSONFormatter",
    "ColoredFormatter",
]
