"""
Automate - preset step engine and scheduler.

Layers:
    config     settings and logging
    storage    SQLite database (schedules, runs, run logs)
    presets    preset documents, validation, loading
    executor   expression resolver, step registry, main loop, run logger
    steps      combinators (parallel, forEach, while)
    scheduler  recurring schedules and the daemon loop
"""

__version__ = "0.1.0"
