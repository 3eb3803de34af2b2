"""
Automate - Database Schema

Tables:
- schema_version: single-row version marker
- schedules: recurring preset runs
- runs: one row per preset run
- run_logs: one row per executed step
"""

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schedules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    preset_name TEXT NOT NULL,
    interval TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    last_run_at TEXT,
    next_run_at TEXT NOT NULL,
    vars_json TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_schedules_next_run ON schedules(next_run_at) WHERE enabled = 1;

-- Runs (one per preset execution)
CREATE TABLE IF NOT EXISTS runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    schedule_id INTEGER REFERENCES schedules(id) ON DELETE SET NULL,
    preset_name TEXT NOT NULL,
    trigger_type TEXT NOT NULL DEFAULT 'manual' CHECK(trigger_type IN ('manual', 'schedule')),
    status TEXT NOT NULL DEFAULT 'running' CHECK(status IN ('running', 'success', 'error', 'cancelled')),
    step_count INTEGER NOT NULL DEFAULT 0,
    duration_ms INTEGER,
    error TEXT,
    started_at TEXT NOT NULL,
    finished_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_runs_schedule_id ON runs(schedule_id);
CREATE INDEX IF NOT EXISTS idx_runs_preset_name ON runs(preset_name);
CREATE INDEX IF NOT EXISTS idx_runs_started_at ON runs(started_at);

-- Step log (append-only)
CREATE TABLE IF NOT EXISTS run_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
    step_index INTEGER NOT NULL,
    step_id TEXT NOT NULL,
    step_name TEXT NOT NULL,
    action TEXT NOT NULL,
    status TEXT NOT NULL,
    output TEXT,
    duration_ms INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    logged_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_run_logs_run_id ON run_logs(run_id);
"""


def get_schema_version(connection) -> int:
    """Return the stored schema version, 0 for a fresh database."""
    connection.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
    row = connection.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    return row[0] if row else 0


def init_schema(connection) -> None:
    """Initialize database schema."""
    if get_schema_version(connection) >= SCHEMA_VERSION:
        return
    connection.executescript(SCHEMA_SQL)
    connection.execute(
        "INSERT OR REPLACE INTO schema_version (rowid, version) VALUES (1, ?)",
        (SCHEMA_VERSION,),
    )
    connection.commit()
