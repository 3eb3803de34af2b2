"""
Tests for the scheduler: intervals, schedule store, loop and runner

Run with: pytest -q
"""
import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from automate.executor import RunLogger
from automate.scheduler import (
    ScheduledRunner,
    SchedulerLoop,
    ScheduleStore,
    compute_next_run_at,
    parse_interval,
)

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestParseInterval:
    """Tests for parse_interval()."""

    @pytest.mark.parametrize("text, amount, unit", [
        ("every 1 minute", 1, "minutes"),
        ("every 5 minutes", 5, "minutes"),
        ("every minute", 1, "minutes"),
        ("Every  2   Hours", 2, "hours"),
        ("every 1.5 hours", 1.5, "hours"),
        ("every day", 1, "days"),
        ("30s", 30, "seconds"),
        ("10m", 10, "minutes"),
        ("2h", 2, "hours"),
        ("1w", 1, "weeks"),
    ])
    def test_valid(self, text, amount, unit):
        parsed = parse_interval(text)
        assert parsed.amount == amount
        assert parsed.unit == unit

    @pytest.mark.parametrize("text", ["", "sometimes", "every 5 fortnights", "every 0 minutes", "-5m", "5"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_interval(text)

    def test_timedelta_and_str(self):
        parsed = parse_interval("every 90 seconds")
        assert parsed.timedelta == timedelta(seconds=90)
        assert parsed.seconds == 90
        assert str(parse_interval("every minute")) == "every 1 minute"
        assert str(parsed) == "every 90 seconds"


class TestComputeNextRunAt:

    def test_adds_interval(self):
        assert compute_next_run_at(parse_interval("every 1 minute"), T0) == T0 + timedelta(minutes=1)
        assert compute_next_run_at(parse_interval("every 2 days"), T0) == T0 + timedelta(days=2)

    def test_naive_is_utc(self):
        naive = T0.replace(tzinfo=None)
        assert compute_next_run_at(parse_interval("5m"), naive) == T0 + timedelta(minutes=5)

    def test_default_is_now(self):
        before = datetime.now(timezone.utc)
        next_run = compute_next_run_at(parse_interval("every hour"))
        assert before + timedelta(minutes=59) < next_run <= datetime.now(timezone.utc) + timedelta(hours=1)


class TestScheduleStore:
    """Tests for ScheduleStore."""

    @pytest.fixture
    def store(self, db):
        return ScheduleStore(db)

    def test_create(self, store):
        schedule = store.create_schedule("nightly", "backup", "every 1 day", vars={"env": "prod"}, next_run_at=T0)
        assert schedule.id > 0
        assert schedule.name == "nightly"
        assert schedule.preset_name == "backup"
        assert schedule.enabled is True
        assert schedule.vars == {"env": "prod"}
        assert schedule.next_run_at == T0
        assert schedule.last_run_at is None

    def test_create_defaults_next_run(self, store):
        before = datetime.now(timezone.utc)
        schedule = store.create_schedule("soon", "p", "every 10 minutes")
        assert schedule.next_run_at >= before + timedelta(minutes=10) - timedelta(seconds=1)

    def test_duplicate_name(self, store):
        store.create_schedule("dup", "p", "5m")
        with pytest.raises(ValueError, match="already exists"):
            store.create_schedule("dup", "q", "5m")

    def test_invalid_interval(self, store):
        with pytest.raises(ValueError):
            store.create_schedule("bad", "p", "whenever")
        assert store.list_schedules() == []

    def test_list_and_get(self, store):
        store.create_schedule("b", "p", "5m")
        store.create_schedule("a", "p", "5m", enabled=False)
        assert [s.name for s in store.list_schedules()] == ["a", "b"]
        assert [s.name for s in store.list_schedules(enabled_only=True)] == ["b"]
        assert store.get_schedule("a").enabled is False
        assert store.get_schedule("zzz") is None

    def test_due_schedules(self, store):
        store.create_schedule("past", "p", "5m", next_run_at=T0 - timedelta(minutes=1))
        store.create_schedule("now", "p", "5m", next_run_at=T0)
        store.create_schedule("future", "p", "5m", next_run_at=T0 + timedelta(seconds=1))
        store.create_schedule("paused", "p", "5m", next_run_at=T0 - timedelta(hours=1), enabled=False)
        assert [s.name for s in store.get_due_schedules(T0)] == ["past", "now"]

    def test_pause_and_resume(self, store):
        store.create_schedule("s", "p", "every 1 minute", next_run_at=T0)
        paused = store.set_enabled("s", False)
        assert paused.enabled is False
        assert store.get_due_schedules(T0 + timedelta(hours=1)) == []

        resumed = store.set_enabled("s", True, now=T0 + timedelta(hours=1))
        assert resumed.enabled is True
        assert resumed.next_run_at == T0 + timedelta(hours=1, minutes=1)

    def test_set_enabled_missing(self, store):
        assert store.set_enabled("ghost", True) is None

    def test_delete(self, store, db):
        schedule = store.create_schedule("s", "p", "5m")
        run_id = RunLogger(db).start_run("p", schedule.id)
        assert store.delete_schedule("s") is True
        assert store.delete_schedule("s") is False
        # Run history survives without the schedule
        assert RunLogger(db).get_run(run_id)["schedule_id"] is None

    def test_update_after_run(self, store):
        schedule = store.create_schedule("s", "p", "5m", next_run_at=T0)
        store.update_after_run(schedule.id, T0, T0 + timedelta(minutes=5))
        updated = store.get_schedule_by_id(schedule.id)
        assert updated.last_run_at == T0
        assert updated.next_run_at == T0 + timedelta(minutes=5)

    def test_var_overrides(self, store):
        schedule = store.create_schedule("s", "p", "5m", vars={"n": 3, "flag": True, "name": "x"})
        assert schedule.var_overrides() == ["n=3", "flag=true", "name=x"]


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestSchedulerLoop:
    """Tests for SchedulerLoop."""

    @pytest.fixture
    def store(self, db):
        return ScheduleStore(db)

    @pytest.fixture
    def clock(self):
        return FakeClock(T0)

    @pytest.fixture
    def fired(self):
        return []

    @pytest.fixture
    def scheduler(self, store, clock, fired):
        async def run_schedule(schedule):
            fired.append(schedule.name)

        return SchedulerLoop(store, run_schedule, min_sleep=0.01, max_sleep=0.05, shutdown_grace=1, clock=clock)

    @pytest.mark.asyncio
    async def test_fires_and_reschedules(self, scheduler, store, clock, fired):
        """Due at t0, every minute: next run is t0 + 1min and it is not due again before that."""
        store.create_schedule("every-minute", "p", "every 1 minute", next_run_at=T0)

        assert await scheduler.tick(T0) == ["every-minute"]
        assert await scheduler.drain(1) is True

        schedule = store.get_schedule("every-minute")
        assert fired == ["every-minute"]
        assert schedule.last_run_at == T0
        assert schedule.next_run_at == T0 + timedelta(minutes=1)

        for seconds in (5, 10, 30, 59):
            clock.now = T0 + timedelta(seconds=seconds)
            assert await scheduler.tick() == []
        assert fired == ["every-minute"]

        clock.now = T0 + timedelta(minutes=1)
        assert await scheduler.tick() == ["every-minute"]
        await scheduler.drain(1)
        assert fired == ["every-minute", "every-minute"]
        assert store.get_schedule("every-minute").next_run_at == T0 + timedelta(minutes=2)

    @pytest.mark.asyncio
    async def test_missed_slots_not_replayed(self, scheduler, store, clock):
        store.create_schedule("late", "p", "every 1 minute", next_run_at=T0)
        clock.now = T0 + timedelta(minutes=10, seconds=30)

        await scheduler.tick()
        await scheduler.drain(1)

        assert store.get_schedule("late").next_run_at == T0 + timedelta(minutes=11, seconds=30)

    @pytest.mark.asyncio
    async def test_active_schedule_skipped(self, store, clock):
        release = asyncio.Event()
        started = []

        async def run_schedule(schedule):
            started.append(schedule.name)
            await release.wait()

        scheduler = SchedulerLoop(store, run_schedule, clock=clock)
        store.create_schedule("slow", "p", "every 1 minute", next_run_at=T0)

        assert await scheduler.tick(T0) == ["slow"]
        await asyncio.sleep(0)
        assert scheduler.active == ["slow"]
        assert await scheduler.tick(T0 + timedelta(seconds=5)) == []

        release.set()
        assert await scheduler.drain(1) is True
        assert started == ["slow"]
        assert scheduler.active == []

    @pytest.mark.asyncio
    async def test_failed_run_still_reschedules(self, store, clock):
        async def run_schedule(schedule):
            raise RuntimeError("preset exploded")

        scheduler = SchedulerLoop(store, run_schedule, clock=clock)
        store.create_schedule("flaky", "p", "every 1 minute", next_run_at=T0)

        await scheduler.tick(T0)
        await scheduler.drain(1)

        schedule = store.get_schedule("flaky")
        assert schedule.next_run_at == T0 + timedelta(minutes=1)
        assert scheduler.active == []

    @pytest.mark.asyncio
    async def test_drain_timeout(self, store, clock):
        async def run_schedule(schedule):
            await asyncio.sleep(10)

        scheduler = SchedulerLoop(store, run_schedule, clock=clock)
        store.create_schedule("stuck", "p", "5m", next_run_at=T0)
        await scheduler.tick(T0)

        assert await scheduler.drain(0.05) is False
        assert scheduler.active == ["stuck"]

        stuck = [t for t in asyncio.all_tasks() if t.get_name() == "schedule:stuck"]
        for task in stuck:
            task.cancel()
        await asyncio.gather(*stuck, return_exceptions=True)
        assert scheduler.active == []

    def test_next_sleep_seconds(self, scheduler, store):
        assert scheduler.next_sleep_seconds(T0) == 0.05

        store.create_schedule("soon", "p", "5m", next_run_at=T0 + timedelta(seconds=0.03))
        assert scheduler.next_sleep_seconds(T0) == pytest.approx(0.03)

        store.create_schedule("overdue", "p", "5m", next_run_at=T0 - timedelta(minutes=1))
        assert scheduler.next_sleep_seconds(T0) == 0.01

    def test_next_sleep_clamped_to_max(self, db, clock):
        scheduler = SchedulerLoop(ScheduleStore(db), None, min_sleep=1, max_sleep=60, clock=clock)
        ScheduleStore(db).create_schedule("later", "p", "every day", next_run_at=T0 + timedelta(hours=5))
        assert scheduler.next_sleep_seconds(T0) == 60

    @pytest.mark.asyncio
    async def test_run_forever_until_stopped(self, scheduler, store, fired):
        store.create_schedule("due", "p", "every 1 hour", next_run_at=T0 - timedelta(seconds=1))

        task = asyncio.create_task(scheduler.run_forever())
        await asyncio.sleep(0.1)
        assert scheduler.running is True

        scheduler.stop()
        await asyncio.wait_for(task, timeout=2)

        assert fired == ["due"]
        assert scheduler.running is False
        assert store.get_schedule("due").next_run_at == T0 + timedelta(minutes=59, seconds=59)


class TestScheduledRunner:
    """Tests for ScheduledRunner."""

    @pytest.fixture
    def presets_dir(self, tmp_path):
        directory = tmp_path / "presets"
        directory.mkdir()
        document = {
            "name": "greet",
            "vars": {"who": {"type": "string", "default": "nobody"}},
            "steps": [
                {"id": "hello", "action": "log", "params": {"message": "hello {{ vars.who }}"}},
            ],
        }
        (directory / "greet.json").write_text(json.dumps(document), encoding="utf-8")
        return directory

    @pytest.mark.asyncio
    async def test_runs_preset_with_schedule_vars(self, db, presets_dir):
        schedule = ScheduleStore(db).create_schedule("greeter", "greet", "5m", vars={"who": "world"})
        runner = ScheduledRunner(db, presets_dir=presets_dir)

        result = await runner(schedule)

        assert result.success is True
        assert result.steps[0].result.output == "hello world"
        run = RunLogger(db).get_run(result.run_id)
        assert run["trigger_type"] == "schedule"
        assert run["schedule_id"] == schedule.id
        assert run["status"] == "success"
        assert len(RunLogger(db).get_run_logs(result.run_id)) == 1

    @pytest.mark.asyncio
    async def test_missing_preset_recorded_as_failed_run(self, db, presets_dir):
        schedule = ScheduleStore(db).create_schedule("broken", "does-not-exist", "5m")

        result = await ScheduledRunner(db, presets_dir=presets_dir)(schedule)

        assert result is None
        runs = RunLogger(db).list_runs()
        assert len(runs) == 1
        assert runs[0]["status"] == "error"
        assert runs[0]["trigger_type"] == "schedule"
        assert "not found" in runs[0]["error"]

    @pytest.mark.asyncio
    async def test_loop_with_runner(self, db, presets_dir):
        store = ScheduleStore(db)
        store.create_schedule("greeter", "greet", "every 1 minute", next_run_at=T0)
        scheduler = SchedulerLoop(store, ScheduledRunner(db, presets_dir=presets_dir), clock=FakeClock(T0))

        await scheduler.tick(T0)
        await scheduler.drain(5)

        runs = RunLogger(db).list_runs()
        assert [run["status"] for run in runs] == ["success"]
        assert store.get_schedule("greeter").last_run_at == T0
