"""
Automate - Scheduler daemon

Long-running process that fires schedules until SIGINT / SIGTERM.

    automate-daemon
"""
import asyncio
import signal

from dotenv import load_dotenv

from ..config.logging import get_logger, setup_logging_from_env
from ..config.settings import settings
from ..storage import Database
from .loop import SchedulerLoop
from .runner import ScheduledRunner
from .store import ScheduleStore

logger = get_logger("daemon")


async def serve(db: Database) -> None:
    """Run the scheduler loop on the current event loop until a signal arrives."""
    scheduler = SchedulerLoop(ScheduleStore(db), ScheduledRunner(db, presets_dir=settings.presets.presets_dir))

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, _on_signal, scheduler, signum)

    await scheduler.run_forever()


def _on_signal(scheduler: SchedulerLoop, signum: int) -> None:
    logger.info(f"Received signal {signal.Signals(signum).name}, shutting down...")
    scheduler.stop()


def main():
    load_dotenv()
    setup_logging_from_env()

    db = Database(settings.database.path)
    logger.info(f"Database: {db.path}")
    logger.info(f"Presets: {settings.presets.presets_dir}")

    try:
        asyncio.run(serve(db))
    finally:
        db.close()


if __name__ == "__main__":
    main()
