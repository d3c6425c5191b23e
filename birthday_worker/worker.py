# birthday_worker/worker.py - headless scheduler process
import asyncio
import signal
import logging
from typing import Optional
from birthday_worker.config import Settings, settings as default_settings
from birthday_worker.database import Database, SchedulerRepository
from birthday_worker.scheduler import BirthdayScheduler
from birthday_worker.services import build_email_gateway, build_sms_gateway

logger = logging.getLogger(__name__)

def configure_logging(settings: Settings):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

def build_scheduler(database: Database, settings: Optional[Settings] = None) -> BirthdayScheduler:
    """Wire the scheduler to PostgreSQL and the configured providers"""
    settings = settings or default_settings
    return BirthdayScheduler(
        store=SchedulerRepository(database),
        email_gateway=build_email_gateway(settings),
        sms_gateway=build_sms_gateway(settings),
        settings=settings
    )

async def close_gateways(scheduler: BirthdayScheduler):
    for gateway in (scheduler.email_gateway, scheduler.sms_gateway):
        close = getattr(gateway, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception as e:
            logger.warning(f"Error closing {type(gateway).__name__}: {e}")

async def run_worker(settings: Optional[Settings] = None):
    settings = settings or default_settings
    database = Database(settings)
    await database.connect()

    scheduler = build_scheduler(database, settings)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still ends asyncio.run
            pass

    scheduler.start()
    try:
        await shutdown.wait()
        logger.info("⏹️  Shutting down scheduler...")
    finally:
        await scheduler.stop()
        await close_gateways(scheduler)
        await database.close()

def main():
    configure_logging(default_settings)
    asyncio.run(run_worker())

if __name__ == "__main__":
    main()
