"""ADSCOUT — Scheduler Jobs.

APScheduler daily job that syncs Meta insights for every configured ad
account at the configured hour.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.config import settings
from app.database import session_scope
from app.analyzer.insights_sync import sync_insights, MAX_ACCOUNTS_PER_BATCH
from app.connectors.meta.client import MetaClient
from app.ingestion.repository import AdRepository
from app.core.logging import get_logger

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def daily_insights_job():
    """Walk all account pages until the sync reports nothing more."""
    logger.info("Scheduled insights sync starting...")
    client = MetaClient()
    synced = 0
    errors = 0
    try:
        with session_scope() as session:
            repo = AdRepository(session)
            offset = 0
            while True:
                result = await sync_insights(
                    repo,
                    client,
                    date_preset=settings.insights_date_preset,
                    account_offset=offset,
                    accounts_per_batch=MAX_ACCOUNTS_PER_BATCH,
                )
                synced += result.synced
                errors += len(result.errors)
                if not result.has_more:
                    break
                offset = result.account_offset
        logger.info(f"Scheduled insights sync complete. {synced} synced, {errors} errors")
    except Exception as e:
        logger.error(f"Scheduled insights sync failed: {e}")
    finally:
        await client.close()


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        daily_insights_job,
        "cron",
        hour=settings.insights_sync_hour,
        minute=0,
        id="daily_insights_sync",
        replace_existing=True,
        misfire_grace_time=3600,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Daily insights sync at {settings.insights_sync_hour}:00 UTC"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
