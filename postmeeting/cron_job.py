"""
One-shot reconciliation for cron-style deployments.

This script:
1. Ensures the schema exists
2. Re-syncs every linked Google calendar
3. Runs a single reconciliation cycle (poll bots, finalize meetings, draft content)

Exits non-zero when the cycle failed outright.
"""
import asyncio
import sys

from postmeeting.config import settings
from postmeeting.db import async_session_maker, close_db, create_tables
from postmeeting.logging_config import get_logger, setup_logging
from postmeeting.reconciler import Reconciler
from postmeeting.schemas import CycleStats
from postmeeting.services.store import MeetingStore

logger = get_logger(__name__)


async def main() -> CycleStats:
    """Main entry point for the cron job."""
    logger.info("cron_job_started")
    try:
        await create_tables()

        store = MeetingStore(async_session_maker)
        reconciler = Reconciler(store)
        await reconciler.sync_calendars(await store.get_settings())
        stats = await reconciler.run_cycle()

        logger.info("cron_job_completed", **stats.model_dump(mode="json"))
        return stats
    except Exception as e:
        logger.error("cron_job_failed", error=str(e), exc_info=True)
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    setup_logging(settings.debug)
    result = asyncio.run(main())
    sys.exit(1 if result.status == "failed" else 0)
