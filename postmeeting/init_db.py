#!/usr/bin/env python3
"""
Database initialization script.
Run this to create the required database tables.

    python -m postmeeting.init_db            create missing tables
    python -m postmeeting.init_db --reset    drop and recreate everything
"""
import asyncio
import sys

from postmeeting.config import settings
from postmeeting.db import close_db, create_tables, drop_tables
from postmeeting.logging_config import get_logger, setup_logging
from postmeeting.models import Base

logger = get_logger(__name__)


async def init_db():
    """Initialize database tables."""
    try:
        await create_tables()
        logger.info("database_tables_created", tables=sorted(Base.metadata.tables))
    except Exception as e:
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        await close_db()


async def reset_db(confirmed: bool = False):
    """Drop and recreate all tables. WARNING: This deletes all data!"""
    if not confirmed:
        response = input("This will DELETE ALL DATA. Are you sure you want to continue? (yes/no): ")
        if response.lower() != "yes":
            logger.info("database_reset_cancelled")
            return

    try:
        await drop_tables()
        logger.info("database_tables_dropped")
        await create_tables()
        logger.info("database_reset_completed")
    except Exception as e:
        logger.error("database_reset_failed", error=str(e))
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    setup_logging(settings.debug)
    if "--reset" in sys.argv[1:]:
        asyncio.run(reset_db(confirmed="--yes" in sys.argv[1:]))
    else:
        asyncio.run(init_db())
