#!/usr/bin/env python3
"""
Database Initialization Script
Create the ACL, grant, membership and chunk tables
"""

import asyncio
import sys

from permsearch.core.logging import get_logger, setup_logging
from permsearch.db.session import close_db, init_db

setup_logging()
logger = get_logger(__name__)


async def main():
    """Main initialization function"""
    logger.info("Initializing database...")

    try:
        await init_db(create_tables=True)
        logger.info("Database initialized successfully!")
        return 0
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1
    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
