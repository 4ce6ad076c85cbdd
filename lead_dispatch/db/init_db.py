"""
Initialize database tables
Run this once to create tables: python -m lead_dispatch.db.init_db
"""

import asyncio
import logging

from lead_dispatch.core.config import get_settings
from lead_dispatch.db.database import init_db


if __name__ == "__main__":
    logging.basicConfig(level=get_settings().log_level)
    logging.getLogger(__name__).info("Creating database tables...")
    asyncio.run(init_db())
