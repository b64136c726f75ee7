"""Delete expired rooms. Meant to be run from cron, e.g. every 15 minutes."""
from __future__ import annotations

import asyncio
import logging

from humbug.config import settings
from humbug.database import PostgresRoomStore, close_db, get_db_pool
from humbug.runtime import HumbugRuntime

logger = logging.getLogger("cleanup_rooms")


async def main() -> int:
    store = PostgresRoomStore(await get_db_pool())
    try:
        removed = await HumbugRuntime(store).purge_expired_rooms()
    finally:
        await close_db()
    logger.info("Removed %s expired rooms", removed)
    return removed


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level)
    asyncio.run(main())
