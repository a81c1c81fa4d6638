from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from menu_ocr.db.models import Base
from menu_ocr.db.session import engine as default_engine

logger = logging.getLogger(__name__)


async def init_db(engine: AsyncEngine | None = None) -> None:
    async with (engine or default_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized")
