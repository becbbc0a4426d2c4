from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from app.db.base import AnalyticsBase
from app.models import promo_usage  # noqa: F401  registers the read-model tables

logger = logging.getLogger(__name__)


async def ensure_analytics_schema(engine: AsyncEngine) -> None:
    """Create missing read-model tables.

    The analytics store is rebuilt from events rather than migrated, so additive
    ``create_all`` is enough; it never alters or drops existing tables.
    """
    async with engine.begin() as conn:
        await conn.run_sync(AnalyticsBase.metadata.create_all)
    logger.info("analytics_schema_ready", extra={"tables": sorted(AnalyticsBase.metadata.tables)})
