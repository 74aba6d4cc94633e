"""Schema creation for fresh databases.

Production deployments manage schema out of band; this creates every
table for local runs, tests and the ``init-db`` command.
"""

from __future__ import annotations

import logging

from .dbm import DBM
from .schema import metadata

logger = logging.getLogger(__name__)


async def create_all(dbm: DBM) -> None:
    async with dbm.engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Database schema ensured (%d tables)", len(metadata.tables))


async def drop_all(dbm: DBM) -> None:
    async with dbm.engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


__all__ = ["create_all", "drop_all"]
