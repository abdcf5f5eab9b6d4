#!/usr/bin/env python3
"""Admin helper to purge data older than the retention window."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from dataclasses import asdict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.config import STREAM_POOL_RETENTION_DAYS
from app.db import _normalize_database_url
from app.services.maintenance import cleanup_expired


async def _get_engine() -> AsyncEngine:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL environment variable is required")
    return create_async_engine(
        _normalize_database_url(database_url), echo=False, pool_pre_ping=True
    )


def _retention_default() -> int:
    raw = os.getenv("RETENTION_DAYS")
    return int(raw) if raw else STREAM_POOL_RETENTION_DAYS


async def main() -> None:
    parser = argparse.ArgumentParser(
        description=(
            "Delete finished matches, audit records, orphaned tournaments and "
            "disabled stream pool entries older than the retention window."
        )
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=_retention_default(),
        help="Age in days after which rows are deleted (default: RETENTION_DAYS or 7).",
    )
    args = parser.parse_args()
    if args.retention_days < 1:
        parser.error("--retention-days must be a positive number")

    logging.basicConfig(level=logging.INFO, format="[db:cleanup] %(message)s")

    engine = await _get_engine()
    Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with Session() as session:
            report = await cleanup_expired(session, args.retention_days)
        print(json.dumps(asdict(report), indent=2, sort_keys=True))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
