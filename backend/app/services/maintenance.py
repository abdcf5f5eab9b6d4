"""Retention cleanup for finished matches, audit records and retired streams."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import ValidationFailed
from ..models import AuditLog, Match, SetScore, Tournament
from ..time_utils import utcnow
from . import stream_pool

logger = logging.getLogger(__name__)

FINISHED_STATUSES = ("ended", "canceled")


@dataclass
class CleanupReport:
    retention_days: int
    recovered_streams: int = 0
    audit_deleted: int = 0
    matches_deleted: int = 0
    tournaments_deleted: int = 0
    streams_deleted: int = 0


async def cleanup_expired(session: AsyncSession, retention_days: int) -> CleanupReport:
    """Delete rows older than ``retention_days``.

    Only finished matches are removed, together with their set scores.
    Tournaments go once no match refers to them. Stuck reservations are
    recovered first so the pool is left in a usable state.
    """

    if retention_days < 1:
        raise ValidationFailed("Retention must be at least 1 day")

    report = CleanupReport(retention_days=retention_days)
    report.recovered_streams = len(await stream_pool.recover_stuck(session))

    cutoff = utcnow() - timedelta(days=retention_days)
    expired_matches = select(Match.id).where(
        Match.status.in_(FINISHED_STATUSES), Match.updated_at < cutoff
    )
    await session.execute(
        delete(SetScore)
        .where(SetScore.match_id.in_(expired_matches))
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(
        delete(Match)
        .where(Match.id.in_(expired_matches))
        .execution_options(synchronize_session=False)
    )
    report.matches_deleted = result.rowcount or 0

    referenced = select(Match.tournament_id).where(Match.tournament_id.is_not(None))
    result = await session.execute(
        delete(Tournament)
        .where(Tournament.created_at < cutoff, Tournament.id.notin_(referenced))
        .execution_options(synchronize_session=False)
    )
    report.tournaments_deleted = result.rowcount or 0

    result = await session.execute(
        delete(AuditLog)
        .where(AuditLog.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    report.audit_deleted = result.rowcount or 0
    await session.commit()

    report.streams_deleted = await stream_pool.purge_disabled(
        session, retention_days, include_available=True
    )
    logger.info("Retention cleanup finished: %s", report)
    return report
