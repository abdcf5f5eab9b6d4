"""Allocation of the shared pool of provisioned stream endpoints.

Entries move ``available -> reserved -> in_use -> available`` and may be
parked as ``disabled`` by an admin. Exclusivity is enforced by conditional
``UPDATE ... WHERE status = :expected`` statements, never by in-process
locks, so any number of stateless API instances can share one pool.

Only :func:`reserve`, :func:`recover_stuck` and :func:`provision_batch`
commit on their own; the remaining helpers join the caller's transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import (
    STREAM_POOL_MAX_PROVISION,
    STREAM_POOL_RETENTION_DAYS,
    STREAM_POOL_STUCK_HOURS,
)
from ..exceptions import MatchStateConflict, StreamEntryNotFound, ValidationFailed
from ..models import (
    STREAM_AVAILABLE,
    STREAM_DISABLED,
    STREAM_IN_USE,
    STREAM_RESERVED,
    STREAM_STATUSES,
    STREAM_STUCK,
    Match,
    StreamPoolEntry,
)
from ..time_utils import utcnow
from .youtube import BroadcastProvider, BroadcastProviderError

logger = logging.getLogger(__name__)

RESERVE_ATTEMPTS = 10
TERMINAL_MATCH_STATUSES = ("ended", "canceled")


@dataclass(frozen=True)
class ReservedStream:
    entry_id: str
    external_stream_id: str
    ingest_address: str
    stream_name: str


@dataclass
class ProvisionResult:
    created: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


async def reserve(session: AsyncSession) -> Optional[ReservedStream]:
    """Claim one available entry, or return ``None`` when the pool is empty.

    The claim is an update guarded by ``status = 'available'``; a racer that
    loses the guard simply tries the next candidate. The reservation is
    committed before returning so it is visible to every other instance
    before any external call is made on its behalf.
    """

    for _ in range(RESERVE_ATTEMPTS):
        candidate = (
            await session.execute(
                select(
                    StreamPoolEntry.id,
                    StreamPoolEntry.external_stream_id,
                    StreamPoolEntry.ingest_address,
                    StreamPoolEntry.stream_name,
                )
                .where(StreamPoolEntry.status == STREAM_AVAILABLE)
                .limit(1)
            )
        ).first()
        if candidate is None:
            return None

        result = await session.execute(
            update(StreamPoolEntry)
            .where(
                StreamPoolEntry.id == candidate.id,
                StreamPoolEntry.status == STREAM_AVAILABLE,
            )
            .values(status=STREAM_RESERVED, reserved_match_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await session.commit()
            return ReservedStream(
                entry_id=candidate.id,
                external_stream_id=candidate.external_stream_id,
                ingest_address=candidate.ingest_address,
                stream_name=candidate.stream_name,
            )
        logger.debug("Lost reservation race for stream %s; retrying", candidate.id)

    logger.warning("Gave up reserving a stream after %d contended attempts", RESERVE_ATTEMPTS)
    return None


async def bind_to_match(session: AsyncSession, entry_id: str, match_id: str) -> None:
    """Record which match owns a reservation made before the match existed."""

    result = await session.execute(
        update(StreamPoolEntry)
        .where(
            StreamPoolEntry.id == entry_id,
            StreamPoolEntry.status == STREAM_RESERVED,
        )
        .values(reserved_match_id=match_id, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise MatchStateConflict(
            "Stream reservation was lost before it could be bound",
            code="stream_reservation_lost",
        )


async def release(
    session: AsyncSession,
    external_stream_id: str,
    *,
    match_id: str | None = None,
) -> bool:
    """Return an entry to ``available``; a no-op if it already is.

    With ``match_id`` the release only applies while the entry is unbound or
    still bound to that match, so a late release can not steal an entry that
    was recovered and handed to someone else. Disabled entries stay disabled.
    Returns whether the entry changed state.
    """

    conditions = [
        StreamPoolEntry.external_stream_id == external_stream_id,
        StreamPoolEntry.status.notin_((STREAM_AVAILABLE, STREAM_DISABLED)),
    ]
    if match_id is not None:
        conditions.append(
            or_(
                StreamPoolEntry.reserved_match_id.is_(None),
                StreamPoolEntry.reserved_match_id == match_id,
            )
        )
    result = await session.execute(
        update(StreamPoolEntry)
        .where(*conditions)
        .values(status=STREAM_AVAILABLE, reserved_match_id=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def mark_in_use(session: AsyncSession, entry_id: str) -> bool:
    result = await session.execute(
        update(StreamPoolEntry)
        .where(
            StreamPoolEntry.id == entry_id,
            StreamPoolEntry.status.in_((STREAM_RESERVED, STREAM_IN_USE)),
        )
        .values(status=STREAM_IN_USE, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def recover_stuck(
    session: AsyncSession,
    threshold_hours: float = STREAM_POOL_STUCK_HOURS,
) -> list[str]:
    """Release reservations that have been abandoned for too long.

    A reservation is abandoned when it is older than ``threshold_hours`` and
    has no live owner: it was never bound, or its match is gone or already
    finished. Such entries are first labelled ``stuck`` (so the detection is
    visible to anyone reading the pool mid-sweep and in the log) and then
    released. Returns the ids of the recovered entries.
    """

    cutoff = utcnow() - timedelta(hours=threshold_hours)
    active_owners = select(Match.id).where(Match.status.notin_(TERMINAL_MATCH_STATUSES))
    abandoned = and_(
        StreamPoolEntry.status == STREAM_RESERVED,
        StreamPoolEntry.updated_at < cutoff,
        or_(
            StreamPoolEntry.reserved_match_id.is_(None),
            StreamPoolEntry.reserved_match_id.notin_(active_owners),
        ),
    )
    flagged = (
        await session.execute(
            select(StreamPoolEntry.id).where(or_(abandoned, StreamPoolEntry.status == STREAM_STUCK))
        )
    ).scalars().all()
    if not flagged:
        return []

    await session.execute(
        update(StreamPoolEntry)
        .where(StreamPoolEntry.id.in_(flagged), StreamPoolEntry.status == STREAM_RESERVED)
        .values(status=STREAM_STUCK, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    logger.warning(
        "Detected %d stuck stream reservation(s) older than %.1fh: %s",
        len(flagged),
        threshold_hours,
        ", ".join(flagged),
    )
    await session.execute(
        update(StreamPoolEntry)
        .where(StreamPoolEntry.id.in_(flagged), StreamPoolEntry.status == STREAM_STUCK)
        .values(status=STREAM_AVAILABLE, reserved_match_id=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return list(flagged)


async def get_status_summary(session: AsyncSession) -> dict[str, int]:
    """Counts per status plus ``total``, after a stuck-entry sweep."""

    await recover_stuck(session)
    rows = (
        await session.execute(
            select(StreamPoolEntry.status, func.count()).group_by(StreamPoolEntry.status)
        )
    ).all()
    summary = {status: 0 for status in STREAM_STATUSES}
    for status, count in rows:
        summary[status] = summary.get(status, 0) + count
    summary["total"] = sum(count for _, count in rows)
    return summary


async def provision_batch(
    session: AsyncSession,
    provider: BroadcastProvider,
    count: int,
) -> ProvisionResult:
    """Create ``count`` new endpoints, tolerating per-item failures."""

    if count < 1 or count > STREAM_POOL_MAX_PROVISION:
        raise ValidationFailed(
            f"Count must be between 1 and {STREAM_POOL_MAX_PROVISION}",
            code="stream_pool_invalid_count",
        )

    result = ProvisionResult()
    stamp = int(utcnow().timestamp() * 1000)
    for index in range(1, count + 1):
        title = f"Clubstream Pool #{stamp}-{index}"
        try:
            stream = await provider.create_physical_stream(title)
            now = utcnow()
            session.add(
                StreamPoolEntry(
                    id=uuid.uuid4().hex,
                    external_stream_id=stream.external_stream_id,
                    ingest_address=stream.ingest_address,
                    stream_name=stream.stream_name,
                    status=STREAM_AVAILABLE,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()
        except BroadcastProviderError as exc:
            logger.warning("Failed to create stream %d of %d: %s", index, count, exc)
            result.errors.append({"index": index, "error": str(exc)})
            continue
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.warning("Failed to store stream %d of %d", index, count, exc_info=True)
            result.errors.append({"index": index, "error": str(getattr(exc, "orig", None) or exc)})
            continue
        result.created += 1
    return result


async def list_entries(
    session: AsyncSession, status: str | None = None
) -> list[StreamPoolEntry]:
    stmt = select(StreamPoolEntry)
    if status:
        stmt = stmt.where(StreamPoolEntry.status == status)
    stmt = stmt.order_by(StreamPoolEntry.updated_at.desc())
    return list((await session.execute(stmt)).scalars().all())


async def _get_entry(session: AsyncSession, entry_id: str) -> StreamPoolEntry:
    entry = await session.get(StreamPoolEntry, entry_id, populate_existing=True)
    if entry is None:
        raise StreamEntryNotFound(entry_id)
    return entry


async def disable_entry(session: AsyncSession, entry_id: str) -> StreamPoolEntry:
    entry = await _get_entry(session, entry_id)
    if entry.status in (STREAM_RESERVED, STREAM_IN_USE):
        raise MatchStateConflict(
            f"Stream is {entry.status} and can not be disabled",
            code="stream_busy",
        )
    entry.status = STREAM_DISABLED
    entry.reserved_match_id = None
    entry.updated_at = utcnow()
    await session.commit()
    return entry


async def enable_entry(session: AsyncSession, entry_id: str) -> StreamPoolEntry:
    entry = await _get_entry(session, entry_id)
    if entry.status in (STREAM_RESERVED, STREAM_IN_USE):
        raise MatchStateConflict(
            f"Stream is {entry.status} and can not be enabled",
            code="stream_busy",
        )
    entry.status = STREAM_AVAILABLE
    entry.reserved_match_id = None
    entry.updated_at = utcnow()
    await session.commit()
    return entry


async def purge_disabled(
    session: AsyncSession,
    older_than_days: int = STREAM_POOL_RETENTION_DAYS,
    *,
    include_available: bool = False,
) -> int:
    """Delete entries untouched for longer than the retention window.

    Only disabled entries go by default. Retention cleanup also passes
    ``include_available`` to drop idle available entries. Entries a match
    still points at are always kept.
    """

    statuses = [STREAM_DISABLED]
    if include_available:
        statuses.append(STREAM_AVAILABLE)

    cutoff = utcnow() - timedelta(days=older_than_days)
    referenced = select(Match.stream_pool_id).where(Match.stream_pool_id.is_not(None))
    result = await session.execute(
        delete(StreamPoolEntry)
        .where(
            StreamPoolEntry.status.in_(statuses),
            StreamPoolEntry.updated_at < cutoff,
            StreamPoolEntry.id.notin_(referenced),
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount or 0
