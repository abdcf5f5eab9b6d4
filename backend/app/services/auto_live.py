"""Client-driven promotion of a match to live once its stream is receiving.

There is no background scheduler: admin and public pages call
:func:`poll_auto_live` every few seconds. Each call re-reads the match, the
stream health and the broadcast lifecycle before acting, so overlapping
callers converge on one transition and one audit record.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import auto_live_throttle
from ..config import AUTO_LIVE_SETTLE_SECONDS
from ..models import Match, StreamPoolEntry
from ..time_utils import utcnow
from . import stream_pool
from .audit import record_audit
from .match_lifecycle import ALLOWED_TRANSITIONS, get_match
from .youtube import BroadcastProvider, BroadcastProviderError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"ended", "canceled", "error"}
PRE_TESTING_STATES = {"created", "ready"}
TESTING_STATES = {"testing", "testStarting"}
LIVE_STATES = {"live", "liveStarting"}
PROMOTABLE_STATUSES = tuple(
    sorted(status for status, allowed in ALLOWED_TRANSITIONS.items() if "live" in allowed)
)


@dataclass(frozen=True)
class AutoLiveResult:
    status: str
    reason: Optional[str] = None
    stream_status: Optional[str] = None
    health_status: Optional[str] = None
    broadcast_status: Optional[str] = None
    error: Optional[str] = None

    def to_payload(self) -> dict:
        return {
            _camel(key): value
            for key, value in asdict(self).items()
            if value is not None
        }


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


async def _live_health(
    session: AsyncSession, provider: BroadcastProvider, match: Match
) -> AutoLiveResult:
    entry = (
        await session.get(StreamPoolEntry, match.stream_pool_id)
        if match.stream_pool_id
        else None
    )
    if entry is None:
        return AutoLiveResult(status="already_live")
    try:
        health = await provider.get_stream_health(entry.external_stream_id)
    except BroadcastProviderError as exc:
        logger.debug("Health check for live match %s failed: %s", match.id, exc)
        return AutoLiveResult(status="already_live", stream_status="health_check_failed")
    return AutoLiveResult(
        status="already_live",
        stream_status=health.status,
        health_status=health.health_status,
    )


async def _drive_broadcast_live(
    provider: BroadcastProvider, broadcast_id: str
) -> Optional[str]:
    """Walk the broadcast to ``live``.

    Returns ``None`` once the broadcast is live (or going live), otherwise the
    lifecycle state that prevents the transition.
    """

    lifecycle = await provider.get_broadcast_status(broadcast_id)
    if lifecycle in PRE_TESTING_STATES:
        await provider.transition_broadcast(broadcast_id, "testing")
        await asyncio.sleep(AUTO_LIVE_SETTLE_SECONDS)
        lifecycle = "testing"
    if lifecycle in TESTING_STATES:
        await provider.transition_broadcast(broadcast_id, "live")
        return None
    if lifecycle in LIVE_STATES:
        return None
    return lifecycle


async def poll_auto_live(
    session: AsyncSession,
    provider: BroadcastProvider,
    match_id: str,
    *,
    public: bool = False,
) -> AutoLiveResult:
    match = await get_match(session, match_id)

    if match.status == "live":
        if public:
            return await _live_health(session, provider, match)
        return AutoLiveResult(status="already_live")
    if match.status in TERMINAL_STATUSES:
        return AutoLiveResult(status=match.status)
    if not match.broadcast_id or not match.stream_pool_id:
        return AutoLiveResult(status="waiting", reason="no_stream_bound")

    if public and not await auto_live_throttle.claim(match.id):
        return AutoLiveResult(status="waiting", reason="throttled")

    entry = await session.get(StreamPoolEntry, match.stream_pool_id)
    if entry is None:
        return AutoLiveResult(status="waiting", reason="stream_not_found")

    try:
        health = await provider.get_stream_health(entry.external_stream_id)
    except BroadcastProviderError as exc:
        logger.warning("Stream health check failed for match %s: %s", match.id, exc)
        return AutoLiveResult(
            status="waiting", stream_status="health_check_failed", error=str(exc)
        )
    if health.status != "active":
        return AutoLiveResult(
            status="waiting",
            stream_status=health.status,
            health_status=health.health_status,
        )

    try:
        blocked_by = await _drive_broadcast_live(provider, match.broadcast_id)
    except BroadcastProviderError as exc:
        logger.warning("Broadcast transition failed for match %s: %s", match.id, exc)
        return AutoLiveResult(
            status="transition_failed",
            stream_status=health.status,
            health_status=health.health_status,
            error=exc.message,
        )
    if blocked_by is not None:
        return AutoLiveResult(
            status="waiting",
            stream_status=health.status,
            health_status=health.health_status,
            broadcast_status=blocked_by,
        )

    previous_status = match.status
    result = await session.execute(
        update(Match)
        .where(Match.id == match.id, Match.status.in_(PROMOTABLE_STATUSES))
        .values(status="live", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    promoted = result.rowcount == 1
    if promoted:
        await stream_pool.mark_in_use(session, entry.id)
    await session.commit()

    if promoted:
        logger.info("Match %s is live", match.id)
        await record_audit(
            session,
            "match_auto_live",
            {
                "match_id": match.id,
                "previous_status": previous_status,
                "stream_pool_id": entry.id,
                "broadcast_id": match.broadcast_id,
            },
        )
    return AutoLiveResult(
        status="live",
        stream_status=health.status,
        health_status=health.health_status,
    )
