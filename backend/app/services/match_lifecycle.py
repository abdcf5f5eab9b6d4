"""Match lifecycle: creation with a pooled stream, status transitions, teardown.

Creation spans an irreversible external call (the broadcast), so it is not a
single database transaction. The pool reservation is committed first, then
the broadcast is created and bound, then the match row is written. Any
failure after the reservation runs the compensating path in ``finally``:
roll back, release the reservation and delete a broadcast that no longer
has a match.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import (
    BROADCAST_DEFAULT_TITLE_PREFIX,
    BROADCAST_TITLE_TIMEZONE,
    DEFAULT_BEST_OF,
    DEFAULT_FINAL_SET_POINTS,
    DEFAULT_POINTS_TO_WIN,
    DEFAULT_PRIVACY_STATUS,
    DEFAULT_START_DELAY_MINUTES,
    DEFAULT_WIN_BY,
)
from ..db_errors import is_unique_violation
from ..exceptions import (
    ExternalServiceError,
    InvalidRules,
    InvalidStatusTransition,
    MatchNotFound,
    MatchStateConflict,
    NoStreamsAvailable,
    TeamNotFound,
    TournamentNotFound,
    ValidationFailed,
)
from ..models import Match, StreamPoolEntry, Team, Tournament
from ..scoring.volleyball import MatchRules, validate_rules
from ..time_utils import coerce_utc, format_match_date, utcnow
from . import stream_pool
from .audit import record_audit
from .youtube import BroadcastProvider, BroadcastProviderError

logger = logging.getLogger(__name__)

MATCH_STATUSES = ("draft", "scheduled", "ready", "live", "ended", "canceled", "error")

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"scheduled", "ready", "live", "ended", "canceled"}),
    "scheduled": frozenset({"ready", "live", "ended", "canceled"}),
    "ready": frozenset({"live", "ended"}),
    "live": frozenset({"ended"}),
    "ended": frozenset(),
    "canceled": frozenset(),
    "error": frozenset(),
}

PRIVACY_STATUSES = {"public", "unlisted"}
EDITABLE_FIELDS = {"opponent_name", "court_label", "scheduled_start", "status"}


def can_transition(current: str, requested: str) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, requested: str) -> None:
    if not can_transition(current, requested):
        raise InvalidStatusTransition(current, requested)


def resolve_rules(
    best_of: int | None = None,
    points_to_win: int | None = None,
    final_set_points: int | None = None,
    win_by: int | None = None,
) -> MatchRules:
    """Fill every field the caller left unset from the configured defaults."""

    return MatchRules(
        best_of=DEFAULT_BEST_OF if best_of is None else best_of,
        points_to_win=DEFAULT_POINTS_TO_WIN if points_to_win is None else points_to_win,
        final_set_points=(
            DEFAULT_FINAL_SET_POINTS if final_set_points is None else final_set_points
        ),
        win_by=DEFAULT_WIN_BY if win_by is None else win_by,
    )


def rules_for_match(match: Match) -> MatchRules:
    """Effective, validated rules of ``match``.

    Overrides are validated when stored, but defaults can change with the
    environment, so the combination is checked again on every use.
    """

    rules = resolve_rules(
        match.rules_best_of,
        match.rules_points_to_win,
        match.rules_final_set_points,
        match.rules_win_by,
    )
    error = validate_rules(rules)
    if error:
        raise InvalidRules(error)
    return rules


def build_broadcast_title(
    team_name: str,
    opponent_name: str,
    tournament_name: str | None,
    match_date: datetime,
) -> str:
    tournament = (tournament_name or "").strip() or BROADCAST_DEFAULT_TITLE_PREFIX
    date_label = format_match_date(match_date, BROADCAST_TITLE_TIMEZONE)
    return f"{tournament}, {team_name} vs {opponent_name}, {date_label}"


def build_broadcast_description(
    court_label: str | None = None, custom: str | None = None
) -> str:
    if custom and custom.strip():
        return custom.strip()
    if court_label:
        return f"Court: {court_label}"
    return ""


@dataclass(frozen=True)
class ExternalOutcome:
    """Result of a best-effort provider call that must not block local state."""

    ok: bool
    error: Optional[str] = None


async def attempt_external(
    operation: str, call: Callable[..., Awaitable[Any]], *args: Any
) -> ExternalOutcome:
    try:
        await call(*args)
    except BroadcastProviderError as exc:
        logger.warning("Best-effort %s failed: %s", operation, exc)
        return ExternalOutcome(ok=False, error=str(exc))
    return ExternalOutcome(ok=True)


@dataclass
class NewMatch:
    team_id: str
    opponent_name: str
    tournament_id: Optional[str] = None
    tournament_name: Optional[str] = None
    scheduled_start: Optional[datetime] = None
    court_label: Optional[str] = None
    description: Optional[str] = None
    privacy_status: Optional[str] = None
    idempotency_key: Optional[str] = None
    best_of: Optional[int] = None
    points_to_win: Optional[int] = None
    final_set_points: Optional[int] = None
    win_by: Optional[int] = None


@dataclass
class CreatedMatch:
    match: Match
    ingest_address: Optional[str]
    stream_name: Optional[str]
    title: str
    reused: bool = False


@dataclass
class MatchTeardown:
    match: Match
    broadcast: ExternalOutcome
    stream_released: bool
    changed: bool = True


async def get_match(session: AsyncSession, match_id: str) -> Match:
    match = await session.get(Match, match_id)
    if match is None:
        raise MatchNotFound(match_id)
    return match


async def list_matches(
    session: AsyncSession,
    *,
    status: str | None = None,
    team_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> Sequence[Match]:
    stmt = select(Match)
    if status:
        stmt = stmt.where(Match.status == status)
    if team_id:
        stmt = stmt.where(Match.team_id == team_id)
    stmt = stmt.order_by(Match.scheduled_start.desc(), Match.created_at.desc())
    stmt = stmt.limit(limit).offset(offset)
    return (await session.execute(stmt)).scalars().all()


async def _find_by_idempotency_key(session: AsyncSession, key: str) -> Match | None:
    return (
        await session.execute(select(Match).where(Match.idempotency_key == key))
    ).scalar_one_or_none()


async def _stream_details(session: AsyncSession, match: Match) -> tuple[str | None, str | None]:
    if not match.stream_pool_id:
        return None, None
    entry = await session.get(StreamPoolEntry, match.stream_pool_id)
    if entry is None:
        return None, None
    return entry.ingest_address, entry.stream_name


async def _reused(session: AsyncSession, match: Match) -> CreatedMatch:
    ingest_address, stream_name = await _stream_details(session, match)
    title = build_broadcast_title(
        match.team.display_name,
        match.opponent_name,
        match.tournament_name,
        coerce_utc(match.scheduled_start) or coerce_utc(match.created_at) or utcnow(),
    )
    return CreatedMatch(
        match=match,
        ingest_address=ingest_address,
        stream_name=stream_name,
        title=title,
        reused=True,
    )


async def _rollback_creation(
    session: AsyncSession,
    provider: BroadcastProvider,
    reservation: stream_pool.ReservedStream,
    match_id: str,
    broadcast_id: str | None,
) -> None:
    try:
        await session.rollback()
        await stream_pool.release(
            session, reservation.external_stream_id, match_id=match_id
        )
        await session.commit()
    except SQLAlchemyError:
        # The recovery sweep reclaims the entry later.
        logger.exception(
            "Failed to release stream %s after aborted match creation",
            reservation.entry_id,
        )
        await session.rollback()
    else:
        logger.info(
            "Released stream %s after aborted match creation", reservation.entry_id
        )
    if broadcast_id:
        outcome = await attempt_external(
            "delete_broadcast", provider.delete_broadcast, broadcast_id
        )
        if not outcome.ok:
            logger.warning("Orphaned broadcast %s left behind", broadcast_id)


def _validated_rules_override(params: NewMatch) -> MatchRules:
    rules = resolve_rules(
        params.best_of, params.points_to_win, params.final_set_points, params.win_by
    )
    error = validate_rules(rules)
    if error:
        raise InvalidRules(error)
    return rules


async def create_match(
    session: AsyncSession, provider: BroadcastProvider, params: NewMatch
) -> CreatedMatch:
    """Create a match bound to a pooled stream and a fresh broadcast.

    A repeated ``idempotency_key`` returns the match created by the first
    call, including when the first call wins a concurrent race on the
    unique constraint. Raises :class:`NoStreamsAvailable` when the pool is
    exhausted and :class:`ExternalServiceError` when the broadcast can not
    be created or bound; in both cases nothing stays reserved.
    """

    team = await session.get(Team, params.team_id)
    if team is None:
        raise TeamNotFound(params.team_id)

    if params.idempotency_key:
        existing = await _find_by_idempotency_key(session, params.idempotency_key)
        if existing is not None:
            logger.info(
                "Returning match %s for repeated idempotency key", existing.id
            )
            return await _reused(session, existing)

    opponent_name = (params.opponent_name or "").strip()
    if not opponent_name:
        raise ValidationFailed("Opponent name is required")

    tournament = None
    tournament_name = None
    if params.tournament_id:
        tournament = await session.get(Tournament, params.tournament_id)
        if tournament is None:
            raise TournamentNotFound(params.tournament_id)
        tournament_name = tournament.name
    elif params.tournament_name and params.tournament_name.strip():
        tournament_name = params.tournament_name.strip()

    privacy_status = (params.privacy_status or DEFAULT_PRIVACY_STATUS).lower()
    if privacy_status not in PRIVACY_STATUSES:
        raise ValidationFailed("Privacy status must be public or unlisted")

    _validated_rules_override(params)

    scheduled_start = coerce_utc(params.scheduled_start) or (
        utcnow() + timedelta(minutes=DEFAULT_START_DELAY_MINUTES)
    )
    title = build_broadcast_title(
        team.display_name, opponent_name, tournament_name, scheduled_start
    )
    description = build_broadcast_description(params.court_label, params.description)

    reservation = await stream_pool.reserve(session)
    if reservation is None and await stream_pool.recover_stuck(session):
        reservation = await stream_pool.reserve(session)
    if reservation is None:
        pool_status = await stream_pool.get_status_summary(session)
        logger.warning("Stream pool exhausted: %s", pool_status)
        raise NoStreamsAvailable(pool_status)

    match_id = uuid.uuid4().hex
    broadcast_id: str | None = None
    duplicate: IntegrityError | None = None
    committed = False
    try:
        broadcast = await provider.create_broadcast(
            title, description, scheduled_start, privacy_status
        )
        broadcast_id = broadcast.broadcast_id
        await provider.bind_stream(broadcast_id, reservation.external_stream_id)

        now = utcnow()
        match = Match(
            id=match_id,
            team_id=team.id,
            team=team,
            opponent_name=opponent_name,
            tournament_id=tournament.id if tournament else None,
            tournament=tournament,
            tournament_name=tournament_name,
            scheduled_start=scheduled_start,
            court_label=params.court_label,
            status="draft",
            privacy_status=privacy_status,
            broadcast_id=broadcast_id,
            watch_url=broadcast.watch_url,
            stream_pool_id=reservation.entry_id,
            idempotency_key=params.idempotency_key,
            rules_best_of=params.best_of,
            rules_points_to_win=params.points_to_win,
            rules_final_set_points=params.final_set_points,
            rules_win_by=params.win_by,
            created_at=now,
            updated_at=now,
        )
        session.add(match)
        await session.flush()
        await stream_pool.bind_to_match(session, reservation.entry_id, match_id)
        await session.commit()
        committed = True
    except BroadcastProviderError as exc:
        raise ExternalServiceError(exc.operation, exc.message) from exc
    except IntegrityError as exc:
        if not (
            params.idempotency_key
            and is_unique_violation(exc, "idempotency_key")
        ):
            raise
        duplicate = exc
    finally:
        if not committed:
            await _rollback_creation(
                session, provider, reservation, match_id, broadcast_id
            )

    if duplicate is not None:
        existing = await _find_by_idempotency_key(session, params.idempotency_key)
        if existing is None:
            raise duplicate
        logger.info("Lost idempotency race; returning match %s", existing.id)
        return await _reused(session, existing)

    await record_audit(
        session,
        "match_created",
        {
            "match_id": match_id,
            "team_id": team.id,
            "stream_pool_id": reservation.entry_id,
            "broadcast_id": broadcast_id,
        },
    )
    logger.info("Created match %s on stream %s", match_id, reservation.entry_id)
    return CreatedMatch(
        match=match,
        ingest_address=reservation.ingest_address,
        stream_name=reservation.stream_name,
        title=title,
    )


async def release_match_stream(session: AsyncSession, match: Match) -> bool:
    """Hand the match's pool entry back and clear the reference."""

    if not match.stream_pool_id:
        return False
    released = False
    entry = await session.get(StreamPoolEntry, match.stream_pool_id)
    if entry is not None:
        released = await stream_pool.release(
            session, entry.external_stream_id, match_id=match.id
        )
    match.stream_pool_id = None
    return released


async def cancel_match(
    session: AsyncSession, provider: BroadcastProvider, match_id: str
) -> MatchTeardown:
    match = await get_match(session, match_id)
    if match.status == "live":
        raise MatchStateConflict("Cannot cancel a live match")
    if match.status in ("ended", "canceled"):
        raise MatchStateConflict(f"Match is already {match.status}")
    ensure_transition(match.status, "canceled")

    previous_status = match.status
    previous_stream = match.stream_pool_id
    outcome = ExternalOutcome(ok=True)
    if match.broadcast_id:
        outcome = await attempt_external(
            "delete_broadcast", provider.delete_broadcast, match.broadcast_id
        )

    released = await release_match_stream(session, match)
    match.status = "canceled"
    match.updated_at = utcnow()
    await session.commit()

    await record_audit(
        session,
        "match_canceled",
        {
            "match_id": match.id,
            "previous_status": previous_status,
            "stream_pool_id": previous_stream,
            "broadcast_deleted": outcome.ok,
            "broadcast_error": outcome.error,
        },
    )
    return MatchTeardown(match=match, broadcast=outcome, stream_released=released)


async def end_match(
    session: AsyncSession, provider: BroadcastProvider, match_id: str
) -> MatchTeardown:
    match = await get_match(session, match_id)
    if match.status == "ended":
        return MatchTeardown(
            match=match,
            broadcast=ExternalOutcome(ok=True),
            stream_released=False,
            changed=False,
        )
    if match.status == "canceled":
        raise MatchStateConflict("Match was canceled")
    ensure_transition(match.status, "ended")

    previous_status = match.status
    previous_stream = match.stream_pool_id
    outcome = ExternalOutcome(ok=True)
    if match.broadcast_id:
        outcome = await attempt_external(
            "complete_broadcast",
            provider.transition_broadcast,
            match.broadcast_id,
            "complete",
        )

    released = await release_match_stream(session, match)
    match.status = "ended"
    match.updated_at = utcnow()
    await session.commit()

    await record_audit(
        session,
        "match_ended",
        {
            "match_id": match.id,
            "previous_status": previous_status,
            "stream_pool_id": previous_stream,
            "broadcast_completed": outcome.ok,
            "broadcast_error": outcome.error,
        },
    )
    return MatchTeardown(match=match, broadcast=outcome, stream_released=released)


async def update_match(
    session: AsyncSession,
    provider: BroadcastProvider,
    match_id: str,
    changes: Mapping[str, Any],
) -> Match:
    """Apply an admin edit.

    ``changes`` holds only the fields the caller actually sent. A status
    change to ``canceled`` or ``ended`` goes through :func:`cancel_match` or
    :func:`end_match` so teardown is identical whichever route asked for it.
    """

    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationFailed(f"Unsupported fields: {', '.join(sorted(unknown))}")

    match = await get_match(session, match_id)
    requested = changes.get("status")
    if requested is not None:
        if requested not in ALLOWED_TRANSITIONS:
            raise ValidationFailed(f"Unknown match status: {requested}")
        ensure_transition(match.status, requested)

    if "opponent_name" in changes:
        opponent_name = (changes["opponent_name"] or "").strip()
        if not opponent_name:
            raise ValidationFailed("Opponent name is required")
        if match.status != "draft":
            raise MatchStateConflict(
                "Opponent name can only be edited while match is in draft status"
            )
        match.opponent_name = opponent_name

    if "court_label" in changes:
        match.court_label = changes["court_label"]
    if changes.get("scheduled_start") is not None:
        match.scheduled_start = coerce_utc(changes["scheduled_start"])

    previous_status = match.status
    if requested in ("canceled", "ended"):
        # Field edits ride along with the teardown commit.
        teardown = cancel_match if requested == "canceled" else end_match
        return (await teardown(session, provider, match_id)).match

    if requested == "live" and match.stream_pool_id:
        await stream_pool.mark_in_use(session, match.stream_pool_id)
    if requested is not None:
        match.status = requested
    match.updated_at = utcnow()
    await session.commit()

    await record_audit(
        session,
        "match_updated",
        {
            "match_id": match.id,
            "updates": sorted(changes),
            "previous_status": previous_status,
            "new_status": match.status,
        },
    )
    return match
