# backend/app/routers/matches.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import ProblemDetail
from ..models import Match
from ..schemas import (
    MatchCreate,
    MatchCreateOut,
    MatchOut,
    MatchRulesOut,
    MatchTeardownOut,
    MatchUpdate,
    ScoreActionIn,
    StreamConnectionOut,
)
from ..services import match_lifecycle, scoreboard
from ..services.auto_live import poll_auto_live
from ..services.match_lifecycle import MatchTeardown, NewMatch
from ..services.youtube import BroadcastProvider, get_broadcast_provider
from .admin import require_admin
from .auth import limiter
from .streams import broadcast

# Resource-only prefix; versioning is added in main.py
router = APIRouter(
    prefix="/matches",
    tags=["matches"],
    responses={404: {"model": ProblemDetail}, 409: {"model": ProblemDetail}},
)


def _to_match_out(match: Match) -> MatchOut:
    # Rules are reported as stored overrides on top of defaults, unvalidated,
    # so a broken override is visible to the admin that has to fix it.
    rules = match_lifecycle.resolve_rules(
        match.rules_best_of,
        match.rules_points_to_win,
        match.rules_final_set_points,
        match.rules_win_by,
    )
    tournament_name = match.tournament.name if match.tournament else match.tournament_name
    return MatchOut(
        id=match.id,
        team_id=match.team_id,
        team_display_name=match.team.display_name if match.team else None,
        opponent_name=match.opponent_name,
        tournament_id=match.tournament_id,
        tournament_name=tournament_name,
        scheduled_start=match.scheduled_start,
        court_label=match.court_label,
        status=match.status,
        privacy_status=match.privacy_status,
        broadcast_id=match.broadcast_id,
        watch_url=match.watch_url,
        stream_pool_id=match.stream_pool_id,
        rules=MatchRulesOut(
            best_of=rules.best_of,
            points_to_win=rules.points_to_win,
            final_set_points=rules.final_set_points,
            win_by=rules.win_by,
        ),
        created_at=match.created_at,
        updated_at=match.updated_at,
    )


def _to_teardown_out(result: MatchTeardown) -> MatchTeardownOut:
    return MatchTeardownOut(
        match=_to_match_out(result.match),
        broadcast_ok=result.broadcast.ok,
        broadcast_error=result.broadcast.error,
        stream_released=result.stream_released,
    )


@router.post("", response_model=MatchCreateOut, status_code=status.HTTP_201_CREATED)
async def create_match(
    body: MatchCreate,
    response: Response,
    session: AsyncSession = Depends(get_session),
    provider: BroadcastProvider = Depends(get_broadcast_provider),
    _: str = Depends(require_admin),
):
    created = await match_lifecycle.create_match(
        session,
        provider,
        NewMatch(**body.model_dump()),
    )
    if created.reused:
        response.status_code = status.HTTP_200_OK
    return MatchCreateOut(
        match=_to_match_out(created.match),
        stream=StreamConnectionOut(
            ingest_address=created.ingest_address,
            stream_name=created.stream_name,
            title=created.title,
        ),
        reused=created.reused,
    )


@router.get("", response_model=list[MatchOut])
async def list_matches(
    status: Optional[str] = Query(None),
    team_id: Optional[str] = Query(None, alias="teamId"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    rows = await match_lifecycle.list_matches(
        session, status=status, team_id=team_id, limit=limit, offset=offset
    )
    return [_to_match_out(m) for m in rows]


@router.get("/{mid}", response_model=MatchOut)
async def get_match(mid: str, session: AsyncSession = Depends(get_session)):
    return _to_match_out(await match_lifecycle.get_match(session, mid))


@router.patch("/{mid}", response_model=MatchOut)
async def update_match(
    mid: str,
    body: MatchUpdate,
    session: AsyncSession = Depends(get_session),
    provider: BroadcastProvider = Depends(get_broadcast_provider),
    _: str = Depends(require_admin),
):
    changes = body.model_dump(exclude_unset=True)
    match = await match_lifecycle.update_match(session, provider, mid, changes)
    return _to_match_out(match)


@router.delete("/{mid}", response_model=MatchTeardownOut)
async def cancel_match(
    mid: str,
    session: AsyncSession = Depends(get_session),
    provider: BroadcastProvider = Depends(get_broadcast_provider),
    _: str = Depends(require_admin),
):
    return _to_teardown_out(await match_lifecycle.cancel_match(session, provider, mid))


@router.post("/{mid}/end", response_model=MatchTeardownOut)
@limiter.limit("10/minute")
async def end_match(
    request: Request,
    mid: str,
    session: AsyncSession = Depends(get_session),
    provider: BroadcastProvider = Depends(get_broadcast_provider),
):
    return _to_teardown_out(await match_lifecycle.end_match(session, provider, mid))


@router.post("/{mid}/auto-live")
async def auto_live(
    mid: str,
    session: AsyncSession = Depends(get_session),
    provider: BroadcastProvider = Depends(get_broadcast_provider),
) -> dict:
    result = await poll_auto_live(session, provider, mid, public=True)
    return result.to_payload()


@router.get("/{mid}/score")
async def get_score(mid: str, session: AsyncSession = Depends(get_session)) -> dict:
    snapshot = await scoreboard.get_score_snapshot(session, mid)
    return snapshot.to_payload()


@router.post("/{mid}/score")
@limiter.limit("120/minute")
async def post_score(
    request: Request,
    mid: str,
    body: ScoreActionIn,
    session: AsyncSession = Depends(get_session),
) -> dict:
    snapshot = await scoreboard.apply_action(
        session, mid, body.action, override=body.override
    )
    payload = snapshot.to_payload()
    await broadcast(mid, payload)
    return payload
