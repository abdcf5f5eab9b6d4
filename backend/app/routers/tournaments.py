import uuid
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..models import Tournament
from ..schemas import TournamentCreate, TournamentOut
from ..exceptions import http_problem
from .admin import require_admin

router = APIRouter(prefix="/tournaments", tags=["tournaments"])


def _to_tournament_out(t: Tournament) -> TournamentOut:
    return TournamentOut(id=t.id, name=t.name, starts_on=t.starts_on, ends_on=t.ends_on)


@router.post("", response_model=TournamentOut, status_code=status.HTTP_201_CREATED)
async def create_tournament(
    body: TournamentCreate,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(require_admin),
):
    if body.starts_on and body.ends_on and body.ends_on < body.starts_on:
        raise http_problem(
            status_code=422,
            detail="tournament cannot end before it starts",
            code="tournament_invalid_dates",
        )
    t = Tournament(
        id=uuid.uuid4().hex,
        name=body.name,
        starts_on=body.starts_on,
        ends_on=body.ends_on,
    )
    session.add(t)
    await session.commit()
    return _to_tournament_out(t)


@router.get("", response_model=list[TournamentOut])
async def list_tournaments(session: AsyncSession = Depends(get_session)):
    rows = (
        await session.execute(
            select(Tournament).order_by(Tournament.starts_on.desc(), Tournament.name)
        )
    ).scalars().all()
    return [_to_tournament_out(t) for t in rows]
