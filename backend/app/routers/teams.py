import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..db_errors import is_unique_violation
from ..exceptions import ProblemDetail, http_problem
from ..models import Team
from ..schemas import TeamCreate, TeamOut
from .admin import require_admin

router = APIRouter(
    prefix="/teams",
    tags=["teams"],
    responses={404: {"model": ProblemDetail}},
)


def _to_team_out(team: Team) -> TeamOut:
    return TeamOut(
        id=team.id,
        slug=team.slug,
        display_name=team.display_name,
        enabled=team.enabled,
    )


@router.post("", response_model=TeamOut, status_code=status.HTTP_201_CREATED)
async def create_team(
    body: TeamCreate,
    session: AsyncSession = Depends(get_session),
    _: str = Depends(require_admin),
) -> TeamOut:
    team = Team(
        id=uuid.uuid4().hex,
        slug=body.slug,
        display_name=body.display_name,
        enabled=True,
    )
    session.add(team)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if not is_unique_violation(exc, "slug"):
            raise
        raise http_problem(
            status_code=409,
            detail="team already exists",
            code="team_exists",
        )
    return _to_team_out(team)


@router.get("", response_model=list[TeamOut])
async def list_teams(
    include_disabled: bool = False,
    session: AsyncSession = Depends(get_session),
) -> list[TeamOut]:
    stmt = select(Team).order_by(Team.display_name)
    if not include_disabled:
        stmt = stmt.where(Team.enabled.is_(True))
    rows = (await session.execute(stmt)).scalars().all()
    return [_to_team_out(team) for team in rows]
