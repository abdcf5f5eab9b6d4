from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import ProblemDetail
from ..services.auto_live import poll_auto_live
from ..services.youtube import BroadcastProvider, get_broadcast_provider
from .auth import get_admin_principal


async def require_admin(principal: str = Depends(get_admin_principal)) -> str:
    return principal


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    responses={401: {"model": ProblemDetail}, 404: {"model": ProblemDetail}},
)


@router.post("/matches/{mid}/auto-live")
async def admin_auto_live(
    mid: str,
    session: AsyncSession = Depends(get_session),
    provider: BroadcastProvider = Depends(get_broadcast_provider),
    _: str = Depends(require_admin),
) -> dict:
    """Unthrottled poll used by the admin dashboard."""
    result = await poll_auto_live(session, provider, mid)
    return result.to_payload()
