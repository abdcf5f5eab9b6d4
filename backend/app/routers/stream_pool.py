from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import STREAM_POOL_RETENTION_DAYS
from ..db import get_session
from ..exceptions import ProblemDetail
from ..models import STREAM_STATUSES, StreamPoolEntry
from ..schemas import ProvisionIn, ProvisionOut, StreamEntryOut, StreamPoolStatusOut
from ..services import stream_pool
from ..services.youtube import BroadcastProvider, get_broadcast_provider
from .admin import require_admin

# Every stream pool endpoint is admin only.
router = APIRouter(
    prefix="/stream-pool",
    tags=["stream-pool"],
    dependencies=[Depends(require_admin)],
    responses={401: {"model": ProblemDetail}},
)


def _to_entry_out(entry: StreamPoolEntry) -> StreamEntryOut:
    # The stream name is the ingest credential and never leaves the backend here.
    return StreamEntryOut(
        id=entry.id,
        external_stream_id=entry.external_stream_id,
        ingest_address=entry.ingest_address,
        status=entry.status,
        reserved_match_id=entry.reserved_match_id,
        updated_at=entry.updated_at,
    )


@router.get("/status", response_model=StreamPoolStatusOut)
async def pool_status(session: AsyncSession = Depends(get_session)):
    return StreamPoolStatusOut(**await stream_pool.get_status_summary(session))


@router.post("/provision", response_model=ProvisionOut)
async def provision_pool(
    body: ProvisionIn,
    session: AsyncSession = Depends(get_session),
    provider: BroadcastProvider = Depends(get_broadcast_provider),
):
    result = await stream_pool.provision_batch(session, provider, body.count)
    summary = await stream_pool.get_status_summary(session)
    return ProvisionOut(
        created=result.created,
        errors=result.errors,
        status=StreamPoolStatusOut(**summary),
    )


@router.get("/streams", response_model=list[StreamEntryOut])
async def list_streams(
    status: Optional[str] = Query(None, pattern="^(" + "|".join(STREAM_STATUSES) + ")$"),
    session: AsyncSession = Depends(get_session),
):
    entries = await stream_pool.list_entries(session, status)
    return [_to_entry_out(entry) for entry in entries]


@router.post("/streams/{entry_id}/enable", response_model=StreamEntryOut)
async def enable_stream(entry_id: str, session: AsyncSession = Depends(get_session)):
    return _to_entry_out(await stream_pool.enable_entry(session, entry_id))


@router.post("/streams/{entry_id}/disable", response_model=StreamEntryOut)
async def disable_stream(entry_id: str, session: AsyncSession = Depends(get_session)):
    return _to_entry_out(await stream_pool.disable_entry(session, entry_id))


@router.post("/purge")
async def purge_disabled_streams(
    older_than_days: int = Query(STREAM_POOL_RETENTION_DAYS, ge=1, alias="olderThanDays"),
    session: AsyncSession = Depends(get_session),
):
    return {"deleted": await stream_pool.purge_disabled(session, older_than_days)}
