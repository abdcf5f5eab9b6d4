"""Write-only audit trail."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db_errors import is_missing_table_error
from ..models import AuditLog

LOGGER = logging.getLogger(__name__)


async def _safe_rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except SQLAlchemyError:  # pragma: no cover - best effort
        LOGGER.debug("Rollback after failed audit write also failed", exc_info=True)


async def record_audit(
    session: AsyncSession,
    action: str,
    detail: Mapping[str, Any] | None = None,
) -> bool:
    """Persist an audit record in its own commit.

    Call this after the audited change has been committed: a failure here is
    logged and reported through the return value, never raised, so auditing
    can not undo or block the operation it describes.
    """

    session.add(
        AuditLog(
            id=uuid.uuid4().hex,
            action=action,
            detail=dict(detail or {}),
        )
    )
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await _safe_rollback(session)
        if is_missing_table_error(exc, "audit_log"):
            LOGGER.debug("audit_log table unavailable; dropping %s record", action)
        else:
            LOGGER.warning("Failed to record audit action %s", action, exc_info=True)
        return False
    return True
