from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Optional


class ProblemDetail(BaseModel):
    """RFC 7807 compliant error response."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    status: int
    instance: Optional[str] = None
    code: str
    kind: str = "fatal"
    pool_status: Optional[Dict[str, int]] = Field(default=None, alias="poolStatus")

    model_config = ConfigDict(populate_by_name=True)


class DomainException(Exception):
    """Base class for domain-specific exceptions.

    ``kind`` tells callers how to react: ``validation`` and ``conflict`` mean
    the request itself must change, ``exhaustion`` and ``external`` mean try
    again later, ``fatal`` means contact support.
    """

    kind = "fatal"

    def __init__(
        self,
        status_code: int,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
        kind: str | None = None,
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code
        if kind is not None:
            self.kind = kind


class ValidationFailed(DomainException):
    kind = "validation"

    def __init__(self, detail: str, *, code: str = "validation_error") -> None:
        super().__init__(
            status_code=422,
            title="Validation error",
            detail=detail,
            code=code,
        )


class NotFound(DomainException):
    kind = "not_found"

    def __init__(self, title: str, *, code: str) -> None:
        super().__init__(status_code=404, title=title, detail=title, code=code)


class TeamNotFound(NotFound):
    def __init__(self, team_id: str) -> None:
        super().__init__("Team not found", code="team_not_found")
        self.team_id = team_id


class TournamentNotFound(NotFound):
    def __init__(self, tournament_id: str) -> None:
        super().__init__("Tournament not found", code="tournament_not_found")
        self.tournament_id = tournament_id


class MatchNotFound(NotFound):
    def __init__(self, match_id: str) -> None:
        super().__init__("Match not found", code="match_not_found")
        self.match_id = match_id


class StreamEntryNotFound(NotFound):
    def __init__(self, entry_id: str) -> None:
        super().__init__("Stream not found", code="stream_not_found")
        self.entry_id = entry_id


class NoStreamsAvailable(DomainException):
    kind = "exhaustion"

    def __init__(self, pool_status: dict[str, int] | None = None) -> None:
        super().__init__(
            status_code=503,
            title="No streams available",
            detail="No streams available in pool",
            code="stream_pool_exhausted",
        )
        self.pool_status = pool_status


class MatchStateConflict(DomainException):
    kind = "conflict"

    def __init__(self, detail: str, *, code: str = "match_state_conflict") -> None:
        super().__init__(
            status_code=409,
            title="Match state conflict",
            detail=detail,
            code=code,
        )


class InvalidStatusTransition(MatchStateConflict):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot transition from {current} to {requested}",
            code="match_invalid_transition",
        )
        self.current = current
        self.requested = requested


class ScoreConflict(MatchStateConflict):
    def __init__(self, detail: str) -> None:
        super().__init__(detail, code="score_conflict")


class InvalidRules(DomainException):
    kind = "validation"

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=400,
            title="Invalid match rules",
            detail=detail,
            code="match_invalid_rules",
        )


class ExternalServiceError(DomainException):
    kind = "external"

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(
            status_code=502,
            title="Broadcast provider error",
            detail=f"{operation} failed: {detail}",
            code="broadcast_provider_error",
        )
        self.operation = operation


def kind_for_status(status_code: int) -> str:
    """Best guess at the error kind for framework-raised HTTP errors."""

    if status_code == 404:
        return "not_found"
    if status_code == 409:
        return "conflict"
    if status_code in (429, 503):
        return "exhaustion"
    if status_code in (502, 504):
        return "external"
    if status_code >= 500:
        return "fatal"
    return "validation"


def http_problem(
    status_code: int,
    detail: str,
    code: str,
    *,
    headers: Optional[dict[str, str]] = None,
) -> HTTPException:
    """Create an HTTPException with an attached problem code."""

    exc = HTTPException(status_code=status_code, detail=detail, headers=headers)
    setattr(exc, "code", code)
    return exc
