from typing import Any, Dict, List, Literal, Optional
from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .time_utils import require_utc


def _strip_required(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    trimmed = value.strip()
    if not trimmed:
        raise ValueError(f"{field_name} must not be empty")
    return trimmed


class TeamCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=60)
    display_name: str = Field(..., min_length=1, max_length=100, alias="displayName")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("slug", mode="before")
    @classmethod
    def _validate_slug(cls, value: str) -> str:
        trimmed = _strip_required(value, "slug").lower()
        if any(ch.isspace() for ch in trimmed):
            raise ValueError("slug must not contain whitespace")
        return trimmed

    @field_validator("display_name", mode="before")
    @classmethod
    def _validate_display_name(cls, value: str) -> str:
        return _strip_required(value, "displayName")


class TeamOut(BaseModel):
    id: str
    slug: str
    display_name: str = Field(alias="displayName")
    enabled: bool

    model_config = ConfigDict(populate_by_name=True)


class TournamentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    starts_on: Optional[date] = Field(default=None, alias="startsOn")
    ends_on: Optional[date] = Field(default=None, alias="endsOn")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _strip_required(value, "name")


class TournamentOut(BaseModel):
    id: str
    name: str
    starts_on: Optional[date] = Field(default=None, alias="startsOn")
    ends_on: Optional[date] = Field(default=None, alias="endsOn")

    model_config = ConfigDict(populate_by_name=True)


class MatchCreate(BaseModel):
    team_id: str = Field(..., min_length=1, alias="teamId")
    opponent_name: str = Field(..., min_length=1, max_length=100, alias="opponentName")
    tournament_id: Optional[str] = Field(default=None, alias="tournamentId")
    tournament_name: Optional[str] = Field(
        default=None, max_length=200, alias="tournamentName"
    )
    scheduled_start: Optional[datetime] = Field(default=None, alias="scheduledStart")
    court_label: Optional[str] = Field(default=None, max_length=20, alias="courtLabel")
    description: Optional[str] = Field(default=None, max_length=5000)
    privacy_status: Optional[Literal["public", "unlisted"]] = Field(
        default=None, alias="privacyStatus"
    )
    idempotency_key: Optional[str] = Field(
        default=None, min_length=1, max_length=200, alias="idempotencyKey"
    )
    best_of: Optional[int] = Field(default=None, alias="bestOf")
    points_to_win: Optional[int] = Field(default=None, alias="pointsToWin")
    final_set_points: Optional[int] = Field(default=None, alias="finalSetPoints")
    win_by: Optional[int] = Field(default=None, alias="winBy")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("opponent_name", mode="before")
    @classmethod
    def _validate_opponent(cls, value: str) -> str:
        return _strip_required(value, "opponentName")

    @field_validator("scheduled_start")
    @classmethod
    def _validate_scheduled_start(cls, value: datetime | None) -> datetime | None:
        return require_utc(value, field_name="scheduledStart")


class MatchUpdate(BaseModel):
    opponent_name: Optional[str] = Field(
        default=None, min_length=1, max_length=100, alias="opponentName"
    )
    scheduled_start: Optional[datetime] = Field(default=None, alias="scheduledStart")
    court_label: Optional[str] = Field(default=None, max_length=20, alias="courtLabel")
    status: Optional[
        Literal["scheduled", "ready", "live", "ended", "canceled"]
    ] = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("scheduled_start")
    @classmethod
    def _validate_scheduled_start(cls, value: datetime | None) -> datetime | None:
        return require_utc(value, field_name="scheduledStart")


class MatchRulesOut(BaseModel):
    best_of: int = Field(alias="bestOf")
    points_to_win: int = Field(alias="pointsToWin")
    final_set_points: int = Field(alias="finalSetPoints")
    win_by: int = Field(alias="winBy")

    model_config = ConfigDict(populate_by_name=True)


class MatchOut(BaseModel):
    id: str
    team_id: str = Field(alias="teamId")
    team_display_name: Optional[str] = Field(default=None, alias="teamDisplayName")
    opponent_name: str = Field(alias="opponentName")
    tournament_id: Optional[str] = Field(default=None, alias="tournamentId")
    tournament_name: Optional[str] = Field(default=None, alias="tournamentName")
    scheduled_start: Optional[datetime] = Field(default=None, alias="scheduledStart")
    court_label: Optional[str] = Field(default=None, alias="courtLabel")
    status: str
    privacy_status: str = Field(alias="privacyStatus")
    broadcast_id: Optional[str] = Field(default=None, alias="broadcastId")
    watch_url: Optional[str] = Field(default=None, alias="watchUrl")
    stream_pool_id: Optional[str] = Field(default=None, alias="streamPoolId")
    rules: MatchRulesOut
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class StreamConnectionOut(BaseModel):
    """Fields a streaming client needs to push video for a match."""

    ingest_address: Optional[str] = Field(default=None, alias="ingestAddress")
    stream_name: Optional[str] = Field(default=None, alias="streamName")
    title: str

    model_config = ConfigDict(populate_by_name=True)


class MatchCreateOut(BaseModel):
    match: MatchOut
    stream: StreamConnectionOut
    reused: bool = False


class MatchTeardownOut(BaseModel):
    match: MatchOut
    broadcast_ok: bool = Field(alias="broadcastOk")
    broadcast_error: Optional[str] = Field(default=None, alias="broadcastError")
    stream_released: bool = Field(alias="streamReleased")

    model_config = ConfigDict(populate_by_name=True)


class ScoreActionIn(BaseModel):
    action: Literal[
        "home_plus", "home_minus", "away_plus", "away_minus", "next_set", "reset_set"
    ]
    override: bool = False

    model_config = ConfigDict(extra="forbid")


class StreamPoolStatusOut(BaseModel):
    available: int = 0
    reserved: int = 0
    in_use: int = 0
    stuck: int = 0
    disabled: int = 0
    total: int = 0


class ProvisionIn(BaseModel):
    count: int = Field(..., ge=1, le=20)


class ProvisionOut(BaseModel):
    created: int
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    status: StreamPoolStatusOut


class StreamEntryOut(BaseModel):
    id: str
    external_stream_id: str = Field(alias="externalStreamId")
    ingest_address: str = Field(alias="ingestAddress")
    status: str
    reserved_match_id: Optional[str] = Field(default=None, alias="reservedMatchId")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)
