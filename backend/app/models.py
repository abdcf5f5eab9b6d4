from sqlalchemy.orm import relationship
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    ForeignKey,
    JSON,
    Integer,
    Boolean,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .db import Base

# Stream pool entry states
STREAM_AVAILABLE = "available"
STREAM_RESERVED = "reserved"
STREAM_IN_USE = "in_use"
STREAM_STUCK = "stuck"
STREAM_DISABLED = "disabled"
STREAM_STATUSES = (
    STREAM_AVAILABLE,
    STREAM_RESERVED,
    STREAM_IN_USE,
    STREAM_STUCK,
    STREAM_DISABLED,
)


class Team(Base):
    __tablename__ = "team"
    id = Column(String, primary_key=True)
    slug = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Tournament(Base):
    __tablename__ = "tournament"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    starts_on = Column(Date, nullable=True)
    ends_on = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class StreamPoolEntry(Base):
    """One provisioned ingest endpoint, reused across matches."""

    __tablename__ = "stream_pool"
    id = Column(String, primary_key=True)
    external_stream_id = Column(String, nullable=False, unique=True)
    ingest_address = Column(String, nullable=False)
    stream_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default=STREAM_AVAILABLE)
    # Back-reference only; the match owns nothing here.
    reserved_match_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("ix_stream_pool_status", "status"),)


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    team_id = Column(String, ForeignKey("team.id", ondelete="RESTRICT"), nullable=False)
    opponent_name = Column(String, nullable=False)
    tournament_id = Column(
        String, ForeignKey("tournament.id", ondelete="SET NULL"), nullable=True
    )
    tournament_name = Column(String, nullable=True)
    scheduled_start = Column(DateTime(timezone=True), nullable=True)
    court_label = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft")
    privacy_status = Column(String, nullable=False, default="unlisted")
    broadcast_id = Column(String, nullable=True)
    watch_url = Column(String, nullable=True)
    stream_pool_id = Column(
        String, ForeignKey("stream_pool.id", ondelete="SET NULL"), nullable=True
    )
    idempotency_key = Column(String, nullable=True, unique=True)
    rules_best_of = Column(Integer, nullable=True)
    rules_points_to_win = Column(Integer, nullable=True)
    rules_final_set_points = Column(Integer, nullable=True)
    rules_win_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    team = relationship("Team", lazy="selectin")
    tournament = relationship("Tournament", lazy="selectin")
    set_scores = relationship(
        "SetScore",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SetScore.set_number",
        back_populates="match",
    )

    __table_args__ = (Index("ix_match_status", "status"),)


class SetScore(Base):
    __tablename__ = "set_score"
    match_id = Column(
        String, ForeignKey("match.id", ondelete="CASCADE"), primary_key=True
    )
    set_number = Column(Integer, primary_key=True)
    home_score = Column(Integer, nullable=False, default=0)
    away_score = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    match = relationship("Match", back_populates="set_scores")


class AuditLog(Base):
    __tablename__ = "audit_log"
    id = Column(String, primary_key=True)
    action = Column(String, nullable=False)
    detail = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("ix_audit_log_action", "action"),)
