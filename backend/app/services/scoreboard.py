"""Persisted set scores driven by scorer actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import MatchNotFound, ScoreConflict, ValidationFailed
from ..models import Match, SetScore
from ..scoring import volleyball
from ..time_utils import utcnow
from .match_lifecycle import get_match, rules_for_match

logger = logging.getLogger(__name__)

POINT_ACTIONS = ("home_plus", "home_minus", "away_plus", "away_minus")
ACTIONS = POINT_ACTIONS + ("next_set", "reset_set")


@dataclass(frozen=True)
class ScoreSnapshot:
    match_id: str
    team_name: str
    opponent_name: str
    tournament_name: str | None
    status: str
    rules: volleyball.MatchRules
    state: volleyball.MatchState

    def to_payload(self) -> dict:
        return {
            "match": {
                "id": self.match_id,
                "teamDisplayName": self.team_name,
                "opponentName": self.opponent_name,
                "tournamentName": self.tournament_name,
                "status": self.status,
            },
            "rules": self.rules.to_payload(),
            "state": self.state.to_payload(),
        }


async def _load_sets(session: AsyncSession, match_id: str) -> Sequence[SetScore]:
    return (
        await session.execute(
            select(SetScore)
            .where(SetScore.match_id == match_id)
            .order_by(SetScore.set_number)
        )
    ).scalars().all()


def _derive(rows: Sequence[SetScore], rules: volleyball.MatchRules) -> volleyball.MatchState:
    return volleyball.derive_match_state(
        [
            volleyball.SetScore(row.set_number, row.home_score, row.away_score)
            for row in rows
        ],
        rules,
    )


def _snapshot(
    match: Match, rules: volleyball.MatchRules, state: volleyball.MatchState
) -> ScoreSnapshot:
    tournament_name = match.tournament.name if match.tournament else match.tournament_name
    return ScoreSnapshot(
        match_id=match.id,
        team_name=match.team.display_name,
        opponent_name=match.opponent_name,
        tournament_name=tournament_name,
        status=match.status,
        rules=rules,
        state=state,
    )


async def get_score_snapshot(session: AsyncSession, match_id: str) -> ScoreSnapshot:
    match = await get_match(session, match_id)
    rules = rules_for_match(match)
    rows = await _load_sets(session, match_id)
    return _snapshot(match, rules, _derive(rows, rules))


def _new_set(match_id: str, set_number: int) -> SetScore:
    return SetScore(
        match_id=match_id,
        set_number=set_number,
        home_score=0,
        away_score=0,
        updated_at=utcnow(),
    )


async def _apply(
    session: AsyncSession, match: Match, action: str, override: bool
) -> None:
    rules = rules_for_match(match)
    rows = await _load_sets(session, match.id)
    state = _derive(rows, rules)
    target = state.current_set_number
    by_number = {row.set_number: row for row in rows}

    # Sets are only created as scoring reaches them.
    row = by_number.get(target)
    if row is None:
        row = _new_set(match.id, target)
        session.add(row)
    current = state.set_for(target)
    current_complete = bool(current and current.complete)

    if action == "next_set":
        if not override:
            if state.match_complete:
                raise ScoreConflict("Match already complete")
            if not current_complete:
                raise ScoreConflict("Current set is not complete")
        next_number = target + 1
        if next_number > rules.best_of:
            raise ScoreConflict("No more sets available")
        if next_number not in by_number:
            session.add(_new_set(match.id, next_number))
        return

    if action == "reset_set":
        row.home_score = 0
        row.away_score = 0
        row.updated_at = utcnow()
        return

    if current_complete and not override:
        raise ScoreConflict("Set already complete")
    side, direction = action.split("_")
    attribute = f"{side}_score"
    value = getattr(row, attribute) or 0
    setattr(row, attribute, value + 1 if direction == "plus" else max(0, value - 1))
    row.updated_at = utcnow()


async def apply_action(
    session: AsyncSession,
    match_id: str,
    action: str,
    *,
    override: bool = False,
) -> ScoreSnapshot:
    """Apply one scorer action and return the fresh snapshot.

    The match row is locked for the whole read-modify-write, so concurrent
    scorers on one match are serialised and each sees the previous result.
    Nothing is persisted when the action is rejected.
    """

    if action not in ACTIONS:
        raise ValidationFailed(f"Unknown score action: {action}", code="score_invalid_action")

    try:
        match = (
            await session.execute(
                select(Match).where(Match.id == match_id).with_for_update()
            )
        ).scalar_one_or_none()
        if match is None:
            raise MatchNotFound(match_id)
        await _apply(session, match, action, override)
        await session.flush()
        rules = rules_for_match(match)
        snapshot = _snapshot(match, rules, _derive(await _load_sets(session, match_id), rules))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    if override:
        logger.info("Score override %s applied to match %s", action, match_id)
    return snapshot
