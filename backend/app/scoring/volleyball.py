"""Volleyball scoring engine.

Rally scoring where a set is won by reaching the target with a win-by
margin, and the match is a best-of-N series of sets. The deciding set (set
number ``best_of``) plays to ``final_set_points`` instead of
``points_to_win``. Everything here is pure and safe to recompute on every
read from the raw set scores.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from math import ceil
from typing import Iterable, Literal, Optional

Side = Literal["home", "away"]


@dataclass(frozen=True)
class MatchRules:
    best_of: int = 3
    points_to_win: int = 25
    final_set_points: int = 15
    win_by: int = 2

    def to_payload(self) -> dict:
        return {
            "bestOf": self.best_of,
            "pointsToWin": self.points_to_win,
            "finalSetPoints": self.final_set_points,
            "winBy": self.win_by,
        }


@dataclass(frozen=True)
class SetScore:
    set_number: int
    home_score: int
    away_score: int


@dataclass(frozen=True)
class SetResult:
    set_number: int
    home_score: int
    away_score: int
    target_points: int
    complete: bool
    winner: Optional[Side] = None


@dataclass(frozen=True)
class MatchState:
    sets: list[SetResult] = field(default_factory=list)
    current_set_number: int = 1
    home_sets_won: int = 0
    away_sets_won: int = 0
    match_complete: bool = False
    winner: Optional[Side] = None
    sets_to_win: int = 1

    def set_for(self, set_number: int) -> Optional[SetResult]:
        for result in self.sets:
            if result.set_number == set_number:
                return result
        return None

    def to_payload(self) -> dict:
        return {
            "sets": [
                {
                    "setNumber": s.set_number,
                    "homeScore": s.home_score,
                    "awayScore": s.away_score,
                    "targetPoints": s.target_points,
                    "complete": s.complete,
                    "winner": s.winner,
                }
                for s in self.sets
            ],
            "currentSetNumber": self.current_set_number,
            "homeSetsWon": self.home_sets_won,
            "awaySetsWon": self.away_sets_won,
            "matchComplete": self.match_complete,
            "winner": self.winner,
            "setsToWin": self.sets_to_win,
        }


def target_points_for(rules: MatchRules, set_number: int) -> int:
    """Return the points needed to take ``set_number``."""

    return rules.final_set_points if set_number == rules.best_of else rules.points_to_win


def is_set_complete(home: int, away: int, target: int, win_by: int) -> bool:
    # Below target nothing is decided, whatever the margin.
    if max(home, away) < target:
        return False
    return abs(home - away) >= win_by


def winner_of(home: int, away: int, complete: bool) -> Optional[Side]:
    if not complete:
        return None
    return "home" if home > away else "away"


def _dedupe_sets(sets: Iterable[SetScore]) -> list[SetScore]:
    # Stable sort keeps input order among duplicates; the last one wins.
    by_number: dict[int, SetScore] = {}
    for score in sorted(sets, key=lambda s: s.set_number):
        by_number[score.set_number] = score
    return [by_number[number] for number in sorted(by_number)]


def derive_match_state(sets: Iterable[SetScore], rules: MatchRules) -> MatchState:
    """Compute the match state from raw set scores.

    Total for any well-typed input: duplicates and out-of-order sets are
    resolved by sorting on ``set_number`` with the last duplicate winning.
    ``current_set_number`` never exceeds ``rules.best_of``.
    """

    ordered = _dedupe_sets(sets)
    sets_to_win = ceil(rules.best_of / 2)

    home_sets_won = 0
    away_sets_won = 0
    results: list[SetResult] = []
    for score in ordered:
        target = target_points_for(rules, score.set_number)
        complete = is_set_complete(score.home_score, score.away_score, target, rules.win_by)
        winner = winner_of(score.home_score, score.away_score, complete)
        if winner == "home":
            home_sets_won += 1
        elif winner == "away":
            away_sets_won += 1
        results.append(
            SetResult(
                set_number=score.set_number,
                home_score=score.home_score,
                away_score=score.away_score,
                target_points=target,
                complete=complete,
                winner=winner,
            )
        )

    match_complete = home_sets_won >= sets_to_win or away_sets_won >= sets_to_win
    winner: Optional[Side] = None
    if home_sets_won >= sets_to_win:
        winner = "home"
    elif away_sets_won >= sets_to_win:
        winner = "away"

    current_set_number = 1
    if results:
        last = results[-1]
        if match_complete or not last.complete:
            current_set_number = last.set_number
        else:
            current_set_number = min(last.set_number + 1, rules.best_of)
    current_set_number = min(current_set_number, rules.best_of)

    return MatchState(
        sets=results,
        current_set_number=current_set_number,
        home_sets_won=home_sets_won,
        away_sets_won=away_sets_won,
        match_complete=match_complete,
        winner=winner,
        sets_to_win=sets_to_win,
    )


def validate_rules(rules: MatchRules) -> Optional[str]:
    """Return a description of what is wrong with ``rules``, or ``None``."""

    if rules.best_of < 1 or rules.best_of > 7:
        return "Best of must be between 1 and 7"
    if rules.best_of % 2 == 0:
        return "Best of must be an odd number"
    if rules.points_to_win < 1 or rules.final_set_points < 1:
        return "Points to win must be at least 1"
    if rules.win_by < 1:
        return "Win by must be at least 1"
    if rules.final_set_points > rules.points_to_win + 10:
        return "Final set points seem too high"
    return None
