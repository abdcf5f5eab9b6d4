"""Internal application services."""

from .audit import record_audit
from .match_lifecycle import (
    ALLOWED_TRANSITIONS,
    ExternalOutcome,
    NewMatch,
    cancel_match,
    create_match,
    end_match,
    update_match,
)
from .auto_live import AutoLiveResult, poll_auto_live
from .scoreboard import ACTIONS as SCORE_ACTIONS, apply_action, get_score_snapshot
from .youtube import BroadcastProvider, BroadcastProviderError, get_broadcast_provider

__all__ = [
    "record_audit",
    "ALLOWED_TRANSITIONS",
    "ExternalOutcome",
    "NewMatch",
    "cancel_match",
    "create_match",
    "end_match",
    "update_match",
    "AutoLiveResult",
    "poll_auto_live",
    "SCORE_ACTIONS",
    "apply_action",
    "get_score_snapshot",
    "BroadcastProvider",
    "BroadcastProviderError",
    "get_broadcast_provider",
]
