"""Scoring engines."""

from . import volleyball

__all__ = [
    "volleyball",
]
