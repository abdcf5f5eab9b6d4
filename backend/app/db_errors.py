"""Helpers for working with database/SQLAlchemy errors."""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

_UNIQUE_VIOLATION_SQLSTATES = {"23505"}
_MISSING_TABLE_SQLSTATES = {"42P01"}


def is_unique_violation(exc: SQLAlchemyError, column_identifier: str | None = None) -> bool:
    """Return ``True`` if ``exc`` is a unique-constraint violation.

    Parameters
    ----------
    exc:
        The SQLAlchemy exception to inspect.
    column_identifier:
        Optional substring (such as ``"idempotency_key"``) that must appear in
        the original driver message. PostgreSQL names the constraint and
        SQLite names ``table.column``, so a column name matches both.
    """

    orig = getattr(exc, "orig", None)
    if orig is None:
        return False

    message = str(orig).lower()
    if column_identifier and column_identifier.lower() not in message:
        return False

    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _UNIQUE_VIOLATION_SQLSTATES:
        return True

    return "unique constraint" in message or "duplicate key" in message


def is_missing_table_error(exc: SQLAlchemyError, table_name: str) -> bool:
    """Return ``True`` if ``exc`` indicates that ``table_name`` is missing."""

    orig = getattr(exc, "orig", None)
    if orig is None:
        return False

    sqlstate = getattr(orig, "sqlstate", None)
    if sqlstate in _MISSING_TABLE_SQLSTATES:
        return True

    message = str(orig).lower()
    if table_name.lower() not in message:
        return False

    return "no such table" in message or "does not exist" in message
