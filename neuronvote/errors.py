"""Error types and helpers for the voting agent."""

from __future__ import annotations

import json
import re
from typing import Any

import click


class SchemaNotInitializedError(click.ClickException):
    """Raised when the database schema/migrations have not been applied."""


class GovernanceError(RuntimeError):
    """Raised when the governance network rejects or fails a request."""

    def __init__(self, message: str, *, code: int | str | None = None, detail: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.detail = detail


class ReasoningServiceError(RuntimeError):
    """Raised when the reasoning service cannot be reached or errors out."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        message = str(e)
        match = _PG_MISSING_RELATION_RE.search(message) or _SQLITE_MISSING_TABLE_RE.search(message)
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table / missing-schema error."""
    name = missing_table_name(exc)
    if name:
        return True

    # Fallback for drivers that don't format errors consistently.
    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
        if "does not exist" in message and "relation" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""

    lines: list[str] = [
        f"Database schema is not initialized{table_hint}.",
        "Run: `alembic upgrade head`",
        "Or for a local SQLite store: `neuronvote init-db`",
    ]
    return "\n".join(lines)


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return repr(value)


def describe_vote_error(exc: BaseException) -> tuple[str, str]:
    """Build the (message, detail) pair stored on a failed scheduled vote.

    The detail is a JSON document with the exception type plus whatever the
    governance client attached (status code, response body).
    """
    message = str(exc) or exc.__class__.__name__
    details: dict[str, Any] = {"type": exc.__class__.__name__}

    if isinstance(exc, GovernanceError):
        if exc.code is not None:
            details["code"] = exc.code
        if exc.detail is not None:
            details["detail"] = _json_safe(exc.detail)

    if exc.args:
        details["args"] = [_json_safe(a) for a in exc.args]

    return message, json.dumps(details, indent=2, sort_keys=True)


def error_text(exc: BaseException) -> str:
    """Flatten an exception and its governance detail into one searchable string."""
    parts = [str(exc)]
    if isinstance(exc, GovernanceError) and exc.detail is not None:
        detail = exc.detail
        if isinstance(detail, dict):
            parts.append(str(detail.get("error_message") or detail))
        else:
            parts.append(str(detail))
    return " ".join(p for p in parts if p)
