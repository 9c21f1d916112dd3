"""
Supabase access helpers.

Every query the services run goes through :func:`execute` so that PostgREST
and transport failures surface as the domain errors in ``core.errors``
instead of leaking client-library exceptions into the routes.
"""
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import Client, create_client

from core.config import settings
from core.errors import (
    AuthorizationError,
    StateConflictError,
    TransientIOError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# Postgres / PostgREST error codes with a domain meaning
UNIQUE_VIOLATION = "23505"
INSUFFICIENT_PRIVILEGE = "42501"
CHECK_VIOLATION = "23514"
INVALID_TEXT_REPRESENTATION = "22P02"


def create_supabase_client() -> Client:
    """Create the Supabase client from settings."""
    return create_client(settings.supabase_url, settings.supabase_key)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def execute(query: Any, action: str):
    """
    Execute a PostgREST query builder, translating failures.

    Args:
        query: A supabase/postgrest request builder.
        action: Short description used in logs and error details.

    Returns:
        The API response (``.data`` and ``.count``).

    Raises:
        StateConflictError: unique constraint violated.
        AuthorizationError: rejected by a row-level policy.
        ValidationError: rejected by a check constraint or malformed value.
        TransientIOError: any other backend or network failure.
    """
    try:
        return query.execute()
    except APIError as exc:
        code = getattr(exc, "code", None)
        if code == UNIQUE_VIOLATION:
            raise StateConflictError(f"Conflicting record while trying to {action}") from exc
        if code == INSUFFICIENT_PRIVILEGE:
            raise AuthorizationError(f"Not permitted to {action}") from exc
        if code in (CHECK_VIOLATION, INVALID_TEXT_REPRESENTATION):
            raise ValidationError(f"Invalid data while trying to {action}") from exc
        logger.error("Supabase request failed", action=action, code=code, error=str(exc))
        raise TransientIOError(f"Could not {action}. Please try again.") from exc
    except httpx.HTTPError as exc:
        logger.error("Supabase unreachable", action=action, error=str(exc))
        raise TransientIOError(f"Could not {action}. Please try again.") from exc


def fetch_rows(query: Any, action: str) -> list[dict]:
    """Execute a query and return its rows (never None)."""
    return execute(query, action).data or []


def fetch_one(query: Any, action: str) -> Optional[dict]:
    """Execute a query and return the first row, if any."""
    data = fetch_rows(query, action)
    return data[0] if data else None


def fetch_count(query: Any, action: str) -> int:
    """Execute a ``count="exact"`` query and return the row count."""
    result = execute(query, action)
    if result.count is not None:
        return result.count
    return len(result.data or [])
