"""Account Directory access: the calling account, profile lookups and profile edits."""
from typing import Iterable, Optional

import structlog
from supabase import Client

from core.db import fetch_one, fetch_rows, utcnow_iso
from core.errors import AuthenticationError, NotFoundError, StateConflictError, TransientIOError
from services.realtime import broker

logger = structlog.get_logger(__name__)


def resolve_account(client: Client, access_token: str) -> dict:
    """
    Resolve a Supabase access token to the account behind it.

    Raises:
        AuthenticationError: the token is invalid or expired.
    """
    try:
        response = client.auth.get_user(access_token)
    except Exception as exc:  # gotrue raises its own AuthApiError family
        logger.warning("Access token rejected", error=str(exc))
        raise AuthenticationError("Your session has expired. Please log in again.") from exc

    user = getattr(response, "user", None)
    if user is None:
        raise AuthenticationError("Your session has expired. Please log in again.")
    return {"id": user.id, "email": user.email, "phone": user.phone}


def get_profile(client: Client, user_id: str) -> Optional[dict]:
    return fetch_one(
        client.table("profiles").select("*").eq("id", user_id).limit(1),
        "load profile",
    )


def get_own_profile(client: Client, user_id: str) -> dict:
    profile = get_profile(client, user_id)
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


def get_profiles(client: Client, user_ids: Iterable[str]) -> dict[str, dict]:
    """Profiles keyed by account id; missing accounts are simply absent."""
    ids = sorted(set(user_ids))
    if not ids:
        return {}
    rows = fetch_rows(
        client.table("profiles").select("*").in_("id", ids),
        "load profiles",
    )
    return {row["id"]: row for row in rows}


def _save_profile(client: Client, user_id: str, changes: dict, action: str) -> dict:
    row = fetch_one(
        client.table("profiles").upsert(
            {"id": user_id, **changes, "updated_at": utcnow_iso()},
            on_conflict="id",
        ),
        action,
    )
    if row is None:
        raise TransientIOError(f"Could not {action}. Please try again.")
    broker.publish("profiles", [user_id], "UPDATE")
    return row


def update_profile(client: Client, user_id: str, changes: dict) -> dict:
    """
    Save username, full name and avatar for ``user_id``.

    Usernames are stored lower-cased so uniqueness matches how search
    compares them.

    Raises:
        StateConflictError: the username belongs to someone else.
    """
    if not changes:
        return get_own_profile(client, user_id)
    if changes.get("username"):
        changes = {**changes, "username": changes["username"].strip().lower()}

    try:
        profile = _save_profile(client, user_id, changes, "update profile")
    except StateConflictError as exc:
        raise StateConflictError("That username is already taken") from exc

    logger.info("Profile updated", user_id=user_id, fields=sorted(changes))
    return profile


def set_location(
    client: Client,
    user_id: str,
    latitude: float,
    longitude: float,
    location_name: Optional[str] = None,
) -> dict:
    """Store the caller's position for distance filtering in the feed."""
    profile = _save_profile(
        client,
        user_id,
        {
            "latitude": latitude,
            "longitude": longitude,
            "location_name": location_name,
            "location_updated_at": utcnow_iso(),
        },
        "save location",
    )
    logger.info("Location updated", user_id=user_id)
    return profile
