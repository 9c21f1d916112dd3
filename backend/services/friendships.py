"""
Friend requests and user search.

Friendships run on the shared bilateral request machine with no side effects:
``pending`` moves to ``accepted``, ``declined`` or ``blocked``, answered by
the addressee only.
"""
import structlog
from supabase import Client

from core.config import settings
from core.db import fetch_rows
from core.errors import AlreadyConnectedError, NotFoundError, ValidationError
from models.friendship import FriendshipStatus
from services.profiles import get_profile, get_profiles
from services.requests import BilateralRequestMachine

logger = structlog.get_logger(__name__)

FRIENDSHIP_TRANSITIONS = {
    FriendshipStatus.PENDING.value: frozenset({
        FriendshipStatus.ACCEPTED.value,
        FriendshipStatus.DECLINED.value,
        FriendshipStatus.BLOCKED.value,
    }),
}

friendship_machine = BilateralRequestMachine(
    "friendships",
    requester_field="requester_id",
    responder_field="addressee_id",
    transitions=FRIENDSHIP_TRANSITIONS,
    label="friend request",
)


def find_between(client: Client, user_a: str, user_b: str) -> list[dict]:
    """All friendship rows between two accounts, in either direction."""
    forward = fetch_rows(
        client.table("friendships").select("*")
        .eq("requester_id", user_a).eq("addressee_id", user_b),
        "check existing connection",
    )
    backward = fetch_rows(
        client.table("friendships").select("*")
        .eq("requester_id", user_b).eq("addressee_id", user_a),
        "check existing connection",
    )
    return forward + backward


def is_blocked(client: Client, user_a: str, user_b: str) -> bool:
    return any(
        row["status"] == FriendshipStatus.BLOCKED.value
        for row in find_between(client, user_a, user_b)
    )


def connected_ids(client: Client, user_id: str) -> set[str]:
    """Accounts with any non-declined friendship with ``user_id``."""
    outgoing = fetch_rows(
        client.table("friendships").select("addressee_id, status").eq("requester_id", user_id),
        "load connections",
    )
    incoming = fetch_rows(
        client.table("friendships").select("requester_id, status").eq("addressee_id", user_id),
        "load connections",
    )
    ids = {
        row["addressee_id"] for row in outgoing
        if row["status"] != FriendshipStatus.DECLINED.value
    }
    ids.update(
        row["requester_id"] for row in incoming
        if row["status"] != FriendshipStatus.DECLINED.value
    )
    return ids


def create_request(client: Client, requester_id: str, addressee_id: str) -> dict:
    """
    Send a friend request.

    Raises:
        ValidationError: requester and addressee are the same account.
        NotFoundError: the addressee has no profile.
        AlreadyConnectedError: a pending, accepted or blocked friendship
            already exists in either direction.
    """
    if requester_id == addressee_id:
        raise ValidationError("You cannot send a friend request to yourself")

    if get_profile(client, addressee_id) is None:
        raise NotFoundError("User not found")

    existing = [
        row for row in find_between(client, requester_id, addressee_id)
        if row["status"] != FriendshipStatus.DECLINED.value
    ]
    if existing:
        raise AlreadyConnectedError("You already have a connection with this user")

    return friendship_machine.insert(client, {
        "requester_id": requester_id,
        "addressee_id": addressee_id,
    })


def respond(client: Client, friendship_id: str, responder_id: str, decision: str) -> dict:
    row, _ = friendship_machine.respond(client, friendship_id, responder_id, decision)
    return row


def list_requests(client: Client, user_id: str, direction: str) -> list[dict]:
    """Pending friend requests sent to (incoming) or by (outgoing) ``user_id``."""
    own_field, other_field = (
        ("addressee_id", "requester_id") if direction == "incoming"
        else ("requester_id", "addressee_id")
    )
    rows = fetch_rows(
        client.table("friendships").select("*")
        .eq(own_field, user_id)
        .eq("status", FriendshipStatus.PENDING.value)
        .order("created_at", desc=True),
        "load friend requests",
    )
    profiles = get_profiles(client, (row[other_field] for row in rows))
    return [{**row, "counterpart": profiles.get(row[other_field])} for row in rows]


def search_users(client: Client, viewer_id: str, query: str) -> list[dict]:
    """
    Find people to connect with by username.

    Case-insensitive partial match; the viewer and anyone already connected
    (pending, accepted or blocked in either direction) are left out. Exact
    username matches come first.
    """
    term = (query or "").strip().lower()
    if not term:
        return []

    # Escape LIKE wildcards typed by the user
    pattern = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    excluded = connected_ids(client, viewer_id) | {viewer_id}
    rows = fetch_rows(
        client.table("profiles").select("*")
        .ilike("username", f"%{pattern}%")
        .neq("id", viewer_id)
        .limit(settings.user_search_limit + len(excluded)),
        "search users",
    )

    results = [row for row in rows if row["id"] not in excluded]
    results.sort(key=lambda row: (row.get("username") or "").lower() != term)
    return results[:settings.user_search_limit]
