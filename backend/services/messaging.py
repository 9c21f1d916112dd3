"""
Conversation and messaging coordination.

There is exactly one conversation per unordered pair of accounts. The pair
is stored with the smaller id in ``user1_id``, and every lookup normalizes
the pair first instead of trusting the caller's order.

Hiding is per account and non-destructive: a row in
``hidden_conversations`` drops the conversation from that account's inbox
only. New activity clears it again. Read state is tracked per message and
only means something to the recipient, so every read-state write is a
conditional update that can be repeated safely.
"""
from typing import Iterable, Optional

import structlog
from supabase import Client

from core.config import settings
from core.db import execute, fetch_count, fetch_one, fetch_rows, utcnow_iso
from core.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    TransientIOError,
    ValidationError,
)
from models.profile import unknown_profile
from services.friendships import is_blocked
from services.profiles import get_profiles
from services.realtime import broker

logger = structlog.get_logger(__name__)


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def participants(conversation: dict) -> tuple[str, str]:
    return conversation["user1_id"], conversation["user2_id"]


def other_participant(conversation: dict, user_id: str) -> str:
    user1, user2 = participants(conversation)
    return user2 if user_id == user1 else user1


def get_conversation(client: Client, conversation_id: str) -> dict:
    row = fetch_one(
        client.table("conversations").select("*").eq("id", conversation_id).limit(1),
        "load conversation",
    )
    if row is None:
        raise NotFoundError("Conversation not found")
    return row


def get_participant_conversation(client: Client, conversation_id: str, user_id: str) -> dict:
    conversation = get_conversation(client, conversation_id)
    if user_id not in participants(conversation):
        raise AuthorizationError("You are not part of this conversation")
    return conversation


def find_conversation(client: Client, user_a: str, user_b: str) -> Optional[dict]:
    low, high = canonical_pair(user_a, user_b)
    return fetch_one(
        client.table("conversations").select("*")
        .eq("user1_id", low).eq("user2_id", high).limit(1),
        "load conversation",
    )


def unhide(client: Client, conversation_id: str, user_ids: Iterable[str]) -> None:
    """Put the conversation back into the given accounts' inboxes."""
    ids = sorted(set(user_ids))
    removed = fetch_rows(
        client.table("hidden_conversations").delete()
        .eq("conversation_id", conversation_id)
        .in_("user_id", ids),
        "restore conversation",
    )
    if removed:
        restored = [row["user_id"] for row in removed]
        logger.info("Conversation restored", conversation_id=conversation_id, user_ids=restored)
        broker.publish("conversations", restored, "UPDATE")


def get_or_create_conversation(
    client: Client,
    user_id: str,
    other_user_id: str,
    trade_request_id: Optional[str] = None,
    unhide_for: Optional[Iterable[str]] = None,
) -> dict:
    """
    Return the conversation between two accounts, creating it on first contact.

    The calling account re-engages by calling this, so its hide marker is
    cleared. ``unhide_for`` overrides which accounts get the conversation
    back (trade acceptance resurfaces it for both).

    Raises:
        ValidationError: both ids are the same account.
        AuthorizationError: one account has blocked the other.
    """
    if user_id == other_user_id:
        raise ValidationError("You cannot start a conversation with yourself")
    if is_blocked(client, user_id, other_user_id):
        raise AuthorizationError("You cannot message this user")

    conversation = find_conversation(client, user_id, other_user_id)
    if conversation is None:
        low, high = canonical_pair(user_id, other_user_id)
        now = utcnow_iso()
        try:
            conversation = fetch_one(
                client.table("conversations").insert({
                    "user1_id": low,
                    "user2_id": high,
                    "trade_request_id": trade_request_id,
                    "created_at": now,
                    "last_message_at": now,
                }),
                "start conversation",
            )
        except StateConflictError:
            # Both sides created it at once; the unique pair index kept one row
            conversation = find_conversation(client, user_id, other_user_id)
        if conversation is None:
            raise TransientIOError("Could not start conversation. Please try again.")

        logger.info(
            "Conversation created",
            conversation_id=conversation["id"],
            trade_request_id=trade_request_id,
        )
        broker.publish("conversations", participants(conversation), "INSERT")

    unhide(client, conversation["id"], unhide_for if unhide_for is not None else [user_id])
    return conversation


def validate_content(text: Optional[str]) -> str:
    content = (text or "").strip()
    if not content:
        raise ValidationError("Message cannot be empty")
    if len(content) > settings.message_max_length:
        raise ValidationError(
            f"Message is too long (maximum {settings.message_max_length} characters)"
        )
    return content


def send_message(client: Client, conversation_id: str, sender_id: str, text: str) -> dict:
    """
    Append a message and bump the conversation's activity time.

    A new message resurfaces the conversation for both participants.

    Raises:
        AuthorizationError: the sender is not a participant, or one
            participant has blocked the other.
    """
    content = validate_content(text)
    conversation = get_participant_conversation(client, conversation_id, sender_id)
    if is_blocked(client, *participants(conversation)):
        raise AuthorizationError("You cannot message this user")

    message = fetch_one(
        client.table("messages").insert({
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "is_read": False,
            "created_at": utcnow_iso(),
        }),
        "send message",
    )
    if message is None:
        raise TransientIOError("Could not send message. Please try again.")

    execute(
        client.table("conversations")
        .update({"last_message_at": message.get("created_at") or utcnow_iso()})
        .eq("id", conversation_id),
        "update conversation",
    )
    unhide(client, conversation_id, participants(conversation))

    broker.publish("messages", participants(conversation), "INSERT")
    return message


def list_messages(client: Client, conversation_id: str, viewer_id: str) -> list[dict]:
    """Messages oldest first, for a participant."""
    get_participant_conversation(client, conversation_id, viewer_id)
    return fetch_rows(
        client.table("messages").select("*")
        .eq("conversation_id", conversation_id)
        .order("created_at"),
        "load messages",
    )


def mark_read(client: Client, conversation_id: str, viewer_id: str) -> int:
    """
    Mark every message the viewer received in this conversation as read.

    Idempotent: only unread messages from the other participant are touched,
    so repeating the call changes nothing.

    Returns:
        Number of messages flipped by this call.
    """
    conversation = get_participant_conversation(client, conversation_id, viewer_id)
    updated = fetch_rows(
        client.table("messages")
        .update({"is_read": True})
        .eq("conversation_id", conversation_id)
        .eq("is_read", False)
        .neq("sender_id", viewer_id),
        "mark messages as read",
    )
    if updated:
        broker.publish("messages", participants(conversation), "UPDATE")
    return len(updated)


def _unread_count(client: Client, conversation_id: str, viewer_id: str) -> int:
    return fetch_count(
        client.table("messages")
        .select("id", count="exact")
        .eq("conversation_id", conversation_id)
        .eq("is_read", False)
        .neq("sender_id", viewer_id),
        "count unread messages",
    )


def unread_count(client: Client, conversation_id: str, viewer_id: str) -> int:
    """Messages from the other participant the viewer has not read yet."""
    get_participant_conversation(client, conversation_id, viewer_id)
    return _unread_count(client, conversation_id, viewer_id)


def hide(client: Client, conversation_id: str, user_id: str) -> None:
    """Drop the conversation from ``user_id``'s inbox. Messages are kept."""
    get_participant_conversation(client, conversation_id, user_id)
    execute(
        client.table("hidden_conversations").upsert(
            {
                "conversation_id": conversation_id,
                "user_id": user_id,
                "created_at": utcnow_iso(),
            },
            on_conflict="conversation_id,user_id",
            ignore_duplicates=True,
        ),
        "hide conversation",
    )
    logger.info("Conversation hidden", conversation_id=conversation_id, user_id=user_id)
    broker.publish("conversations", [user_id], "UPDATE")


def _activity_key(conversation: dict) -> str:
    return conversation.get("last_message_at") or conversation.get("created_at") or ""


def list_conversations(client: Client, user_id: str) -> list[dict]:
    """
    Inbox for ``user_id``: visible conversations, most recent activity first.

    Each row carries ``other_user`` (profile, or an "Unknown User"
    placeholder), ``last_message`` and ``unread_count``.
    """
    conversations: dict[str, dict] = {}
    for column in ("user1_id", "user2_id"):
        for row in fetch_rows(
            client.table("conversations").select("*").eq(column, user_id),
            "load conversations",
        ):
            conversations[row["id"]] = row
    hidden = {
        row["conversation_id"]
        for row in fetch_rows(
            client.table("hidden_conversations").select("conversation_id").eq("user_id", user_id),
            "load hidden conversations",
        )
    }
    visible = [c for c in conversations.values() if c["id"] not in hidden]

    profiles = get_profiles(client, (other_participant(c, user_id) for c in visible))

    inbox = []
    for conversation in visible:
        other_id = other_participant(conversation, user_id)
        last_message = fetch_one(
            client.table("messages").select("*")
            .eq("conversation_id", conversation["id"])
            .order("created_at", desc=True)
            .limit(1),
            "load last message",
        )
        inbox.append({
            **conversation,
            "other_user": profiles.get(other_id) or unknown_profile(other_id).model_dump(),
            "last_message": last_message,
            "unread_count": _unread_count(client, conversation["id"], user_id),
        })

    inbox.sort(key=_activity_key, reverse=True)
    return inbox
