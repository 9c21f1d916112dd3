"""
Trade request lifecycle.

A trade request offers one of the requester's items for one of the target
account's items. Only the target answers. Accepting takes both items off the
market straight away (status ``traded``), since nothing later confirms the
hand-off, and opens the conversation between the two accounts with a
confirmation message from the accepting side.

``completed`` exists in the schema but no operation moves a request there.
"""
from typing import Optional

import structlog
from supabase import Client

from core.db import fetch_one, fetch_rows
from core.errors import (
    AuthorizationError,
    BarterError,
    InvalidRequestError,
    NotFoundError,
    StateConflictError,
    TradeFollowUpError,
)
from models.trade import TradeRequestStatus
from services import items as catalog
from services import messaging
from services.profiles import get_profiles
from services.requests import BilateralRequestMachine

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = [TradeRequestStatus.PENDING.value, TradeRequestStatus.ACCEPTED.value]


def confirmation_text(requester_item: dict, target_item: dict) -> str:
    return (
        f"Trade accepted! {requester_item['title']} will be exchanged for "
        f"{target_item['title']}. Use this chat to arrange the swap."
    )


def _trade_items(client: Client, request: dict) -> tuple[Optional[dict], Optional[dict]]:
    found = catalog.get_items(client, [request["requester_item_id"], request["target_item_id"]])
    return found.get(request["requester_item_id"]), found.get(request["target_item_id"])


def _ensure_items_available(client: Client, request: dict, decision: str) -> None:
    """Refuse to accept when either item has since been taken down, deleted or traded."""
    if decision != TradeRequestStatus.ACCEPTED.value:
        return
    for item in _trade_items(client, request):
        if item is None or item.get("deleted_at") or not item.get("is_available"):
            raise StateConflictError("One of the items in this trade is no longer available")


def _finalize_acceptance(client: Client, request: dict, skip_existing_confirmation: bool = False) -> str:
    """
    Reserve both items and open the conversation with a confirmation message.

    Every step can be repeated: items are re-marked, the conversation is
    looked up before it is created, and with ``skip_existing_confirmation``
    the message is only posted if it is not there yet.

    Returns:
        The conversation id.
    """
    requester_id = request["requester_id"]
    target_id = request["target_user_id"]

    catalog.mark_traded(client, [request["requester_item_id"], request["target_item_id"]])

    conversation = messaging.get_or_create_conversation(
        client,
        target_id,
        requester_id,
        trade_request_id=request["id"],
        unhide_for=[requester_id, target_id],
    )

    requester_item, target_item = _trade_items(client, request)
    text = confirmation_text(
        requester_item or {"title": "their item"},
        target_item or {"title": "your item"},
    )

    if skip_existing_confirmation:
        already_posted = fetch_one(
            client.table("messages").select("id")
            .eq("conversation_id", conversation["id"])
            .eq("sender_id", target_id)
            .eq("content", text)
            .limit(1),
            "check trade confirmation",
        )
        if already_posted:
            return conversation["id"]

    messaging.send_message(client, conversation["id"], target_id, text)
    return conversation["id"]


def _after_response(client: Client, request: dict, decision: str) -> Optional[str]:
    if decision != TradeRequestStatus.ACCEPTED.value:
        return None
    try:
        return _finalize_acceptance(client, request)
    except BarterError as exc:
        logger.error(
            "Trade accepted but follow-up failed",
            request_id=request["id"],
            error=exc.detail,
        )
        raise TradeFollowUpError(request["id"]) from exc


TRADE_TRANSITIONS = {
    TradeRequestStatus.PENDING.value: frozenset({
        TradeRequestStatus.ACCEPTED.value,
        TradeRequestStatus.DECLINED.value,
    }),
}

trade_machine = BilateralRequestMachine(
    "trade_requests",
    requester_field="requester_id",
    responder_field="target_user_id",
    transitions=TRADE_TRANSITIONS,
    label="trade request",
    guard=_ensure_items_available,
    on_transition=_after_response,
)


def create_request(
    client: Client,
    requester_id: str,
    requester_item_id: str,
    target_user_id: str,
    target_item_id: str,
) -> dict:
    """
    Propose a trade.

    Raises:
        InvalidRequestError: trading with yourself, offering an item you do
            not own or that is not available, or asking for an item the
            target does not own or that is not available.
        NotFoundError: either item does not exist.
        StateConflictError: you already have an active request for that item.
    """
    if requester_id == target_user_id:
        raise InvalidRequestError("You cannot trade with yourself")

    offered = catalog.get_item(client, requester_item_id)
    if offered["user_id"] != requester_id:
        raise InvalidRequestError("You can only offer your own items")
    if not offered.get("is_available"):
        raise InvalidRequestError("The item you are offering is not available")

    wanted = catalog.get_item(client, target_item_id)
    if wanted["user_id"] != target_user_id:
        raise InvalidRequestError("That item does not belong to this user")
    if not wanted.get("is_available"):
        raise InvalidRequestError("The item you want is no longer available")

    duplicate = fetch_one(
        client.table("trade_requests").select("id")
        .eq("requester_id", requester_id)
        .eq("target_item_id", target_item_id)
        .in_("status", ACTIVE_STATUSES)
        .limit(1),
        "check existing trade requests",
    )
    if duplicate:
        raise StateConflictError("You already have an active trade request for this item")

    return trade_machine.insert(client, {
        "requester_id": requester_id,
        "requester_item_id": requester_item_id,
        "target_user_id": target_user_id,
        "target_item_id": target_item_id,
    })


def respond(client: Client, request_id: str, responder_id: str, decision: str) -> tuple[dict, Optional[str]]:
    """
    Accept or decline a pending trade request as its target.

    Returns:
        The updated request and, on acceptance, the conversation id.

    Raises:
        TradeFollowUpError: the request is accepted but reserving the items
            or opening the conversation failed; retry with
            :func:`complete_acceptance`.
    """
    return trade_machine.respond(client, request_id, responder_id, decision)


def complete_acceptance(client: Client, request_id: str, actor_id: str) -> tuple[dict, str]:
    """Re-run the follow-ups of an accepted trade after a partial failure."""
    request = trade_machine.fetch(client, request_id)
    if actor_id not in trade_machine.participants(request):
        raise AuthorizationError("You are not part of this trade")
    if request["status"] != TradeRequestStatus.ACCEPTED.value:
        raise StateConflictError(f"This trade request is {request['status']}, not accepted")

    try:
        conversation_id = _finalize_acceptance(client, request, skip_existing_confirmation=True)
    except BarterError as exc:
        logger.error("Trade follow-up retry failed", request_id=request_id, error=exc.detail)
        raise TradeFollowUpError(request_id) from exc
    return request, conversation_id


def get_request(client: Client, request_id: str, viewer_id: str) -> dict:
    request = trade_machine.fetch(client, request_id)
    if viewer_id not in trade_machine.participants(request):
        raise NotFoundError("Trade request not found")
    return request


def list_requests(
    client: Client,
    user_id: str,
    direction: str,
    status: Optional[str] = None,
) -> list[dict]:
    """Incoming or outgoing trade requests, newest first, with items and the other party."""
    own_field, other_field = (
        ("target_user_id", "requester_id") if direction == "incoming"
        else ("requester_id", "target_user_id")
    )
    query = client.table("trade_requests").select("*").eq(own_field, user_id)
    if status:
        query = query.eq("status", status)
    rows = fetch_rows(query.order("created_at", desc=True), "load trade requests")

    item_ids = [row["requester_item_id"] for row in rows] + [row["target_item_id"] for row in rows]
    found_items = catalog.get_items(client, item_ids)
    profiles = get_profiles(client, (row[other_field] for row in rows))

    return [
        {
            **row,
            "requester_item": found_items.get(row["requester_item_id"]),
            "target_item": found_items.get(row["target_item_id"]),
            "counterpart": profiles.get(row[other_field]),
        }
        for row in rows
    ]
