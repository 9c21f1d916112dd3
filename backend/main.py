import asyncio
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
from supabase import Client

from core.config import settings
from core.db import create_supabase_client
from core.errors import AuthenticationError, AuthorizationError, BarterError, TransientIOError
from core.logging import setup_logging
from models.conversation import (
    ConversationCreate,
    ConversationListResponse,
    ConversationResponse,
    HideResponse,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
    UnreadCountResponse,
)
from models.friendship import (
    FriendshipCreate,
    FriendshipRespond,
    FriendshipResponse,
    FriendshipWithProfile,
)
from models.item import (
    FeedResponse,
    ItemAvailabilityUpdate,
    ItemCreate,
    ItemResponse,
    ItemUpdate,
    ValuationRequest,
    ValuationResponse,
)
from models.profile import (
    AccountResponse,
    LocationUpdate,
    OwnProfileResponse,
    ProfileResponse,
    ProfileUpdate,
)
from models.trade import (
    RequestDirection,
    TradeRequestCreate,
    TradeRequestResponse,
    TradeRequestStatus,
    TradeRequestWithDetails,
    TradeRespond,
    TradeRespondResponse,
)
from services import discovery, friendships, items, messaging, profiles, trades, valuation
from services.realtime import broker

setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title=settings.app_name)

# CORS for Expo
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Supabase client, created on first use
supabase: Optional[Client] = None


def get_supabase() -> Client:
    global supabase
    if supabase is None:
        supabase = create_supabase_client()
    return supabase


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _account_id(raw: str) -> str:
    """Canonical form of an account id taken from a header or query string."""
    try:
        return str(UUID(raw))
    except ValueError as exc:
        raise AuthenticationError("Invalid user id") from exc


def get_current_account(
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
) -> dict:
    """The calling account: a Supabase access token, or the X-User-Id header."""
    token = _bearer_token(authorization)
    if token:
        return profiles.resolve_account(get_supabase(), token)
    if x_user_id:
        return {"id": _account_id(x_user_id)}
    raise AuthenticationError("Please log in to continue")


def get_current_user_id(account: dict = Depends(get_current_account)) -> str:
    return account["id"]


@app.exception_handler(BarterError)
async def handle_barter_error(request: Request, exc: BarterError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
def read_root():
    return {"message": "Barter API"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


@app.get("/me", response_model=AccountResponse)
async def get_me(account: dict = Depends(get_current_account)):
    """The authenticated account."""
    return account


# ============== Profile Endpoints ==============

@app.get("/me/profile", response_model=OwnProfileResponse)
async def get_my_profile(
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    return profiles.get_own_profile(client, user_id)


@app.patch("/me/profile", response_model=OwnProfileResponse)
async def update_my_profile(
    body: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Update your username, full name or avatar."""
    return profiles.update_profile(client, user_id, body.model_dump(exclude_unset=True))


@app.put("/me/location", response_model=OwnProfileResponse)
async def update_my_location(
    body: LocationUpdate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Save your current position for distance filtering in the feed."""
    return profiles.set_location(client, user_id, body.latitude, body.longitude, body.location_name)


# ============== Item Endpoints ==============

@app.post("/items", response_model=ItemResponse, status_code=201)
async def create_item(
    item: ItemCreate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """List a new item for trade."""
    return items.create_item(client, user_id, item.model_dump(mode="json"))


@app.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(item_id: UUID, client: Client = Depends(get_supabase)):
    """Get a specific item by ID."""
    return items.get_item(client, str(item_id))


@app.get("/users/{user_id}/items", response_model=list[ItemResponse])
async def get_user_items(
    user_id: str,
    is_available: Optional[bool] = Query(None),
    client: Client = Depends(get_supabase),
):
    """Get a user's listings, optionally only available or taken-down ones."""
    return items.list_user_items(client, user_id, is_available)


@app.patch("/items/{item_id}", response_model=ItemResponse)
async def update_item(
    item_id: UUID,
    item: ItemUpdate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Update listing details."""
    patch = item.model_dump(mode="json", exclude_unset=True)
    return items.update_item(client, str(item_id), user_id, patch)


@app.post("/items/{item_id}/availability", response_model=ItemResponse)
async def set_item_availability(
    item_id: UUID,
    body: ItemAvailabilityUpdate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Take an item down or repost it."""
    return items.set_availability(client, str(item_id), user_id, body.is_available)


@app.delete("/items/{item_id}", status_code=204)
async def delete_item(
    item_id: UUID,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Delete a listing and release its images."""
    items.delete_item(client, str(item_id), user_id)
    return None


@app.post("/valuations/estimate", response_model=ValuationResponse)
async def estimate_item_value(body: ValuationRequest):
    """Suggest a value for a new listing."""
    return {"estimated_value": valuation.estimate_value(body.title, body.description, body.condition)}


# ============== Discovery Endpoints ==============

@app.get("/feed", response_model=FeedResponse)
async def get_feed(
    seen: list[str] = Query(default=[]),
    limit: Optional[int] = Query(None, ge=1),
    value_match: bool = Query(False),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0),
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Candidate items to swipe on, newest first."""
    try:
        feed = discovery.get_feed(
            client,
            user_id,
            seen_ids=seen,
            limit=limit,
            value_match=value_match,
            latitude=latitude,
            longitude=longitude,
            radius_km=radius_km,
        )
    except TransientIOError as exc:
        logger.warning("Feed unavailable", user_id=user_id, error=exc.detail)
        return {"items": [], "retryable": True, "error": "Failed to load potential matches"}
    return {"items": feed}


# ============== Trade Request Endpoints ==============

@app.post("/trade-requests", response_model=TradeRequestResponse, status_code=201)
async def create_trade_request(
    body: TradeRequestCreate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Offer one of your items for someone else's."""
    return trades.create_request(
        client,
        user_id,
        str(body.requester_item_id),
        body.target_user_id,
        str(body.target_item_id),
    )


@app.get("/trade-requests", response_model=list[TradeRequestWithDetails])
async def get_trade_requests(
    direction: RequestDirection = Query(RequestDirection.INCOMING),
    status: Optional[TradeRequestStatus] = Query(None),
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Trade requests sent to you (incoming) or by you (outgoing)."""
    return trades.list_requests(
        client,
        user_id,
        direction.value,
        status.value if status else None,
    )


@app.get("/trade-requests/{request_id}", response_model=TradeRequestResponse)
async def get_trade_request(
    request_id: UUID,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    return trades.get_request(client, str(request_id), user_id)


@app.post("/trade-requests/{request_id}/respond", response_model=TradeRespondResponse)
async def respond_to_trade_request(
    request_id: UUID,
    body: TradeRespond,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Accept or decline a trade request addressed to you."""
    request, conversation_id = trades.respond(client, str(request_id), user_id, body.decision.value)
    return {"request": request, "conversation_id": conversation_id}


@app.post("/trade-requests/{request_id}/complete-acceptance", response_model=TradeRespondResponse)
async def complete_trade_acceptance(
    request_id: UUID,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Retry the item and conversation steps of an accepted trade."""
    request, conversation_id = trades.complete_acceptance(client, str(request_id), user_id)
    return {"request": request, "conversation_id": conversation_id}


# ============== Friendship Endpoints ==============

@app.post("/friendships", response_model=FriendshipResponse, status_code=201)
async def create_friend_request(
    body: FriendshipCreate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Send a friend request."""
    return friendships.create_request(client, user_id, body.addressee_id)


@app.get("/friendships", response_model=list[FriendshipWithProfile])
async def get_friend_requests(
    direction: RequestDirection = Query(RequestDirection.INCOMING),
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Pending friend requests sent to you or by you."""
    return friendships.list_requests(client, user_id, direction.value)


@app.post("/friendships/{friendship_id}/respond", response_model=FriendshipResponse)
async def respond_to_friend_request(
    friendship_id: UUID,
    body: FriendshipRespond,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Accept, decline or block a friend request addressed to you."""
    return friendships.respond(client, str(friendship_id), user_id, body.decision.value)


@app.get("/users/search", response_model=list[ProfileResponse])
async def search_users(
    q: str = Query(..., min_length=1),
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Find people you are not connected with yet, by username."""
    return friendships.search_users(client, user_id, q)


# ============== Conversation Endpoints ==============

@app.post("/conversations", response_model=ConversationResponse)
async def open_conversation(
    body: ConversationCreate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Get (or start) your conversation with another user."""
    return messaging.get_or_create_conversation(client, user_id, body.other_user_id)


@app.get("/conversations", response_model=ConversationListResponse)
async def get_conversations(
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Your inbox, most recent activity first."""
    try:
        inbox = messaging.list_conversations(client, user_id)
    except TransientIOError as exc:
        logger.warning("Inbox unavailable", user_id=user_id, error=exc.detail)
        return {"conversations": [], "retryable": True, "error": "Failed to load conversations"}
    return {"conversations": inbox}


@app.get("/conversations/{conversation_id}/messages", response_model=list[MessageResponse])
async def get_messages(
    conversation_id: UUID,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    return messaging.list_messages(client, str(conversation_id), user_id)


@app.post("/conversations/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    conversation_id: UUID,
    body: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    return messaging.send_message(client, str(conversation_id), user_id, body.content)


@app.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_conversation_read(
    conversation_id: UUID,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Mark everything you received in this conversation as read."""
    updated = messaging.mark_read(client, str(conversation_id), user_id)
    return {"conversation_id": conversation_id, "updated": updated}


@app.get("/conversations/{conversation_id}/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    conversation_id: UUID,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    count = messaging.unread_count(client, str(conversation_id), user_id)
    return {"conversation_id": conversation_id, "unread_count": count}


@app.post("/conversations/{conversation_id}/hide", response_model=HideResponse)
async def hide_conversation(
    conversation_id: UUID,
    user_id: str = Depends(get_current_user_id),
    client: Client = Depends(get_supabase),
):
    """Remove a conversation from your inbox. The other person still sees it."""
    messaging.hide(client, str(conversation_id), user_id)
    return {"conversation_id": conversation_id, "hidden": True}


# ============== Realtime ==============

@app.websocket("/ws")
async def realtime_updates(
    websocket: WebSocket,
    user_id: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
):
    """
    Push refresh signals for the connected account.

    Each message is ``{"type": "refresh", "table": ..., "event": ...}``;
    clients re-fetch the matching view rather than patching local state.
    """
    try:
        if token:
            user_id = profiles.resolve_account(get_supabase(), token)["id"]
        elif user_id:
            user_id = _account_id(user_id)
    except AuthorizationError:
        user_id = None
    if not user_id:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    queue = broker.subscribe(user_id)
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                getter.cancel()
                break
            await websocket.send_json(getter.result())
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        broker.unsubscribe(user_id, queue)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Drain client frames until the socket closes."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
