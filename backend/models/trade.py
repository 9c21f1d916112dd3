# backend/models/trade.py
from datetime import datetime
from enum import Enum
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional

from models.item import ItemResponse
from models.profile import ProfileResponse


# ============== Enums ==============

class TradeRequestStatus(str, Enum):
    """Trade request lifecycle states."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"  # Modelled only; nothing transitions here yet


class TradeDecision(str, Enum):
    """Answers the target account can give to a pending request."""
    ACCEPTED = "accepted"
    DECLINED = "declined"


class RequestDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


# ============== Create Schemas ==============

class TradeRequestCreate(BaseModel):
    """Schema for proposing one of your items in exchange for someone else's."""
    requester_item_id: UUID = Field(description="Item the requester offers")
    target_user_id: str = Field(description="Owner of the wanted item")
    target_item_id: UUID = Field(description="Item the requester wants")


# ============== Action Schemas ==============

class TradeRespond(BaseModel):
    decision: TradeDecision


# ============== Response Schemas ==============

class TradeRequestResponse(BaseModel):
    """Full trade request response."""
    id: UUID
    requester_id: str
    requester_item_id: UUID
    target_user_id: str
    target_item_id: UUID
    status: TradeRequestStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TradeRequestWithDetails(TradeRequestResponse):
    """Trade request with both items and the other party's profile."""
    requester_item: Optional[ItemResponse] = None
    target_item: Optional[ItemResponse] = None
    counterpart: Optional[ProfileResponse] = None


class TradeRespondResponse(BaseModel):
    """Outcome of answering a trade request.

    ``conversation_id`` is set when acceptance opened (or resurfaced) the
    conversation between the two accounts.
    """
    request: TradeRequestResponse
    conversation_id: Optional[UUID] = None
