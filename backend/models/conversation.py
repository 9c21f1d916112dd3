# backend/models/conversation.py
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional

from models.profile import ProfileResponse


# ============== Create Schemas ==============

class ConversationCreate(BaseModel):
    """Open (or resurface) the conversation with another account."""
    other_user_id: str


class MessageCreate(BaseModel):
    # Length rules are applied after trimming, in the messaging service
    content: str


# ============== Response Schemas ==============

class ConversationResponse(BaseModel):
    """A one-to-one conversation. ``user1_id`` is always the smaller id."""
    id: UUID
    user1_id: str
    user2_id: str
    last_message_at: Optional[datetime] = None
    trade_request_id: Optional[UUID] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: str
    content: str
    is_read: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ConversationSummary(ConversationResponse):
    """Inbox row: conversation plus the other participant, last message and unread count."""
    other_user: ProfileResponse
    last_message: Optional[MessageResponse] = None
    unread_count: int = Field(default=0, ge=0)


class ConversationListResponse(BaseModel):
    """Inbox for the calling account, most recent activity first."""
    conversations: list[ConversationSummary] = []
    retryable: bool = False
    error: Optional[str] = None


class MarkReadResponse(BaseModel):
    conversation_id: UUID
    updated: int = Field(description="Messages flipped to read by this call")


class UnreadCountResponse(BaseModel):
    conversation_id: UUID
    unread_count: int


class HideResponse(BaseModel):
    conversation_id: UUID
    hidden: bool = True
