# backend/models/friendship.py
from datetime import datetime
from enum import Enum
from uuid import UUID
from pydantic import BaseModel, ConfigDict
from typing import Optional

from models.profile import ProfileResponse


class FriendshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    BLOCKED = "blocked"


class FriendshipDecision(str, Enum):
    """Answers the addressee can give to a pending friend request."""
    ACCEPTED = "accepted"
    DECLINED = "declined"
    BLOCKED = "blocked"


class FriendshipCreate(BaseModel):
    addressee_id: str


class FriendshipRespond(BaseModel):
    decision: FriendshipDecision


class FriendshipResponse(BaseModel):
    id: UUID
    requester_id: str
    addressee_id: str
    status: FriendshipStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class FriendshipWithProfile(FriendshipResponse):
    """Friend request with the profile of the other party."""
    counterpart: Optional[ProfileResponse] = None
