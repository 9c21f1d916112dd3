# backend/models/item.py
from datetime import datetime
from enum import Enum
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional

from core.config import settings
from models.profile import ProfileResponse


# ============== Enums ==============

class ItemCondition(str, Enum):
    NEW = "New"
    LIKE_NEW = "Like New"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


class ItemStatus(str, Enum):
    """Listing states. TRADED always implies the item is unavailable."""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    TRADED = "traded"


# ============== Base Schemas ==============

class ItemBase(BaseModel):
    """Base schema for a tradeable listing."""
    title: str = Field(min_length=1, max_length=120)
    description: str = Field(default="", max_length=2000)
    condition: ItemCondition
    estimated_value: float = Field(default=0, ge=0, description="Estimated value in USD")
    image_urls: list[str] = Field(default=[], max_length=settings.max_item_images)


# ============== Create Schemas ==============

class ItemCreate(ItemBase):
    """Schema for listing a new item. The owner is the calling account."""
    pass


# ============== Update Schemas ==============

class ItemUpdate(BaseModel):
    """Schema for editing listing details."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=2000)
    condition: Optional[ItemCondition] = None
    estimated_value: Optional[float] = Field(default=None, ge=0)
    image_urls: Optional[list[str]] = Field(default=None, max_length=settings.max_item_images)


class ItemAvailabilityUpdate(BaseModel):
    """Take an item down (False) or repost it (True)."""
    is_available: bool


# ============== Response Schemas ==============

class ItemResponse(ItemBase):
    """Full listing response."""
    id: UUID
    user_id: str
    is_available: bool = True
    status: ItemStatus = ItemStatus.AVAILABLE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class FeedItemResponse(ItemResponse):
    """Discovery candidate with its owner and, when known, the distance to them."""
    owner: Optional[ProfileResponse] = None
    distance_km: Optional[float] = None


class FeedResponse(BaseModel):
    """A page of discovery candidates.

    On a backend read failure ``items`` is empty, ``retryable`` is set and
    ``error`` carries a notice for the client to show next to a retry control.
    """
    items: list[FeedItemResponse] = []
    retryable: bool = False
    error: Optional[str] = None


# ============== Valuation Schemas ==============

class ValuationRequest(BaseModel):
    title: str = Field(min_length=1, max_length=120)
    description: str = Field(default="", max_length=2000)
    condition: ItemCondition


class ValuationResponse(BaseModel):
    estimated_value: float
    method: str = "keyword"
