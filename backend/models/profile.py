# backend/models/profile.py
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


# ============== Update Schemas ==============

class ProfileUpdate(BaseModel):
    """Editable profile fields. Omitted fields are left as they are."""
    username: Optional[str] = Field(default=None, min_length=3, max_length=30, pattern=r"^[A-Za-z0-9_.]+$")
    full_name: Optional[str] = Field(default=None, max_length=100)
    avatar_url: Optional[str] = None


class LocationUpdate(BaseModel):
    """Device position used for distance filtering in the feed."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    location_name: Optional[str] = Field(default=None, max_length=120)


# ============== Response Schemas ==============

class ProfileResponse(BaseModel):
    """Public profile of an account."""
    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class OwnProfileResponse(ProfileResponse):
    """The caller's own profile, including the saved position."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_name: Optional[str] = None
    location_updated_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AccountResponse(BaseModel):
    """The authenticated account making the request."""
    id: str
    email: Optional[str] = None
    phone: Optional[str] = None


def unknown_profile(user_id: str) -> ProfileResponse:
    """Placeholder for a counterpart whose profile row is missing."""
    return ProfileResponse(id=user_id, full_name="Unknown User")
