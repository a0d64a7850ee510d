"""Pydantic schemas for Profile API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from domain.entities.profile import Profile


class ProfileUpdate(BaseModel):
    """Schema for editing one's own profile."""

    username: str | None = Field(None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    full_name: str | None = Field(None, max_length=255)
    bio: str | None = Field(None, max_length=500)
    website: HttpUrl | None = None
    location: str | None = Field(None, max_length=255)

    @field_validator("full_name", "bio", "location")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        return v.strip() if v is not None else v


class ProfileResponse(BaseModel):
    """Schema for Profile response."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174000",
                "username": "julia",
                "full_name": "Julia Child",
                "avatar_url": None,
                "bio": "Butter enthusiast",
                "website": None,
                "location": "Paris",
                "created_at": "2026-01-28T10:00:00",
                "updated_at": "2026-01-28T10:00:00",
            }
        },
    )

    id: str
    username: str
    full_name: str
    avatar_url: str | None = None
    bio: str | None = None
    website: str | None = None
    location: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_entity(cls, profile: Profile) -> "ProfileResponse":
        return cls.model_validate(profile)


class ProfileDetailResponse(BaseModel):
    """Single profile wrapper."""

    data: ProfileResponse
