"""Profile domain entity."""

from dataclasses import dataclass, fields, replace
from datetime import datetime

from domain.entities.session import AuthIdentity

# Fields a user may edit on their own profile
EDITABLE_FIELDS = ("username", "full_name", "avatar_url", "bio", "website", "location")


@dataclass(frozen=True)
class Profile:
    """Application-level user record, keyed by the auth user id."""

    id: str
    username: str
    full_name: str = ""
    avatar_url: str | None = None
    bio: str | None = None
    website: str | None = None
    location: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def placeholder(cls, identity: AuthIdentity) -> "Profile":
        """Synthesize a profile from identity-claim metadata.

        Used whenever the stored profile is missing or slow to load.
        """
        metadata = identity.user_metadata
        email = identity.email or ""
        username = metadata.get("username") or email.split("@", 1)[0]
        if not username:
            username = f"user_{identity.id[:8]}"
        return cls(
            id=identity.id,
            username=username,
            full_name=metadata.get("full_name") or email,
            avatar_url=metadata.get("avatar_url") or None,
        )

    def merged_over(self, fallback: "Profile") -> "Profile":
        """Return a copy where empty fields are filled from ``fallback``."""
        filled = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == "":
                filled[f.name] = getattr(fallback, f.name)
        return replace(self, **filled)

    def with_changes(self, **changes: object) -> "Profile":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)
