"""Profile repository protocol."""

from typing import Protocol

from domain.entities.profile import Profile


class IProfileRepository(Protocol):
    """Repository interface for Profile entities."""

    async def get(self, id: str) -> Profile | None:
        """Get a profile by user ID."""
        ...

    async def get_by_username(self, username: str) -> Profile | None:
        """Get a profile by its unique username."""
        ...

    async def create(self, profile: Profile) -> Profile:
        """Insert a new profile."""
        ...

    async def upsert(self, profile: Profile) -> Profile:
        """Insert a profile, or overwrite the one with the same ID."""
        ...

    async def update(self, profile: Profile) -> Profile:
        """Update an existing profile."""
        ...
