"""Profile service layer with business logic."""

import time
from typing import Callable, Optional

import structlog

from core.exceptions import (
    AuthorizationError,
    InvalidAvatarError,
    ProfileNotFoundError,
    UsernameTakenError,
    ValidationError,
)
from domain.entities.profile import Profile
from domain.repositories.unit_of_work import IUnitOfWork
from infrastructure.storage.provider import IAvatarStorage

logger = structlog.get_logger()

ALLOWED_AVATAR_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}
MAX_AVATAR_BYTES = 5 * 1024 * 1024


class ProfileService:
    """Service layer for Profile business logic."""

    def __init__(
        self,
        uow_factory: Callable[[], IUnitOfWork],
        storage: Optional[IAvatarStorage] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._storage = storage

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        """Point lookup; None when the user has no profile row yet."""
        async with self._uow_factory() as uow:
            return await uow.profiles.get(user_id)

    async def get_by_id(self, user_id: str) -> Profile:
        """Get a profile or raise ProfileNotFoundError."""
        profile = await self.get_profile(user_id)
        if not profile:
            raise ProfileNotFoundError(user_id)
        return profile

    async def create_profile(self, profile: Profile) -> Profile:
        """Insert a profile for a freshly registered user."""
        username = profile.username.strip()
        if not username:
            raise ValidationError("Username must not be empty", {"field": "username"})

        async with self._uow_factory() as uow:
            existing = await uow.profiles.get_by_username(username)
            if existing and existing.id != profile.id:
                raise UsernameTakenError(username)

            created = await uow.profiles.create(profile.with_changes(username=username))
            await uow.commit()
            logger.info("profile_created", user_id=created.id, username=created.username)
            return created

    async def ensure_profile(self, profile: Profile) -> Profile:
        """Create the profile unless one already exists for the user."""
        existing = await self.get_profile(profile.id)
        if existing:
            return existing
        return await self.create_profile(profile)

    async def upsert_profile(self, profile: Profile) -> Profile:
        """Insert or overwrite a profile by user ID."""
        async with self._uow_factory() as uow:
            existing = await uow.profiles.get_by_username(profile.username)
            if existing and existing.id != profile.id:
                raise UsernameTakenError(profile.username)

            saved = await uow.profiles.upsert(profile)
            await uow.commit()
            return saved

    async def update_profile(
        self,
        actor_id: str,
        user_id: str,
        username: Optional[str] = None,
        full_name: Optional[str] = None,
        bio: Optional[str] = None,
        website: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Profile:
        """Edit a profile. Only the owner may edit it."""
        self._require_owner(actor_id, user_id)

        async with self._uow_factory() as uow:
            profile = await uow.profiles.get(user_id)
            if not profile:
                raise ProfileNotFoundError(user_id)

            changes: dict[str, object] = {}
            if username is not None:
                username = username.strip()
                if not username:
                    raise ValidationError("Username must not be empty", {"field": "username"})
                if username != profile.username:
                    existing = await uow.profiles.get_by_username(username)
                    if existing and existing.id != user_id:
                        raise UsernameTakenError(username)
                    changes["username"] = username
            if full_name is not None:
                changes["full_name"] = full_name
            if bio is not None:
                changes["bio"] = bio
            if website is not None:
                changes["website"] = website
            if location is not None:
                changes["location"] = location

            if not changes:
                return profile

            updated = await uow.profiles.update(profile.with_changes(**changes))
            await uow.commit()
            return updated

    async def update_avatar(
        self,
        actor_id: str,
        user_id: str,
        filename: str,
        content_type: str,
        data: bytes,
    ) -> Profile:
        """Upload a new avatar and point the profile at it.

        The previous avatar object is removed afterwards on a best-effort
        basis.
        """
        self._require_owner(actor_id, user_id)
        storage = self._require_storage()

        if content_type not in ALLOWED_AVATAR_TYPES:
            raise InvalidAvatarError("Please upload a valid image file (JPEG, PNG, or WebP)")
        if len(data) > MAX_AVATAR_BYTES:
            raise InvalidAvatarError("File size must be less than 5MB")

        profile = await self.get_by_id(user_id)

        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        ext = ext or ALLOWED_AVATAR_TYPES[content_type]
        path = f"{user_id}-{int(time.time() * 1000)}.{ext}"
        url = await storage.upload(path, data, content_type)

        async with self._uow_factory() as uow:
            updated = await uow.profiles.update(profile.with_changes(avatar_url=url))
            await uow.commit()

        if profile.avatar_url:
            await self._delete_avatar_object(storage, profile.avatar_url)
        return updated

    async def remove_avatar(self, actor_id: str, user_id: str) -> Profile:
        """Clear the avatar and delete the stored image."""
        self._require_owner(actor_id, user_id)
        profile = await self.get_by_id(user_id)
        if not profile.avatar_url:
            return profile

        async with self._uow_factory() as uow:
            updated = await uow.profiles.update(profile.with_changes(avatar_url=None))
            await uow.commit()

        if self._storage:
            await self._delete_avatar_object(self._storage, profile.avatar_url)
        return updated

    async def _delete_avatar_object(self, storage: IAvatarStorage, url: str) -> None:
        path = storage.path_from_url(url)
        if not path:
            return
        if not await storage.remove(path):
            logger.warning("old_avatar_not_removed", path=path)

    def _require_owner(self, actor_id: str, user_id: str) -> None:
        if actor_id != user_id:
            raise AuthorizationError("You can only modify your own profile")

    def _require_storage(self) -> IAvatarStorage:
        if self._storage is None:
            raise RuntimeError("Avatar storage is not configured")
        return self._storage
