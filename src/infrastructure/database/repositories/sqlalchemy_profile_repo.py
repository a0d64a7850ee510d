"""SQLAlchemy implementation of Profile repository."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.entities.profile import EDITABLE_FIELDS, Profile
from infrastructure.database.models import ProfileModel


class SQLAlchemyProfileRepository:
    """SQLAlchemy implementation of IProfileRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, id: str) -> Profile | None:
        """Get a profile by user ID."""
        stmt = select(ProfileModel).where(ProfileModel.id == id)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_username(self, username: str) -> Profile | None:
        """Get a profile by username."""
        stmt = select(ProfileModel).where(ProfileModel.username == username)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create(self, profile: Profile) -> Profile:
        """Insert a new profile."""
        model = ProfileModel(
            id=profile.id,
            **{name: getattr(profile, name) for name in EDITABLE_FIELDS},
        )
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return self._to_entity(model)

    async def upsert(self, profile: Profile) -> Profile:
        """Insert or overwrite the editable fields of a profile."""
        model = await self._session.get(ProfileModel, profile.id)
        if model is None:
            return await self.create(profile)
        return await self._apply(model, profile)

    async def update(self, profile: Profile) -> Profile:
        """Update an existing profile."""
        model = await self._session.get(ProfileModel, profile.id)
        if model is None:
            raise ValueError(f"Profile {profile.id} not found")
        return await self._apply(model, profile)

    async def _apply(self, model: ProfileModel, profile: Profile) -> Profile:
        for name in EDITABLE_FIELDS:
            setattr(model, name, getattr(profile, name))
        model.updated_at = datetime.utcnow()
        await self._session.flush()
        await self._session.refresh(model)
        return self._to_entity(model)

    def _to_entity(self, model: ProfileModel) -> Profile:
        """Convert ORM model to domain entity."""
        return Profile(
            id=str(model.id),
            username=model.username,
            full_name=model.full_name or "",
            avatar_url=model.avatar_url,
            bio=model.bio,
            website=model.website,
            location=model.location,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
