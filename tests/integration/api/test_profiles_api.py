"""Integration tests for the profile API."""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from infrastructure.database.models import ProfileModel
from tests.conftest import TEST_USER_ID, FakeAvatarStorage

OTHER_USER_ID = "9b2e4d6f-1a3c-4e5f-8a7b-0c1d2e3f4a5b"


@pytest.fixture
async def other_profile(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        session.add(ProfileModel(id=OTHER_USER_ID, username="gordon", full_name="Gordon R"))
        await session.commit()


class TestMyProfile:
    @pytest.mark.asyncio
    async def test_requires_sign_in(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/profiles/me")

        assert response.status_code == 401
        assert response.json()["error_code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_get_my_profile(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.get("/api/v1/profiles/me")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["id"] == TEST_USER_ID
        assert data["username"] == "julia"

    @pytest.mark.asyncio
    async def test_update_is_reflected_in_session(
        self, authenticated_client: AsyncClient
    ) -> None:
        response = await authenticated_client.patch(
            "/api/v1/profiles/me",
            json={"bio": "  Cream enthusiast  ", "location": "Paris"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["bio"] == "Cream enthusiast"
        assert data["location"] == "Paris"

        state = (await authenticated_client.get("/api/v1/auth/state")).json()
        assert state["user"]["profile"]["bio"] == "Cream enthusiast"

    @pytest.mark.asyncio
    async def test_update_rejects_taken_username(
        self, authenticated_client: AsyncClient, other_profile: None
    ) -> None:
        response = await authenticated_client.patch(
            "/api/v1/profiles/me", json={"username": "gordon"}
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "USERNAME_TAKEN"

    @pytest.mark.asyncio
    async def test_update_rejects_bad_website(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.patch(
            "/api/v1/profiles/me", json={"website": "not a url"}
        )

        assert response.status_code == 422


class TestAvatar:
    @pytest.mark.asyncio
    async def test_upload_and_remove(
        self, authenticated_client: AsyncClient, avatar_storage: FakeAvatarStorage
    ) -> None:
        response = await authenticated_client.put(
            "/api/v1/profiles/me/avatar",
            files={"file": ("me.png", b"\x89PNG", "image/png")},
        )

        assert response.status_code == 200
        avatar_url = response.json()["data"]["avatar_url"]
        assert avatar_url.startswith(FakeAvatarStorage.BASE_URL)
        assert len(avatar_storage.objects) == 1

        state = (await authenticated_client.get("/api/v1/auth/state")).json()
        assert state["user"]["profile"]["avatar_url"] == avatar_url

        removed = await authenticated_client.delete("/api/v1/profiles/me/avatar")

        assert removed.status_code == 200
        assert removed.json()["data"]["avatar_url"] is None
        assert avatar_storage.objects == {}

    @pytest.mark.asyncio
    async def test_rejects_unsupported_type(self, authenticated_client: AsyncClient) -> None:
        response = await authenticated_client.put(
            "/api/v1/profiles/me/avatar",
            files={"file": ("me.gif", b"GIF89a", "image/gif")},
        )

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AVATAR"


class TestPublicProfile:
    @pytest.mark.asyncio
    async def test_get_other_profile(
        self, client: AsyncClient, other_profile: None
    ) -> None:
        response = await client.get(f"/api/v1/profiles/{OTHER_USER_ID}")

        assert response.status_code == 200
        assert response.json()["data"]["username"] == "gordon"

    @pytest.mark.asyncio
    async def test_unknown_profile(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/v1/profiles/{OTHER_USER_ID}")

        assert response.status_code == 404
        assert response.json()["error_code"] == "PROFILE_NOT_FOUND"
