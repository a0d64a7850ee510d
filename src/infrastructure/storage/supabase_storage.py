"""Supabase Storage implementation for avatars."""

from urllib.parse import urlparse

import httpx
import structlog
from supabase import AsyncClient, StorageException

from core.config import settings
from core.exceptions import BackendUnavailableError

logger = structlog.get_logger()


class SupabaseAvatarStorage:
    """Stores avatars in a public Supabase Storage bucket.

    Shares the caller's SDK client, so bucket policies see the signed-in
    user's token.
    """

    def __init__(self, client: AsyncClient, bucket: str = settings.avatar_bucket) -> None:
        self._client = client
        self._bucket = bucket

    def path_from_url(self, public_url: str) -> str | None:
        """Last path segment of a public URL is the object name."""
        name = urlparse(public_url).path.rsplit("/", 1)[-1]
        return name or None

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Upload a new object; existing objects are never overwritten."""
        bucket = self._client.storage.from_(self._bucket)
        try:
            await bucket.upload(
                path,
                data,
                {"content-type": content_type, "cache-control": "3600", "upsert": "false"},
            )
            public_url = await bucket.get_public_url(path)
        except (StorageException, httpx.HTTPError) as e:
            logger.warning("avatar_upload_failed", path=path, error=str(e))
            raise BackendUnavailableError("storage", "Avatar upload failed") from e

        logger.info("avatar_uploaded", path=path, size=len(data))
        return public_url

    async def remove(self, path: str) -> bool:
        """Delete an object from the bucket."""
        try:
            await self._client.storage.from_(self._bucket).remove([path])
        except (StorageException, httpx.HTTPError) as e:
            logger.warning("avatar_delete_failed", path=path, error=str(e))
            return False
        return True
