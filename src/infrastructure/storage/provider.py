"""Blob storage protocol for user-uploaded images."""

from typing import Protocol


class IAvatarStorage(Protocol):
    """Protocol for the avatar image bucket."""

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """
        Store an object and return its public URL.

        Raises:
            BackendUnavailableError: If the storage service fails
        """
        ...

    async def remove(self, path: str) -> bool:
        """Delete an object; returns False if the backend refused."""
        ...

    def path_from_url(self, public_url: str) -> str | None:
        """Recover the object path from a URL returned by ``upload``."""
        ...
