"""Storage backend interface."""

from abc import ABC, abstractmethod


class StorageBackend(ABC):
    """Byte store addressed by relative paths.

    Implementations raise StorageWriteError from put(), ArtifactNotFound
    from get() when nothing is stored at the path, and StorageReadError for
    any other read failure.
    """

    @abstractmethod
    async def put(self, path: str, data: bytes) -> None:
        """Store data at path, replacing any previous content."""

    @abstractmethod
    async def get(self, path: str) -> bytes:
        """Return the bytes stored at path."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Whether something is stored at path."""

    async def close(self) -> None:
        """Release network resources held by the backend."""
        return None
