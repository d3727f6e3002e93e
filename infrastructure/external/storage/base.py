"""Storage provider protocol definitions."""
from typing import Optional, Protocol, runtime_checkable

from .config import StorageType
from .models import ObjectInfo


@runtime_checkable
class StorageProvider(Protocol):
    """Core storage provider protocol for duck typing.

    Absence is reported by value (``None`` / ``False``); every other
    failure raises a ``StorageError`` subclass.
    """

    storage_type: StorageType

    async def get_buffer(self, key: str) -> Optional[bytes]:
        """Read a whole object, ``None`` when it does not exist."""
        ...

    async def get_info(self, key: str) -> Optional[ObjectInfo]:
        """Object metadata, ``None`` when it does not exist."""
        ...

    async def put_buffer(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """Create or overwrite an object; returns the canonical key."""
        ...

    async def delete(self, key: str) -> bool:
        """Delete an object; ``False`` when it was already absent."""
        ...

    async def validate_connection(self) -> bool:
        """Check credentials and reachability with a cheap call."""
        ...

    async def aclose(self) -> None:
        """Release network clients held by the provider."""
        ...
