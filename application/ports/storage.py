"""Application-owned storage port abstraction (hexagonal architecture).

Defines the minimal methods the media use cases need so that the
application layer does not depend on provider SDKs or their exceptions.
Keys are addressed by ``(provider, key)``; the provider is the identifier
found in a serve path or a photo record (``local``, ``s3``, ``wasabi``, ...).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable


@dataclass
class ObjectMetadata:
    size: int
    content_type: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None


@runtime_checkable
class MediaStoragePort(Protocol):
    """Raises domain exceptions only (see ``domain.common.exceptions``)."""

    def is_known_provider(self, provider: str) -> bool: ...

    async def get_buffer(self, provider: str, key: str) -> Optional[bytes]: ...

    async def get_info(self, provider: str, key: str) -> Optional[ObjectMetadata]: ...

    async def put_buffer(
        self,
        provider: str,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str: ...

    async def delete(self, provider: str, key: str) -> bool: ...
