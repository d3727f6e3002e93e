"""Infrastructure adapter that implements the application MediaStoragePort
by delegating to the StorageManager and translating models and errors.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from application.ports.storage import MediaStoragePort, ObjectMetadata
from domain.common.exceptions import (
    InvalidMediaPathException,
    StorageAccessException,
    StorageProviderUnavailableException,
    UnknownStorageProviderException,
)
from infrastructure.external.storage import (
    ConfigurationError,
    StorageError,
    StorageManager,
    StorageType,
    ValidationError,
)


@contextmanager
def _translate(provider: str, key: Optional[str] = None) -> Iterator[None]:
    try:
        StorageType.parse(provider)
    except ValueError as e:
        raise UnknownStorageProviderException(provider) from e
    try:
        yield
    except ConfigurationError as e:
        raise StorageProviderUnavailableException(provider, e.message) from e
    except ValidationError as e:
        raise InvalidMediaPathException(f"{provider}/{key or ''}", e.message) from e
    except StorageError as e:
        raise StorageAccessException(
            provider,
            e.classification.value,
            provider_code=e.code,
            suggestions=e.suggestions,
        ) from e


class StorageManagerPortAdapter(MediaStoragePort):
    def __init__(self, manager: StorageManager):
        self.manager = manager

    def is_known_provider(self, provider: str) -> bool:
        try:
            StorageType.parse(provider)
        except ValueError:
            return False
        return True

    async def get_buffer(self, provider: str, key: str) -> Optional[bytes]:
        with _translate(provider, key):
            return await self.manager.get_buffer(provider, key)

    async def get_info(self, provider: str, key: str) -> Optional[ObjectMetadata]:
        with _translate(provider, key):
            info = await self.manager.get_info(provider, key)
        if info is None:
            return None
        return ObjectMetadata(
            size=info.size,
            content_type=info.content_type,
            etag=info.etag,
            last_modified=info.last_modified,
        )

    async def put_buffer(
        self,
        provider: str,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        with _translate(provider, key):
            return await self.manager.put_buffer(provider, key, data, content_type)

    async def delete(self, provider: str, key: str) -> bool:
        with _translate(provider, key):
            return await self.manager.delete(provider, key)
