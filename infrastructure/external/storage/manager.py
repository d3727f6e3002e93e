"""Per-kind provider registry with lazy, lock-guarded construction."""
import asyncio
from collections import defaultdict
from typing import Mapping, Optional, Union

from core.logging_config import get_logger
from .base import StorageProvider
from .config import StorageType
from .credentials import CredentialStore
from .exceptions import ConfigurationError
from .factory import ProviderBuilder, create_provider
from .models import ObjectInfo

logger = get_logger(__name__)

Kind = Union[StorageType, str]


class StorageManager:
    """Builds each provider once from the current credential snapshot.

    A cached provider is rebuilt when the store's version for its kind has
    moved on, so credential changes take effect without a restart.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        builders: Optional[Mapping[StorageType, ProviderBuilder]] = None,
        validate_on_build: bool = False,
    ):
        self.credentials = credentials
        self._builders = dict(builders or {})
        self._validate_on_build = validate_on_build
        self._providers: dict[StorageType, tuple[int, StorageProvider]] = {}
        self._locks: defaultdict[StorageType, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.build_count = 0

    async def get_provider(self, kind: Kind) -> StorageProvider:
        """Cached provider for ``kind``.

        Raises:
            ValueError: unknown provider identifier
            ConfigurationError: provider missing, disabled or misconfigured
        """
        kind = StorageType.parse(kind)
        version = self.credentials.version(kind)

        cached = self._providers.get(kind)
        if cached is not None and cached[0] == version:
            return cached[1]

        async with self._locks[kind]:
            version = self.credentials.version(kind)
            cached = self._providers.get(kind)
            if cached is not None and cached[0] == version:
                return cached[1]

            config = self.credentials.get_config(kind)
            if config.type != kind:
                raise ConfigurationError(
                    f"Config type '{config.type.value}' does not match '{kind.value}'",
                    provider=kind.value,
                )

            provider = await create_provider(
                config,
                self.credentials,
                builders=self._builders,
                validate=self._validate_on_build,
            )
            self.build_count += 1
            self._providers[kind] = (version, provider)

        if cached is not None:
            logger.info("storage_provider_rebuilt", provider=kind.value, version=version)
            await self._close(kind, cached[1])
        return provider

    async def get_buffer(self, kind: Kind, key: str) -> Optional[bytes]:
        provider = await self.get_provider(kind)
        return await provider.get_buffer(key)

    async def get_info(self, kind: Kind, key: str) -> Optional[ObjectInfo]:
        provider = await self.get_provider(kind)
        return await provider.get_info(key)

    async def put_buffer(
        self,
        kind: Kind,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        provider = await self.get_provider(kind)
        return await provider.put_buffer(key, data, content_type)

    async def delete(self, kind: Kind, key: str) -> bool:
        provider = await self.get_provider(kind)
        return await provider.delete(key)

    async def validate(self, kind: Kind) -> bool:
        """Connection test for admin tooling; never used on the serving path."""
        provider = await self.get_provider(kind)
        return await provider.validate_connection()

    async def invalidate(self, kind: Kind) -> bool:
        """Drop the cached provider; the next call rebuilds it."""
        kind = StorageType.parse(kind)
        async with self._locks[kind]:
            cached = self._providers.pop(kind, None)
        if cached is None:
            return False
        await self._close(kind, cached[1])
        logger.info("storage_provider_invalidated", provider=kind.value)
        return True

    async def invalidate_all(self) -> None:
        for kind in list(self._providers):
            await self.invalidate(kind)

    def active_providers(self) -> list[str]:
        return sorted(kind.value for kind in self._providers)

    async def aclose(self) -> None:
        """Close every cached provider (application shutdown)."""
        providers, self._providers = self._providers, {}
        for kind, (_, provider) in providers.items():
            await self._close(kind, provider)
        logger.info("storage_manager_closed", closed=len(providers))

    async def _close(self, kind: StorageType, provider: StorageProvider) -> None:
        try:
            await provider.aclose()
        except Exception as e:
            # Shutdown continues for the remaining providers
            logger.warning("storage_provider_close_failed", provider=kind.value, error=str(e))
