"""Storage provider factory."""
from typing import Awaitable, Callable, Mapping, Optional

from core.logging_config import get_logger
from .base import StorageProvider
from .config import StorageConfig, StorageType
from .credentials import CredentialStore
from .exceptions import ConfigurationError, StorageError

logger = get_logger(__name__)

# Provider builder type
ProviderBuilder = Callable[[StorageConfig], Awaitable[StorageProvider]]


async def create_provider(
    config: StorageConfig,
    credentials: Optional[CredentialStore] = None,
    builders: Optional[Mapping[StorageType, ProviderBuilder]] = None,
    validate: bool = False,
) -> StorageProvider:
    """Create storage provider instance based on config.

    Args:
        config: Validated config snapshot
        credentials: Store used to share Drive access tokens across rebuilds
        builders: Overrides per kind (tests, alternative backends)
        validate: Run ``validate_connection`` before returning

    Returns:
        Configured storage provider instance

    Raises:
        ConfigurationError: If the provider cannot be constructed
    """
    kind = config.type
    builder = (builders or {}).get(kind)

    try:
        if builder is not None:
            provider = await builder(config)
        else:
            provider = await _build_builtin(config, credentials)
    except StorageError:
        raise
    except Exception as e:
        logger.error("storage_provider_build_failed", provider=kind.value, error=str(e))
        raise ConfigurationError(
            f"Failed to create storage provider '{kind.value}': {e}", provider=kind.value
        ) from e

    if validate:
        try:
            await provider.validate_connection()
        except StorageError:
            await provider.aclose()
            raise

    logger.info("storage_provider_created", provider=kind.value, name=config.name)
    return provider


async def _build_builtin(
    config: StorageConfig,
    credentials: Optional[CredentialStore],
) -> StorageProvider:
    # Imports are deferred so an unused backend's SDK is never loaded
    match config.type:
        case StorageType.LOCAL:
            from .providers.local import build_local_provider
            return await build_local_provider(config)
        case StorageType.S3:
            from .providers.s3 import build_s3_provider
            return await build_s3_provider(config)
        case StorageType.GOOGLE_DRIVE:
            from .providers.google_drive import build_google_drive_provider
            if credentials is None:
                return await build_google_drive_provider(config)
            return await build_google_drive_provider(
                config,
                initial_token=credentials.cached_access_token(StorageType.GOOGLE_DRIVE),
                on_token=lambda token: credentials.record_access_token(StorageType.GOOGLE_DRIVE, token),
            )
    raise ConfigurationError(f"Unsupported storage type: {config.type}")
