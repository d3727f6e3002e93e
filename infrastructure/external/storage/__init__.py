"""Storage service entry point: config assembly and manager construction."""
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from core.config import Settings, StorageSettings
from core.logging_config import get_logger
from .base import StorageProvider
from .config import (
    GoogleDriveOptions,
    LocalOptions,
    S3Options,
    StorageConfig,
    StorageType,
)
from .credentials import AccessToken, CredentialStore, GoogleTokenManager
from .exceptions import (
    ConfigurationError,
    ErrorClassification,
    PermissionDeniedError,
    RateLimitedError,
    StorageError,
    TransientError,
    ValidationError,
)
from .factory import create_provider
from .manager import StorageManager
from .models import ObjectInfo

logger = get_logger(__name__)

_SECTIONS = {
    StorageType.LOCAL: "local",
    StorageType.S3: "s3",
    StorageType.GOOGLE_DRIVE: "google_drive",
}


def get_storage_configs(
    storage: StorageSettings,
) -> tuple[dict[StorageType, StorageConfig], dict[StorageType, str]]:
    """Assemble one StorageConfig per enabled section of the settings.

    Returns:
        ``(configs, errors)``: enabled sections that failed validation are
        reported in ``errors`` instead of failing startup, so one broken
        provider does not take the others down.
    """
    configs: dict[StorageType, StorageConfig] = {}
    errors: dict[StorageType, str] = {}

    for kind, section_name in _SECTIONS.items():
        section = getattr(storage, section_name)
        if not section.enabled:
            continue
        payload: dict[str, Any] = section.model_dump(exclude={"enabled"})
        try:
            configs[kind] = StorageConfig(
                type=kind,
                name=section_name,
                enabled=True,
                connect_timeout=storage.connect_timeout,
                read_timeout=storage.read_timeout,
                **{section_name: payload},
            )
        except PydanticValidationError as e:
            reason = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            errors[kind] = reason
            logger.error("storage_config_invalid", provider=kind.value, reason=reason)

    return configs, errors


def build_storage_manager(settings: Settings) -> StorageManager:
    """Create the application's StorageManager (one per app instance)."""
    configs, errors = get_storage_configs(settings.storage)
    credentials = CredentialStore(configs, errors)
    logger.info(
        "storage_manager_initialized",
        providers=[kind.value for kind in configs],
        invalid=[kind.value for kind in errors],
    )
    return StorageManager(credentials, validate_on_build=settings.storage.validate_on_build)


__all__ = [
    # Lifecycle
    "build_storage_manager",
    "get_storage_configs",
    "StorageManager",
    "CredentialStore",
    "GoogleTokenManager",
    "AccessToken",
    "create_provider",

    # Configuration
    "StorageConfig",
    "StorageType",
    "LocalOptions",
    "S3Options",
    "GoogleDriveOptions",

    # Base types
    "StorageProvider",
    "ObjectInfo",

    # Exceptions
    "StorageError",
    "ErrorClassification",
    "PermissionDeniedError",
    "TransientError",
    "RateLimitedError",
    "ConfigurationError",
    "ValidationError",
]
