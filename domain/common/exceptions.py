"""Domain/application business exceptions.

The core layer only maps these to HTTP; nothing here depends on core or on
a concrete storage backend.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """Base business exception"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class InvalidMediaPathException(BusinessException):
    def __init__(self, path: str, reason: str = "Expected {provider}/{key}"):
        super().__init__(
            code=BusinessCode.PARAM_ERROR,
            message=f"Invalid path format. {reason}",
            error_type="InvalidMediaPath",
            details={"path": path},
            field="path",
        )
        self.path = path


class UnknownStorageProviderException(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=BusinessCode.PARAM_ERROR,
            message=f"Unknown storage provider: {provider}",
            error_type="UnknownStorageProvider",
            details={"provider": provider},
            field="provider",
        )
        self.provider = provider


class StorageProviderUnavailableException(BusinessException):
    """Provider disabled, missing or misconfigured."""

    def __init__(self, provider: str, reason: str):
        super().__init__(
            code=BusinessCode.STORAGE_CONFIG_ERROR,
            message=reason,
            error_type="StorageProviderUnavailable",
            details={"provider": provider},
        )
        self.provider = provider


_CLASSIFICATION_CODES = {
    "auth": BusinessCode.STORAGE_AUTH_ERROR,
    "network": BusinessCode.STORAGE_NETWORK_ERROR,
    "rate_limited": BusinessCode.STORAGE_RATE_LIMITED,
}


class StorageAccessException(BusinessException):
    """A provider call failed (credentials, network, throttling, ...).

    ``message`` is safe to return to clients; ``suggestions`` are admin-only.
    """

    def __init__(
        self,
        provider: str,
        classification: str,
        message: str = "Storage provider error",
        *,
        provider_code: Optional[str] = None,
        suggestions: Optional[list[str]] = None,
    ):
        details = {"provider": provider, "classification": classification}
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(
            code=_CLASSIFICATION_CODES.get(classification, BusinessCode.STORAGE_ERROR),
            message=message,
            error_type="StorageAccessError",
            details=details,
        )
        self.provider = provider
        self.classification = classification
        self.provider_code = provider_code
        self.suggestions = list(suggestions or [])
