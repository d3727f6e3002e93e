"""Storage service exceptions.

Absence of an object is not an exception: ``get_buffer``/``get_info``
return ``None`` and ``delete`` returns ``False``.
"""
from enum import Enum
from typing import Optional


class ErrorClassification(str, Enum):
    """How a caller may react to a failed provider call."""
    AUTH = "auth"
    NETWORK = "network"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


class StorageError(Exception):
    """Base storage exception."""

    default_classification = ErrorClassification.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        code: Optional[str] = None,
        classification: Optional[ErrorClassification] = None,
        suggestions: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.code = code
        self.classification = classification or self.default_classification
        # Admin-facing hints; never part of a public response body
        self.suggestions = list(suggestions or [])

    @property
    def retryable(self) -> bool:
        return self.classification in (
            ErrorClassification.NETWORK,
            ErrorClassification.RATE_LIMITED,
        )

    def to_public_dict(self) -> dict:
        """Client-safe fields only."""
        return {"provider": self.provider, "classification": self.classification.value}

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.code:
            parts.append(f"code={self.code}")
        return " | ".join(parts)


class PermissionDeniedError(StorageError):
    """Credentials rejected, expired or lacking permissions."""
    default_classification = ErrorClassification.AUTH


class TransientError(StorageError):
    """Transient error (timeout, connection failure, server error)."""
    default_classification = ErrorClassification.NETWORK


class RateLimitedError(StorageError):
    """Provider-side throttling."""
    default_classification = ErrorClassification.RATE_LIMITED


class ConfigurationError(StorageError):
    """Storage configuration error (fatal to that provider only)."""


class ValidationError(StorageError):
    """Unsafe or malformed storage key."""
