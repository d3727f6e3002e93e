"""Provider credentials: config snapshots and the Google Drive token lifecycle."""
from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.logging_config import get_logger
from .config import GoogleDriveOptions, StorageConfig, StorageType
from .exceptions import ConfigurationError, PermissionDeniedError, TransientError

logger = get_logger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
DRIVE_SCOPES = {
    "appdata": "https://www.googleapis.com/auth/drive.appdata",
    "visible": "https://www.googleapis.com/auth/drive.file",
}
EXPIRY_MARGIN = timedelta(seconds=60)

_REAUTHORIZE_SUGGESTIONS = [
    "Re-authorize Google Drive from the storage admin page",
    "Check the OAuth client id and secret match the ones used to obtain the refresh token",
    "Refresh tokens issued to apps in 'Testing' publishing status expire after 7 days",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessToken:
    """Bearer token with an absolute expiry instant."""
    value: str
    expires_at: datetime

    def is_expired(self, margin: timedelta = EXPIRY_MARGIN) -> bool:
        return self.expires_at <= _utcnow() + margin

    @classmethod
    def from_response(cls, payload: dict[str, Any]) -> "AccessToken":
        """Raises KeyError, TypeError or ValueError on a malformed payload."""
        value = payload["access_token"]
        if not isinstance(value, str) or not value:
            raise ValueError("access_token must be a non-empty string")
        expires_in = int(payload.get("expires_in", 3600))
        return cls(value=value, expires_at=_utcnow() + timedelta(seconds=expires_in))


def _parse_token_response(response: httpx.Response) -> tuple[dict[str, Any], AccessToken]:
    try:
        payload = response.json()
        return payload, AccessToken.from_response(payload)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.error("drive_token_response_invalid", status=response.status_code, error=str(e))
        raise PermissionDeniedError(
            "Google token endpoint returned an unreadable token response",
            provider=StorageType.GOOGLE_DRIVE.value,
            code="invalid_token_response",
        ) from e


class GoogleTokenManager:
    """Owns the access token of one Drive client.

    ``get_token`` is single-flight: concurrent callers that find the token
    absent or expired wait on one lock and only the first performs the
    exchange. A failed refresh leaves the cached token untouched.
    """

    def __init__(
        self,
        options: GoogleDriveOptions,
        client: httpx.AsyncClient,
        initial: Optional[AccessToken] = None,
        on_refresh: Optional[Callable[[AccessToken], None]] = None,
    ):
        self.options = options
        self._client = client
        self._token = initial
        self._on_refresh = on_refresh
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def current(self) -> Optional[AccessToken]:
        return self._token

    async def get_token(self) -> str:
        token = self._token
        if token is not None and not token.is_expired():
            return token.value
        async with self._lock:
            token = self._token
            if token is not None and not token.is_expired():
                return token.value
            token = await self._refresh()
            self._token = token
            if self._on_refresh is not None:
                self._on_refresh(token)
            return token.value

    def invalidate(self, value: str) -> None:
        """Drop the cached token if it is still the one the server rejected."""
        if self._token is not None and self._token.value == value:
            self._token = None

    async def _refresh(self) -> AccessToken:
        if not self.options.refresh_token:
            raise PermissionDeniedError(
                "Google Drive is not authorized (missing refresh token)",
                provider=StorageType.GOOGLE_DRIVE.value,
                code="missing_refresh_token",
                suggestions=_REAUTHORIZE_SUGGESTIONS,
            )
        try:
            response = await self._client.post(
                self.options.token_uri,
                data={
                    "client_id": self.options.client_id,
                    "client_secret": self.options.client_secret,
                    "refresh_token": self.options.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.warning("drive_token_refresh_unreachable", error=str(e))
            raise TransientError(
                "Google token endpoint unreachable",
                provider=StorageType.GOOGLE_DRIVE.value,
            ) from e

        if response.status_code != 200:
            error = _oauth_error(response)
            logger.error("drive_token_refresh_failed", status=response.status_code, error=error)
            raise PermissionDeniedError(
                "Google Drive token refresh failed",
                provider=StorageType.GOOGLE_DRIVE.value,
                code=error,
                suggestions=_REAUTHORIZE_SUGGESTIONS if error in ("invalid_grant", "invalid_client", "unauthorized_client") else [],
            )

        _, token = _parse_token_response(response)
        self.refresh_count += 1
        logger.info("drive_token_refreshed", expires_at=token.expires_at.isoformat())
        return token


def _oauth_error(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"http_{response.status_code}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str):
            return error
        if isinstance(error, dict):
            return str(error.get("status") or error.get("message") or response.status_code)
    return f"http_{response.status_code}"


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    storage_type: str = "appdata",
    state: Optional[str] = None,
) -> str:
    """Consent URL that yields a refresh token (offline access, forced consent)."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": DRIVE_SCOPES.get(storage_type, DRIVE_SCOPES["appdata"]),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
    }
    if state:
        params["state"] = state
    return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"


async def exchange_code(
    options: GoogleDriveOptions,
    code: str,
    redirect_uri: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> tuple[str, AccessToken]:
    """Exchange an authorization code for ``(refresh_token, access_token)``."""
    redirect = redirect_uri or options.redirect_uri
    if not redirect:
        raise ConfigurationError(
            "redirect_uri is required for the authorization code exchange",
            provider=StorageType.GOOGLE_DRIVE.value,
        )

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=5.0))
    try:
        response = await http.post(
            options.token_uri,
            data={
                "code": code,
                "client_id": options.client_id,
                "client_secret": options.client_secret,
                "redirect_uri": redirect,
                "grant_type": "authorization_code",
            },
        )
    except (httpx.TimeoutException, httpx.TransportError) as e:
        raise TransientError(
            "Google token endpoint unreachable", provider=StorageType.GOOGLE_DRIVE.value
        ) from e
    finally:
        if owns_client:
            await http.aclose()

    if response.status_code != 200:
        error = _oauth_error(response)
        logger.error("drive_code_exchange_failed", status=response.status_code, error=error)
        raise PermissionDeniedError(
            "Authorization code exchange failed",
            provider=StorageType.GOOGLE_DRIVE.value,
            code=error,
            suggestions=["Authorization codes are single-use; start the consent flow again"],
        )

    payload, access_token = _parse_token_response(response)
    refresh_token = payload.get("refresh_token")
    if not refresh_token:
        raise PermissionDeniedError(
            "No refresh token returned",
            provider=StorageType.GOOGLE_DRIVE.value,
            code="missing_refresh_token",
            suggestions=[
                "Revoke the app's access in the Google account and authorize again",
                "The consent URL must use access_type=offline and prompt=consent",
            ],
        )
    logger.info("drive_code_exchanged")
    return refresh_token, access_token


class CredentialStore:
    """Per-kind storage configuration with versioning.

    Snapshots are deep copies so a provider never sees a config mutate
    under it; any change bumps the kind's version, which the manager uses
    to rebuild cached clients.
    """

    def __init__(
        self,
        configs: Optional[dict[StorageType, StorageConfig]] = None,
        errors: Optional[dict[StorageType, str]] = None,
    ):
        self._configs: dict[StorageType, StorageConfig] = dict(configs or {})
        self._errors: dict[StorageType, str] = dict(errors or {})
        self._versions: defaultdict[StorageType, int] = defaultdict(int)
        self._tokens: dict[StorageType, AccessToken] = {}

    def configured_kinds(self) -> list[StorageType]:
        return sorted(set(self._configs) | set(self._errors), key=lambda kind: kind.value)

    def has(self, kind: StorageType) -> bool:
        return kind in self._configs

    def version(self, kind: StorageType) -> int:
        return self._versions[kind]

    def describe(self, kind: StorageType) -> Optional[StorageConfig]:
        """Stored record (enabled or not) without validation; ``None`` if absent."""
        config = self._configs.get(kind)
        return config.model_copy(deep=True) if config is not None else None

    def error_for(self, kind: StorageType) -> Optional[str]:
        return self._errors.get(kind)

    def get_config(self, kind: StorageType) -> StorageConfig:
        """Validated snapshot of an enabled config.

        Raises:
            ConfigurationError: missing, disabled or invalid config
        """
        if kind in self._errors:
            raise ConfigurationError(
                f"Invalid configuration: {self._errors[kind]}", provider=kind.value
            )
        config = self._configs.get(kind)
        if config is None:
            raise ConfigurationError("Storage provider is not configured", provider=kind.value)
        if not config.enabled:
            raise ConfigurationError("Storage provider is disabled", provider=kind.value)
        return config.model_copy(deep=True)

    def update_config(self, config: StorageConfig) -> int:
        """Replace the record for ``config.type``; returns the new version."""
        kind = config.type
        try:
            validated = StorageConfig.model_validate(config.model_dump())
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", provider=kind.value) from e
        self._configs[kind] = validated
        self._errors.pop(kind, None)
        self._tokens.pop(kind, None)
        self._versions[kind] += 1
        logger.info("storage_config_updated", provider=kind.value, version=self._versions[kind])
        return self._versions[kind]

    def update_refresh_token(self, refresh_token: str, access_token: Optional[AccessToken] = None) -> int:
        """Persist a freshly authorized Drive refresh token."""
        kind = StorageType.GOOGLE_DRIVE
        config = self._configs.get(kind)
        if config is None:
            raise ConfigurationError("Storage provider is not configured", provider=kind.value)
        updated = config.model_copy(deep=True)
        updated.google_drive.refresh_token = refresh_token
        version = self.update_config(updated)
        if access_token is not None:
            self._tokens[kind] = access_token
        return version

    def record_access_token(self, kind: StorageType, token: AccessToken) -> None:
        self._tokens[kind] = token

    def cached_access_token(self, kind: StorageType) -> Optional[AccessToken]:
        token = self._tokens.get(kind)
        if token is None or token.is_expired():
            return None
        return token
