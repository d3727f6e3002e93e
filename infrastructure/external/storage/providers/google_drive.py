"""Google Drive storage provider over the Drive v3 REST API."""
import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, NoReturn, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from core.logging_config import get_logger
from ..config import StorageConfig, StorageType
from ..credentials import AccessToken, GoogleTokenManager
from ..exceptions import (
    ConfigurationError,
    ErrorClassification,
    PermissionDeniedError,
    RateLimitedError,
    StorageError,
    TransientError,
)
from ..models import ObjectInfo
from ..utils import guess_content_type, normalize_key

logger = get_logger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,size,mimeType,modifiedTime,md5Checksum"

# Drive file ids: long URL-safe tokens without path separators
_FILE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{25,}$")
_RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


class _TokenRejected(Exception):
    """401 from the API; the token is invalidated and the call retried once."""


def _escape(name: str) -> str:
    return name.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveProvider:
    """Drive provider.

    Keys are either Drive file ids (returned by ``put_buffer``) or
    slash-separated paths resolved below the root folder: the hidden
    ``appDataFolder`` for ``appdata`` storage, otherwise ``folder_id``
    or the user's ``root``.
    """

    storage_type = StorageType.GOOGLE_DRIVE

    def __init__(
        self,
        config: StorageConfig,
        client: httpx.AsyncClient,
        tokens: Optional[GoogleTokenManager] = None,
    ):
        self.config = config
        self.options = config.google_drive
        self.client = client
        self.tokens = tokens or GoogleTokenManager(self.options, client)
        self._ids: dict[str, str] = {}

    @property
    def root_folder(self) -> str:
        if self.options.storage_type == "appdata":
            return "appDataFolder"
        return self.options.folder_id or "root"

    @property
    def spaces(self) -> str:
        return "appDataFolder" if self.options.storage_type == "appdata" else "drive"

    # Operations

    async def get_buffer(self, key: str) -> Optional[bytes]:
        file_id = await self._resolve(key)
        if file_id is None:
            return None
        response = await self._request(
            "GET", f"{self.options.api_base_url}/files/{file_id}", params={"alt": "media"}
        )
        if response.status_code == 404:
            self._forget(key)
            return None
        return response.content

    async def get_info(self, key: str) -> Optional[ObjectInfo]:
        file_id = await self._resolve(key)
        if file_id is None:
            return None
        response = await self._request(
            "GET", f"{self.options.api_base_url}/files/{file_id}", params={"fields": FILE_FIELDS}
        )
        if response.status_code == 404:
            self._forget(key)
            return None
        meta = self._json(response)
        modified = meta.get("modifiedTime")
        return ObjectInfo(
            key=meta.get("id", file_id),
            size=int(meta.get("size") or 0),
            content_type=meta.get("mimeType"),
            etag=meta.get("md5Checksum"),
            last_modified=datetime.fromisoformat(modified.replace("Z", "+00:00")) if modified else None,
        )

    async def put_buffer(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """Create or overwrite a file; returns the Drive file id."""
        content_type = content_type or guess_content_type(key)

        existing = await self._resolve(key)
        if existing is not None:
            response = await self._request(
                "PATCH",
                f"{self.options.upload_base_url}/files/{existing}",
                params={"uploadType": "media", "fields": "id"},
                content=data,
                headers={"Content-Type": content_type},
            )
            if response.status_code != 404:
                file_id = self._json(response, "id")["id"]
                logger.info("drive_object_updated", file_id=file_id, size=len(data))
                return file_id
            self._forget(key)

        parts = normalize_key(key).split("/")
        parent = await self._ensure_folders(parts[:-1])
        metadata = {"name": parts[-1], "parents": [parent]}
        boundary = f"gallery-{uuid.uuid4().hex}"
        body = (
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\nContent-Type: {content_type}\r\n\r\n"
        ).encode() + data + f"\r\n--{boundary}--\r\n".encode()

        response = await self._request(
            "POST",
            f"{self.options.upload_base_url}/files",
            params={"uploadType": "multipart", "fields": "id"},
            content=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        if response.status_code == 404:
            raise StorageError(
                "Parent folder disappeared during upload",
                provider=self.storage_type.value,
                classification=ErrorClassification.NOT_FOUND,
            )
        file_id = self._json(response, "id")["id"]
        if not _FILE_ID_RE.match(key):
            self._ids[normalize_key(key)] = file_id
        logger.info("drive_object_created", file_id=file_id, size=len(data))
        return file_id

    async def delete(self, key: str) -> bool:
        file_id = await self._resolve(key)
        if file_id is None:
            return False
        response = await self._request("DELETE", f"{self.options.api_base_url}/files/{file_id}")
        self._forget(key)
        if response.status_code == 404:
            return False
        logger.info("drive_object_deleted", file_id=file_id)
        return True

    async def validate_connection(self) -> bool:
        missing = [
            name for name in ("client_id", "client_secret", "refresh_token")
            if not getattr(self.options, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Google Drive configuration incomplete: {', '.join(missing)}",
                provider=self.storage_type.value,
                suggestions=[
                    "Enter the OAuth client id and secret from the Google Cloud console",
                    "Complete the authorization flow to obtain a refresh token",
                ],
            )
        if self.options.storage_type == "visible" and not self.options.folder_id:
            logger.warning("drive_visible_without_folder", detail="files go to the Drive root")

        try:
            await self._request(
                "GET",
                f"{self.options.api_base_url}/files",
                params={"pageSize": 1, "spaces": self.spaces, "fields": "files(id)"},
            )
        except StorageError as e:
            if not e.suggestions:
                e.suggestions = self._suggestions_for(e)
            logger.error("drive_validation_failed", classification=e.classification.value, code=e.code)
            raise
        logger.info("drive_validation_passed", storage_type=self.options.storage_type)
        return True

    async def aclose(self) -> None:
        await self.client.aclose()

    # Path resolution

    async def _resolve(self, key: str) -> Optional[str]:
        """Map a key to a file id; ``None`` when a path segment is missing."""
        key = normalize_key(key)
        if _FILE_ID_RE.match(key):
            return key
        cached = self._ids.get(key)
        if cached is not None:
            return cached

        parent = self.root_folder
        for name in key.split("/"):
            found = await self._find_child(parent, name)
            if found is None:
                return None
            parent = found
        self._ids[key] = parent
        return parent

    async def _find_child(self, parent: str, name: str, folder: bool = False) -> Optional[str]:
        query = f"name = '{_escape(name)}' and '{parent}' in parents and trashed = false"
        if folder:
            query += f" and mimeType = '{FOLDER_MIME_TYPE}'"
        response = await self._request(
            "GET",
            f"{self.options.api_base_url}/files",
            params={"q": query, "spaces": self.spaces, "fields": "files(id,name)", "pageSize": 1},
        )
        if response.status_code == 404:
            return None
        files = self._json(response).get("files", [])
        return files[0]["id"] if files else None

    async def _ensure_folders(self, names: list[str]) -> str:
        parent = self.root_folder
        for name in names:
            found = await self._find_child(parent, name, folder=True)
            if found is None:
                response = await self._request(
                    "POST",
                    f"{self.options.api_base_url}/files",
                    params={"fields": "id"},
                    json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent]},
                )
                found = self._json(response, "id")["id"]
                logger.info("drive_folder_created", name=name, parent=parent)
            parent = found
        return parent

    def _forget(self, key: str) -> None:
        self._ids.pop(normalize_key(key), None)

    # Transport

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Authenticated request; 404 is returned to the caller, other errors raise.

        A 401 invalidates the token and the call is retried once with a
        fresh one.
        """
        extra_headers = kwargs.pop("headers", None) or {}
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                retry=retry_if_exception_type(_TokenRejected),
                reraise=True,
            ):
                with attempt:
                    token = await self.tokens.get_token()
                    headers = {**extra_headers, "Authorization": f"Bearer {token}"}
                    try:
                        response = await self.client.request(method, url, headers=headers, **kwargs)
                    except httpx.TimeoutException as e:
                        raise TransientError(
                            f"Google Drive request timed out: {method}", provider=self.storage_type.value
                        ) from e
                    except httpx.TransportError as e:
                        raise TransientError(
                            f"Google Drive unreachable: {e}", provider=self.storage_type.value
                        ) from e

                    if response.status_code == 401:
                        self.tokens.invalidate(token)
                        logger.info("drive_token_rejected", method=method)
                        raise _TokenRejected()
        except _TokenRejected:
            raise PermissionDeniedError(
                "Google Drive rejected a freshly refreshed token",
                provider=self.storage_type.value,
                code="401",
            )

        if response.status_code == 404 or response.is_success:
            return response
        self._raise_for_status(response)

    def _json(self, response: httpx.Response, *required: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or any(name not in payload for name in required):
            logger.error("drive_response_invalid", status=response.status_code, url=str(response.request.url))
            raise StorageError(
                "Google Drive returned an unreadable response",
                provider=self.storage_type.value,
                code="invalid_response",
            )
        return payload

    def _raise_for_status(self, response: httpx.Response) -> NoReturn:
        status = response.status_code
        reason = None
        message = f"Google Drive API error {status}"
        try:
            error = response.json().get("error", {})
            if isinstance(error, dict):
                message = error.get("message") or message
                errors = error.get("errors") or []
                if errors:
                    reason = errors[0].get("reason")
        except (ValueError, AttributeError):
            pass

        provider = self.storage_type.value
        if status == 429 or reason in _RATE_LIMIT_REASONS:
            raise RateLimitedError(message, provider=provider, code=reason or str(status))
        if status in (401, 403):
            raise PermissionDeniedError(message, provider=provider, code=reason or str(status))
        if status >= 500:
            raise TransientError(message, provider=provider, code=reason or str(status))
        raise StorageError(message, provider=provider, code=reason or str(status))

    def _suggestions_for(self, e: StorageError) -> list[str]:
        if e.classification == ErrorClassification.AUTH:
            return [
                "Re-authorize Google Drive from the storage admin page",
                "Check the Drive API is enabled for the OAuth client's project",
                "appdata storage needs the drive.appdata scope, visible storage needs drive.file",
            ]
        if e.classification == ErrorClassification.RATE_LIMITED:
            return ["Drive API quota exceeded; wait and retry or raise the project quota"]
        return ["Check network connectivity to www.googleapis.com"]


async def build_google_drive_provider(
    config: StorageConfig,
    initial_token: Optional[AccessToken] = None,
    on_token: Optional[Callable[[AccessToken], None]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GoogleDriveProvider:
    """Build Google Drive provider with its own HTTP client and token manager."""
    options = config.google_drive
    if not options.client_id or not options.client_secret:
        raise ConfigurationError(
            "Google Drive client id and secret are required", provider=StorageType.GOOGLE_DRIVE.value
        )

    seed = initial_token
    if seed is None and options.access_token and options.token_expiry:
        expiry = options.token_expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        seed = AccessToken(value=options.access_token, expires_at=expiry)

    client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.read_timeout, connect=config.connect_timeout),
        transport=transport,
    )
    tokens = GoogleTokenManager(options, client, initial=seed, on_refresh=on_token)
    return GoogleDriveProvider(config, client, tokens)
