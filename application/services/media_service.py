"""Media serving use case: path -> provider object -> cacheable HTTP response."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Mapping, Optional

from application.ports.storage import MediaStoragePort, ObjectMetadata
from application.services.asset_resolver import is_thumbnail_key
from application.services.cache_policy import CachePolicy, ContentClass
from application.utils.storage import decode_media_path, guess_content_type
from core.logging_config import get_logger
from domain.common.exceptions import (
    InvalidMediaPathException,
    StorageAccessException,
    StorageProviderUnavailableException,
    UnknownStorageProviderException,
)

logger = get_logger(__name__)

# Providers whose auth failures the admin UI resolves by re-running OAuth consent
_REAUTHORIZABLE = {"google-drive", "gdrive", "googledrive", "google_drive"}


@dataclass
class MediaResponse:
    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    error: Optional[dict[str, Any]] = None


class MediaService:
    def __init__(self, storage: MediaStoragePort, cache_policy: CachePolicy):
        self._storage = storage
        self._cache_policy = cache_policy

    def parse_path(self, raw_path: str) -> tuple[str, str]:
        """Split ``{provider}/{key...}``.

        Raises:
            InvalidMediaPathException: fewer than two segments
            UnknownStorageProviderException: provider is not a known kind
        """
        decoded = decode_media_path(raw_path)
        segments = [segment for segment in decoded.split("/") if segment]
        if len(segments) < 2:
            raise InvalidMediaPathException(decoded)
        provider = segments[0].lower()
        if not self._storage.is_known_provider(provider):
            raise UnknownStorageProviderException(provider)
        return provider, "/".join(segments[1:])

    @staticmethod
    def content_class_for(key: str) -> ContentClass:
        return ContentClass.THUMBNAIL if is_thumbnail_key(key) else ContentClass.IMAGE

    async def serve(
        self,
        raw_path: str,
        request_headers: Mapping[str, str],
        include_body: bool = True,
    ) -> MediaResponse:
        try:
            provider, key = self.parse_path(raw_path)
        except InvalidMediaPathException as e:
            return MediaResponse(400, error={"error": e.message, "path": e.path, "provider": None})
        except UnknownStorageProviderException as e:
            return MediaResponse(
                400,
                error={"error": e.message, "path": decode_media_path(raw_path), "provider": e.provider},
            )

        content_class = self.content_class_for(key)
        cache_headers = self._cache_policy.headers_for(content_class)

        if self._cache_policy.should_serve_304(request_headers, content_class):
            logger.debug("storage_object_not_modified", provider=provider, key=key)
            return MediaResponse(304, headers=cache_headers)

        try:
            # Metadata first so a missing object never costs a full download
            missing, info = await self._metadata(provider, key)
            data = None if missing else await self._storage.get_buffer(provider, key)
            if data is None:
                logger.info("storage_object_missing", provider=provider, key=key)
                return MediaResponse(404, error={"error": "File not found", "path": key, "provider": provider})
        except InvalidMediaPathException as e:
            return MediaResponse(400, error={"error": e.message, "path": key, "provider": provider})
        except StorageProviderUnavailableException as e:
            logger.error("storage_provider_unavailable", provider=provider, reason=e.message)
            return MediaResponse(
                500,
                error={
                    "error": "Storage provider unavailable",
                    "classification": "configuration",
                    "provider": provider,
                    "path": key,
                },
            )
        except StorageAccessException as e:
            logger.error(
                "storage_object_fetch_failed",
                provider=provider,
                key=key,
                classification=e.classification,
                provider_code=e.provider_code,
            )
            body: dict[str, Any] = {
                "error": "Failed to load media",
                "classification": e.classification,
                "provider": provider,
                "path": key,
            }
            if e.classification == "auth" and provider in _REAUTHORIZABLE:
                body["requires_reauthorization"] = True
            return MediaResponse(500, error=body)

        hint = info.content_type if info else None
        last_modified = info.last_modified if info and info.last_modified else datetime.now(timezone.utc)
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)

        headers = {
            "Content-Type": guess_content_type(key, hint),
            "Content-Length": str(len(data)),
            **cache_headers,
            "Last-Modified": format_datetime(last_modified.astimezone(timezone.utc), usegmt=True),
        }
        if self._cache_policy.emits_etag(content_class):
            headers["ETag"] = self._cache_policy.etag_for(data)

        logger.info("storage_object_served", provider=provider, key=key, size=len(data))
        return MediaResponse(200, body=data if include_body else b"", headers=headers)

    async def _metadata(self, provider: str, key: str) -> tuple[bool, Optional[ObjectMetadata]]:
        """``(missing, info)`` from ``get_info``.

        An access failure is not proof of absence: it yields
        ``(False, None)`` and the buffer fetch decides, with Last-Modified
        falling back to response time.
        """
        try:
            info = await self._storage.get_info(provider, key)
        except StorageAccessException as e:
            logger.warning(
                "storage_object_info_unavailable",
                provider=provider,
                key=key,
                classification=e.classification,
            )
            return False, None
        return info is None, info
