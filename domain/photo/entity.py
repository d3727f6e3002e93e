"""Storage-side view of a photo: where its original and thumbnails live."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from domain.common.exceptions import DomainValidationException


class AssetVariant(str, Enum):
    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"
    PLACEHOLDER = "placeholder"


@dataclass
class PhotoStorageRecord:
    """Storage metadata attached to a photo.

    Created at upload time, updated when thumbnails are regenerated and
    removed with the photo. ``key`` is the provider-specific canonical
    identifier (local path, object key or Drive file id). Thumbnail
    entries are best-effort and may point at objects that were never
    generated.

    ``key_is_thumbnail`` and ``thumbnails_reliable`` record what is known
    about the keys explicitly; ``None`` means unknown, in which case the
    path heuristic in the asset resolver applies.
    """

    provider: str
    key: str
    url: Optional[str] = None
    thumbnails: dict[str, str] = field(default_factory=dict)
    thumbnail_path: Optional[str] = None
    bucket: Optional[str] = None
    folder_id: Optional[str] = None
    key_is_thumbnail: Optional[bool] = None
    thumbnails_reliable: Optional[bool] = None

    def __post_init__(self) -> None:
        self.provider = (self.provider or "local").strip().lower()
        self.key = (self.key or "").strip()
        if self.thumbnails is None:
            self.thumbnails = {}
        if not isinstance(self.thumbnails, dict):
            raise DomainValidationException(
                "thumbnails must be a mapping of size name to key",
                field="thumbnails",
            )
        # Drop empty entries left behind by failed thumbnail generation
        self.thumbnails = {name: key for name, key in self.thumbnails.items() if key}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PhotoStorageRecord":
        """Build a record from a stored ``photo.storage`` document.

        Accepts both snake_case and the camelCase field names found in
        existing photo documents (``fileId``, ``thumbnailPath``, ...).
        """
        def pick(*names: str) -> Any:
            for name in names:
                value = data.get(name)
                if value not in (None, ""):
                    return value
            return None

        return cls(
            provider=pick("provider") or "local",
            key=pick("key", "path", "file_id", "fileId") or "",
            url=pick("url"),
            thumbnails=dict(pick("thumbnails") or {}),
            thumbnail_path=pick("thumbnail_path", "thumbnailPath"),
            bucket=pick("bucket", "bucketName"),
            folder_id=pick("folder_id", "folderId"),
            key_is_thumbnail=data.get("key_is_thumbnail"),
            thumbnails_reliable=data.get("thumbnails_reliable"),
        )

