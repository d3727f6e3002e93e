"""Choose which stored object to serve for a photo."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from domain.photo import AssetVariant, PhotoStorageRecord

_SIZE_SEGMENT = re.compile(r"/(medium|small|thumb)/")
_THUMBNAIL_PREFERENCE = ("medium", "small")


def is_thumbnail_key(key: Optional[str]) -> bool:
    """Path heuristic: the key carries a thumbnail size segment.

    Only consulted when a record has no explicit classification.
    """
    if not key:
        return False
    return bool(_SIZE_SEGMENT.search("/" + key.lstrip("/")))


@dataclass(frozen=True)
class ResolvedAsset:
    provider: str
    key: str
    variant: AssetVariant
    is_placeholder: bool = False


class AssetResolver:
    def __init__(self, placeholder_key: str, placeholder_provider: str = "local", serve_prefix: str = "/storage/serve"):
        self.placeholder_key = placeholder_key
        self.placeholder_provider = placeholder_provider
        self.serve_prefix = serve_prefix.rstrip("/")

    def resolve(self, record: Optional[PhotoStorageRecord], prefer_thumbnail: bool = True) -> ResolvedAsset:
        if record is None:
            return self._placeholder()

        full_key = self._full_key(record)
        thumbnail = self._pick_thumbnail(record)

        if prefer_thumbnail and thumbnail:
            if full_key and self._thumbnail_unreliable(record, thumbnail) and not self._key_is_thumbnail(record, full_key):
                return ResolvedAsset(record.provider, full_key, AssetVariant.ORIGINAL)
            return ResolvedAsset(record.provider, thumbnail, AssetVariant.THUMBNAIL)

        if full_key:
            return ResolvedAsset(record.provider, full_key, AssetVariant.ORIGINAL)
        if thumbnail:
            return ResolvedAsset(record.provider, thumbnail, AssetVariant.THUMBNAIL)
        return self._placeholder()

    def serve_url(self, asset: ResolvedAsset) -> str:
        key = asset.key
        if key.startswith(("http://", "https://")) or key.startswith(self.serve_prefix + "/"):
            return key
        return f"{self.serve_prefix}/{asset.provider}/{quote(key.lstrip('/'), safe='/')}"

    def _placeholder(self) -> ResolvedAsset:
        return ResolvedAsset(
            self.placeholder_provider, self.placeholder_key, AssetVariant.PLACEHOLDER, is_placeholder=True
        )

    @staticmethod
    def _full_key(record: PhotoStorageRecord) -> Optional[str]:
        if record.key:
            return record.key
        # Relative URLs on older records point at the serve route or a path
        if record.url:
            return record.url
        return None

    @staticmethod
    def _pick_thumbnail(record: PhotoStorageRecord) -> Optional[str]:
        for name in _THUMBNAIL_PREFERENCE:
            if record.thumbnails.get(name):
                return record.thumbnails[name]
        for key in record.thumbnails.values():
            if key:
                return key
        return record.thumbnail_path or None

    @staticmethod
    def _thumbnail_unreliable(record: PhotoStorageRecord, thumbnail: str) -> bool:
        if record.thumbnails_reliable is not None:
            return not record.thumbnails_reliable
        return is_thumbnail_key(thumbnail)

    @staticmethod
    def _key_is_thumbnail(record: PhotoStorageRecord, key: str) -> bool:
        if record.key_is_thumbnail is not None and key == record.key:
            return record.key_is_thumbnail
        return is_thumbnail_key(key)
