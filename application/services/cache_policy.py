"""HTTP cache headers per content class."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from core.config import CacheEntrySettings, CacheSettings


class ContentClass(str, Enum):
    IMAGE = "image"
    THUMBNAIL = "thumbnail"
    API_PAYLOAD = "api_payload"
    SENSITIVE = "sensitive"


@dataclass(frozen=True)
class CachePolicyEntry:
    max_age: int = 0
    s_maxage: Optional[int] = None
    stale_while_revalidate: int = 0
    visibility: str = "public"
    must_revalidate: bool = False
    no_store: bool = False
    no_cache: bool = False

    @classmethod
    def from_settings(cls, entry: CacheEntrySettings) -> "CachePolicyEntry":
        return cls(**entry.model_dump())

    @property
    def cacheable(self) -> bool:
        return not self.no_store

    def cache_control(self) -> str:
        if self.no_store:
            return f"{self.visibility}, no-cache, no-store, must-revalidate"
        directives = [self.visibility]
        if self.no_cache:
            directives.append("no-cache")
        directives.append(f"max-age={self.max_age}")
        if self.s_maxage is not None:
            directives.append(f"s-maxage={self.s_maxage}")
        if self.stale_while_revalidate:
            directives.append(f"stale-while-revalidate={self.stale_while_revalidate}")
        if self.must_revalidate:
            directives.append("must-revalidate")
        return ", ".join(directives)


class CachePolicy:
    """Static table loaded once at startup; pure, no I/O."""

    def __init__(self, entries: Mapping[ContentClass, CachePolicyEntry]):
        if ContentClass.API_PAYLOAD not in entries:
            raise ValueError("cache policy needs an api_payload entry as fallback")
        self._entries = dict(entries)

    @classmethod
    def from_settings(cls, cache: CacheSettings) -> "CachePolicy":
        return cls({
            content_class: CachePolicyEntry.from_settings(getattr(cache, content_class.value))
            for content_class in ContentClass
        })

    def entry_for(self, content_class: ContentClass | str) -> CachePolicyEntry:
        try:
            key = ContentClass(content_class)
        except ValueError:
            key = ContentClass.API_PAYLOAD
        return self._entries.get(key, self._entries[ContentClass.API_PAYLOAD])

    def headers_for(self, content_class: ContentClass | str) -> dict[str, str]:
        entry = self.entry_for(content_class)
        headers = {"Cache-Control": entry.cache_control()}
        if entry.no_store:
            headers["Pragma"] = "no-cache"
            headers["Expires"] = "0"
        return headers

    def should_serve_304(self, request_headers: Mapping[str, str], content_class: ContentClass | str) -> bool:
        """True when the class is cacheable and the request is conditional.

        Validators are not compared: the serve path answers 304 before
        touching the provider, relying on immutable keys.
        """
        if not self.entry_for(content_class).cacheable:
            return False
        names = {name.lower() for name in request_headers.keys()}
        return "if-none-match" in names or "if-modified-since" in names

    def emits_etag(self, content_class: ContentClass | str) -> bool:
        return self.entry_for(content_class).cacheable

    @staticmethod
    def etag_for(data: bytes) -> str:
        return f'"{hashlib.md5(data).hexdigest()}"'
