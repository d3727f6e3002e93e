"""Application-level storage helpers to avoid infra coupling."""
from __future__ import annotations

import mimetypes
from typing import Optional
from urllib.parse import unquote

# Not reliably registered in every platform's mime database
_IMAGE_TYPES = {
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".heic": "image/heic",
    ".heif": "image/heif",
}


def guess_content_type(filename: str, hint: Optional[str] = None) -> str:
    """Content type from the extension, then the provider hint."""
    lowered = filename.lower()
    for ext, ctype in _IMAGE_TYPES.items():
        if lowered.endswith(ext):
            return ctype
    ctype, _ = mimetypes.guess_type(filename)
    return ctype or hint or "application/octet-stream"


def decode_media_path(raw: str) -> str:
    """URL-decode a serve path, tolerating one level of double encoding."""
    decoded = unquote(raw or "")
    if "%" in decoded:
        decoded = unquote(decoded)
    return decoded.strip().lstrip("/")
