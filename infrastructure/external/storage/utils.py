"""Storage utility functions."""
import mimetypes
from pathlib import Path

from .exceptions import ValidationError


def guess_content_type(filename: str) -> str:
    """Guess content type from filename.

    Args:
        filename: File name or path

    Returns:
        MIME type string
    """
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


def normalize_key(key: str) -> str:
    """Strip leading slashes and reject empty or NUL-containing keys."""
    clean = (key or "").strip().lstrip("/")
    if not clean:
        raise ValidationError("Storage key must not be empty")
    if "\x00" in clean:
        raise ValidationError(f"Storage key contains NUL byte: {key!r}")
    return clean


def safe_join(base: str, relative: str) -> Path:
    """Safely join paths preventing traversal attacks.

    Raises:
        ValidationError: If path would escape base or names base itself
    """
    base_path = Path(base).resolve()
    full_path = (base_path / normalize_key(relative)).resolve()
    try:
        full_path.relative_to(base_path)
    except ValueError:
        raise ValidationError(f"Path escapes base directory: {relative}")
    if full_path == base_path:
        raise ValidationError(f"Path resolves to the base directory: {relative}")
    return full_path

