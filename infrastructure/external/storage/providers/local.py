"""Local file system storage provider implementation."""
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from core.logging_config import get_logger
from ..config import StorageConfig, StorageType
from ..exceptions import PermissionDeniedError, StorageError
from ..models import ObjectInfo
from ..utils import guess_content_type, normalize_key, safe_join

logger = get_logger(__name__)


class LocalProvider:
    """Local file system storage provider."""

    storage_type = StorageType.LOCAL

    def __init__(self, config: StorageConfig):
        """Initialize local storage provider.

        Args:
            config: Storage configuration
        """
        self.config = config
        self.options = config.local
        self.base_path = Path(self.options.base_path).resolve()

        # Ensure base path exists
        self.base_path.mkdir(parents=True, exist_ok=True)

    async def get_buffer(self, key: str) -> Optional[bytes]:
        """Read file from local storage."""
        file_path = self._safe_path(key)
        if not file_path.is_file():
            logger.debug("local_object_missing", key=key)
            return None
        try:
            async with aiofiles.open(file_path, "rb") as f:
                data = await f.read()
        except FileNotFoundError:
            # Removed between the check and the read
            return None
        except PermissionError as e:
            raise PermissionDeniedError(
                f"Permission denied reading {key}", provider=self.storage_type.value
            ) from e
        except OSError as e:
            raise StorageError(
                f"Failed to read {key}: {e}", provider=self.storage_type.value
            ) from e
        return data

    async def get_info(self, key: str) -> Optional[ObjectInfo]:
        """Stat a file in local storage."""
        file_path = self._safe_path(key)
        try:
            stat = await aiofiles.os.stat(file_path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(
                f"Failed to stat {key}: {e}", provider=self.storage_type.value
            ) from e
        if not file_path.is_file():
            return None

        return ObjectInfo(
            key=normalize_key(key),
            size=stat.st_size,
            content_type=guess_content_type(key),
            # Cheap validator from size and mtime; avoids hashing the file
            etag=f"{stat.st_mtime_ns:x}-{stat.st_size:x}",
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    async def put_buffer(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """Write file to local storage (atomic replace)."""
        file_path = self._safe_path(key)
        clean_key = normalize_key(key)
        temp_path = file_path.with_name(f".{file_path.name}.{uuid.uuid4().hex}.tmp")
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(temp_path, file_path)
        except PermissionError as e:
            raise PermissionDeniedError(
                f"Permission denied writing {key}", provider=self.storage_type.value
            ) from e
        except OSError as e:
            raise StorageError(
                f"Failed to write {key}: {e}", provider=self.storage_type.value
            ) from e
        finally:
            if temp_path.exists():
                os.unlink(temp_path)

        logger.info("local_object_stored", key=clean_key, size=len(data))
        return clean_key

    async def delete(self, key: str) -> bool:
        """Delete file from local storage."""
        file_path = self._safe_path(key)
        try:
            await aiofiles.os.remove(file_path)
        except FileNotFoundError:
            return False
        except IsADirectoryError:
            return False
        except OSError as e:
            raise StorageError(
                f"Failed to delete {key}: {e}", provider=self.storage_type.value
            ) from e
        logger.info("local_object_deleted", key=key)
        return True

    async def validate_connection(self) -> bool:
        """Check the base path exists and is writable."""
        test_file = self.base_path / ".health_check"
        try:
            async with aiofiles.open(test_file, "wb") as f:
                await f.write(b"ok")
            await aiofiles.os.remove(test_file)
        except OSError as e:
            logger.error("local_validation_failed", base_path=str(self.base_path), error=str(e))
            raise PermissionDeniedError(
                f"Local storage path is not writable: {self.base_path}",
                provider=self.storage_type.value,
                suggestions=[
                    "Check that the directory exists and the service user can write to it",
                    "Set STORAGE__LOCAL__BASE_PATH to a writable location",
                ],
            ) from e
        logger.info("local_validation_passed", base_path=str(self.base_path))
        return True

    async def aclose(self) -> None:
        return None

    def _safe_path(self, key: str) -> Path:
        """Build safe path preventing directory traversal.

        Raises:
            ValidationError: If path is unsafe
        """
        try:
            return safe_join(str(self.base_path), key)
        except StorageError as e:
            e.provider = self.storage_type.value
            raise


async def build_local_provider(config: StorageConfig) -> LocalProvider:
    """Build local storage provider.

    Args:
        config: Storage configuration

    Returns:
        Configured local provider instance
    """
    return LocalProvider(config)
