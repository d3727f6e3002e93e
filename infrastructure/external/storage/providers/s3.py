"""S3-compatible storage provider (AWS S3, Wasabi, Backblaze B2, MinIO)."""
from functools import partial
from typing import Any, NoReturn, Optional

import anyio
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from core.logging_config import get_logger
from ..config import StorageConfig, StorageType
from ..exceptions import (
    ConfigurationError,
    PermissionDeniedError,
    RateLimitedError,
    StorageError,
    TransientError,
)
from ..models import ObjectInfo
from ..utils import guess_content_type, normalize_key

logger = get_logger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_AUTH_CODES = {
    "403",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
}
_THROTTLE_CODES = {"SlowDown", "Throttling", "ThrottlingException", "TooManyRequests", "503"}
_TRANSIENT_CODES = {"RequestTimeout", "ServiceUnavailable", "InternalError", "500"}


def _error_code(e: Exception) -> str:
    return str(getattr(e, "response", {}).get("Error", {}).get("Code", ""))


class S3Provider:
    """S3-compatible storage provider."""

    storage_type = StorageType.S3

    def __init__(
        self,
        client: Any,  # boto3 S3 client
        config: StorageConfig
    ):
        """Initialize S3 provider.

        Args:
            client: Boto3 S3 client instance
            config: Storage configuration
        """
        self.client = client
        self.config = config
        self.options = config.s3
        self.bucket = self.options.bucket

    async def get_buffer(self, key: str) -> Optional[bytes]:
        """Download object from S3, ``None`` when absent."""
        key = normalize_key(key)
        try:
            response = await anyio.to_thread.run_sync(
                partial(self.client.get_object, Bucket=self.bucket, Key=key)
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                logger.debug("s3_object_missing", bucket=self.bucket, key=key)
                return None
            self._handle_exception(e, f"get {key}")
        except BotoCoreError as e:
            self._handle_exception(e, f"get {key}")

        body = response["Body"]
        try:
            return await anyio.to_thread.run_sync(body.read)
        except BotoCoreError as e:
            self._handle_exception(e, f"read {key}")
        finally:
            await anyio.to_thread.run_sync(body.close)

    async def get_info(self, key: str) -> Optional[ObjectInfo]:
        """HeadObject, ``None`` when absent."""
        key = normalize_key(key)
        try:
            response = await anyio.to_thread.run_sync(
                partial(self.client.head_object, Bucket=self.bucket, Key=key)
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            self._handle_exception(e, f"head {key}")
        except BotoCoreError as e:
            self._handle_exception(e, f"head {key}")

        return ObjectInfo(
            key=key,
            size=response.get("ContentLength", 0),
            content_type=response.get("ContentType"),
            etag=(response.get("ETag") or "").strip('"') or None,
            last_modified=response.get("LastModified"),
        )

    async def put_buffer(
        self,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload object to S3."""
        key = normalize_key(key)
        try:
            await anyio.to_thread.run_sync(
                partial(
                    self.client.put_object,
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type or guess_content_type(key),
                )
            )
        except (ClientError, BotoCoreError) as e:
            self._handle_exception(e, f"put {key}")

        logger.info("s3_object_stored", bucket=self.bucket, key=key, size=len(data))
        return key

    async def delete(self, key: str) -> bool:
        """Delete object from S3.

        DeleteObject succeeds for missing keys, so existence is checked
        first to report whether anything was removed.
        """
        key = normalize_key(key)
        if await self.get_info(key) is None:
            return False
        try:
            await anyio.to_thread.run_sync(
                partial(self.client.delete_object, Bucket=self.bucket, Key=key)
            )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            self._handle_exception(e, f"delete {key}")
        except BotoCoreError as e:
            self._handle_exception(e, f"delete {key}")

        logger.info("s3_object_deleted", bucket=self.bucket, key=key)
        return True

    async def validate_connection(self) -> bool:
        """HeadBucket round trip."""
        try:
            await anyio.to_thread.run_sync(
                partial(self.client.head_bucket, Bucket=self.bucket)
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("s3_validation_failed", bucket=self.bucket, error=str(e))
            try:
                self._handle_exception(e, f"head bucket {self.bucket}")
            except StorageError as mapped:
                mapped.suggestions = self._suggestions_for(e)
                raise
        logger.info("s3_validation_passed", bucket=self.bucket)
        return True

    async def aclose(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await anyio.to_thread.run_sync(close)

    def _suggestions_for(self, e: Exception) -> list[str]:
        code = _error_code(e)
        if isinstance(e, NoCredentialsError) or code in _AUTH_CODES:
            return [
                "Verify the access key id and secret access key",
                "Check that the key has s3:GetObject, s3:PutObject and s3:ListBucket permissions",
            ]
        if code in _NOT_FOUND_CODES or code == "NoSuchBucket":
            return [
                f"Check that bucket '{self.bucket}' exists",
                "Check the region or endpoint matches where the bucket was created",
            ]
        if isinstance(e, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
            return [
                "Check the endpoint URL and network connectivity",
                "For Wasabi or Backblaze use the region-specific endpoint",
            ]
        return ["Check the S3 configuration and provider status page"]

    def _handle_exception(self, e: Exception, operation: str) -> NoReturn:
        """Map S3 exceptions to storage exceptions."""
        provider = self.storage_type.value
        code = _error_code(e) or None

        if isinstance(e, (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError)):
            raise TransientError(f"Network error during {operation}: {e}", provider=provider) from e
        if isinstance(e, NoCredentialsError):
            raise PermissionDeniedError(f"No credentials for {operation}", provider=provider) from e
        if code in _AUTH_CODES:
            raise PermissionDeniedError(f"Access denied: {operation}", provider=provider, code=code) from e
        if code in _THROTTLE_CODES:
            raise RateLimitedError(f"Throttled: {operation}", provider=provider, code=code) from e
        if code in _TRANSIENT_CODES:
            raise TransientError(f"Transient error: {operation}", provider=provider, code=code) from e
        raise StorageError(f"S3 error during {operation}: {e}", provider=provider, code=code) from e


async def build_s3_provider(config: StorageConfig) -> S3Provider:
    """Build S3 storage provider.

    Args:
        config: Storage configuration

    Returns:
        Configured S3 provider instance
    """
    import boto3
    from botocore.config import Config as BotoConfig

    options = config.s3
    if not options.bucket:
        raise ConfigurationError("S3 bucket name is required", provider=StorageType.S3.value)

    boto_config = BotoConfig(
        region_name=options.region,
        signature_version="s3v4",
        retries={
            "total_max_attempts": options.max_retry_attempts,
            "mode": "standard"
        },
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout
    )

    client_args = {
        "service_name": "s3",
        "config": boto_config
    }

    if options.access_key_id and options.secret_access_key:
        client_args.update({
            "aws_access_key_id": options.access_key_id,
            "aws_secret_access_key": options.secret_access_key
        })

    if options.endpoint:
        client_args["endpoint_url"] = options.endpoint
        client_args["use_ssl"] = options.enable_ssl

    client = await anyio.to_thread.run_sync(partial(boto3.client, **client_args))
    return S3Provider(client, config)
