"""Storage configuration models."""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator


class StorageType(str, Enum):
    """Storage provider kinds. The set is closed; see ``factory.create_provider``."""
    LOCAL = "local"
    S3 = "s3"
    GOOGLE_DRIVE = "google-drive"

    @classmethod
    def parse(cls, value: Union[str, "StorageType"]) -> "StorageType":
        """Parse a provider identifier, accepting legacy aliases.

        Raises:
            ValueError: unknown identifier
        """
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("_", "-")
        normalized = _ALIASES.get(normalized, normalized)
        return cls(normalized)


# Identifiers stored on older photo records; all are S3-compatible APIs
_ALIASES = {
    "aws-s3": "s3",
    "wasabi": "s3",
    "backblaze": "s3",
    "b2": "s3",
    "gdrive": "google-drive",
    "googledrive": "google-drive",
}


class LocalOptions(BaseModel):
    base_path: str


class S3Options(BaseModel):
    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None  # Wasabi / Backblaze / MinIO
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    enable_ssl: bool = True
    # botocore total attempts; 1 disables SDK-level retries
    max_retry_attempts: int = 1


class GoogleDriveOptions(BaseModel):
    client_id: str
    client_secret: str
    refresh_token: Optional[str] = None
    folder_id: Optional[str] = None
    storage_type: Literal["appdata", "visible"] = "appdata"
    redirect_uri: Optional[str] = None
    # Seed token; the live token is owned by GoogleTokenManager
    access_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    token_uri: str = "https://oauth2.googleapis.com/token"
    api_base_url: str = "https://www.googleapis.com/drive/v3"
    upload_base_url: str = "https://www.googleapis.com/upload/drive/v3"


_PAYLOAD_FIELDS = {
    StorageType.LOCAL: "local",
    StorageType.S3: "s3",
    StorageType.GOOGLE_DRIVE: "google_drive",
}


class StorageConfig(BaseModel):
    """Per-provider configuration record.

    Exactly one payload section is populated and it matches ``type``.
    """
    model_config = ConfigDict(validate_assignment=False)

    type: StorageType
    name: Optional[str] = None
    enabled: bool = True
    connect_timeout: float = 5.0
    read_timeout: float = 30.0

    local: Optional[LocalOptions] = None
    s3: Optional[S3Options] = None
    google_drive: Optional[GoogleDriveOptions] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "StorageConfig":
        populated = [
            field for field in _PAYLOAD_FIELDS.values()
            if getattr(self, field) is not None
        ]
        expected = _PAYLOAD_FIELDS[self.type]
        if populated != [expected]:
            raise ValueError(
                f"storage config of type '{self.type.value}' must populate exactly "
                f"the '{expected}' section (populated: {populated or 'none'})"
            )
        return self

    @property
    def payload(self) -> Union[LocalOptions, S3Options, GoogleDriveOptions]:
        return getattr(self, _PAYLOAD_FIELDS[self.type])

    def masked(self) -> dict:
        """Dump for admin display with secrets replaced."""
        data = self.model_dump(mode="json", exclude_none=True)
        section = data.get(_PAYLOAD_FIELDS[self.type], {})
        for secret in ("secret_access_key", "client_secret", "refresh_token", "access_token"):
            if section.get(secret):
                section[secret] = "***"
        return data
