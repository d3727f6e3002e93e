"""
Configuration - project settings management
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional


class LocalStorageSettings(BaseModel):
    enabled: bool = True
    base_path: str = "./uploads"


class S3StorageSettings(BaseModel):
    # Also used for Wasabi / Backblaze B2 / MinIO through ``endpoint``
    enabled: bool = False
    bucket: Optional[str] = None
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    enable_ssl: bool = True
    # botocore total attempts; 1 disables SDK-level retries
    max_retry_attempts: int = 1


class GoogleDriveSettings(BaseModel):
    enabled: bool = False
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    folder_id: Optional[str] = None
    # appdata = hidden app folder, visible = regular folder in the user's Drive
    storage_type: Literal["appdata", "visible"] = "appdata"
    redirect_uri: Optional[str] = None
    token_uri: str = "https://oauth2.googleapis.com/token"
    api_base_url: str = "https://www.googleapis.com/drive/v3"
    upload_base_url: str = "https://www.googleapis.com/upload/drive/v3"


class StorageSettings(BaseModel):
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    # Run validate_connection() when a provider client is first built
    validate_on_build: bool = False
    local: LocalStorageSettings = Field(default_factory=LocalStorageSettings)
    s3: S3StorageSettings = Field(default_factory=S3StorageSettings)
    google_drive: GoogleDriveSettings = Field(default_factory=GoogleDriveSettings)


class CacheEntrySettings(BaseModel):
    max_age: int = 0
    s_maxage: Optional[int] = None
    stale_while_revalidate: int = 0
    visibility: Literal["public", "private"] = "public"
    must_revalidate: bool = False
    no_store: bool = False
    no_cache: bool = False


def _image_policy() -> CacheEntrySettings:
    return CacheEntrySettings(max_age=31_536_000, s_maxage=31_536_000, stale_while_revalidate=86_400)


def _thumbnail_policy() -> CacheEntrySettings:
    return CacheEntrySettings(max_age=15_552_000, s_maxage=15_552_000, stale_while_revalidate=86_400)


def _api_payload_policy() -> CacheEntrySettings:
    return CacheEntrySettings(max_age=300, s_maxage=300, stale_while_revalidate=60)


def _sensitive_policy() -> CacheEntrySettings:
    return CacheEntrySettings(
        visibility="private",
        must_revalidate=True,
        no_store=True,
        no_cache=True,
    )


class CacheSettings(BaseModel):
    """Cache-Control table per content class (loaded once at startup)."""
    image: CacheEntrySettings = Field(default_factory=_image_policy)
    thumbnail: CacheEntrySettings = Field(default_factory=_thumbnail_policy)
    api_payload: CacheEntrySettings = Field(default_factory=_api_payload_policy)
    sensitive: CacheEntrySettings = Field(default_factory=_sensitive_policy)


class Settings(BaseSettings):
    """Project settings"""

    # Basics
    PROJECT_NAME: str = Field(default="Gallery Media Storage")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: Optional[str] = Field(default=None)

    # Mount prefix for the media and admin routers ("" serves /storage/serve/...)
    API_PREFIX: str = Field(default="")

    # Returned by the asset resolver when a photo has no usable key
    SERVE_PLACEHOLDER_KEY: str = Field(default="placeholder.jpg")

    CORS_ORIGINS: list = Field(default=["http://localhost:3000", "http://localhost:8000"])

    # Grouped settings, overridable with nested env keys (STORAGE__S3__BUCKET=...)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    # Request logging
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = Field(default=False)
    LOG_REQUEST_BODY_MAX_BYTES: int = Field(default=2048)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """Accept either a JSON list string or a comma separated string."""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except ValueError:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v

    @field_validator("API_PREFIX")
    @classmethod
    def _normalize_prefix(cls, v: str) -> str:
        v = (v or "").strip().rstrip("/")
        if v and not v.startswith("/"):
            v = f"/{v}"
        return v


settings = Settings()
