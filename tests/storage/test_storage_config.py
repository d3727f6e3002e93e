import pytest
from pydantic import ValidationError as PydanticValidationError

from core.config import StorageSettings
from infrastructure.external.storage import (
    GoogleDriveOptions,
    LocalOptions,
    S3Options,
    StorageConfig,
    StorageType,
    get_storage_configs,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("local", StorageType.LOCAL),
        ("S3", StorageType.S3),
        ("wasabi", StorageType.S3),
        ("b2", StorageType.S3),
        ("google_drive", StorageType.GOOGLE_DRIVE),
        ("gdrive", StorageType.GOOGLE_DRIVE),
        (StorageType.LOCAL, StorageType.LOCAL),
    ],
)
def test_parse_storage_type(raw, expected):
    assert StorageType.parse(raw) is expected


@pytest.mark.parametrize("raw", ["dropbox", "", None])
def test_parse_unknown_storage_type(raw):
    with pytest.raises(ValueError):
        StorageType.parse(raw)


def test_payload_must_match_type():
    with pytest.raises(PydanticValidationError):
        StorageConfig(type=StorageType.S3, local=LocalOptions(base_path="/tmp"))
    with pytest.raises(PydanticValidationError):
        StorageConfig(type=StorageType.LOCAL)
    with pytest.raises(PydanticValidationError):
        StorageConfig(
            type=StorageType.LOCAL,
            local=LocalOptions(base_path="/tmp"),
            s3=S3Options(bucket="b"),
        )


def test_masked_hides_secrets():
    config = StorageConfig(
        type=StorageType.GOOGLE_DRIVE,
        google_drive=GoogleDriveOptions(client_id="cid", client_secret="shh", refresh_token="1//r"),
    )

    masked = config.masked()

    assert masked["google_drive"]["client_id"] == "cid"
    assert masked["google_drive"]["client_secret"] == "***"
    assert masked["google_drive"]["refresh_token"] == "***"
    assert config.google_drive.client_secret == "shh"


def test_get_storage_configs_collects_errors(tmp_path):
    settings = StorageSettings(
        read_timeout=12,
        local={"enabled": True, "base_path": str(tmp_path)},
        s3={"enabled": True, "region": "us-east-1"},
        google_drive={"enabled": False},
    )

    configs, errors = get_storage_configs(settings)

    assert set(configs) == {StorageType.LOCAL}
    assert configs[StorageType.LOCAL].read_timeout == 12
    assert configs[StorageType.LOCAL].local.base_path == str(tmp_path)
    assert "bucket" in errors[StorageType.S3]
    assert StorageType.GOOGLE_DRIVE not in errors
