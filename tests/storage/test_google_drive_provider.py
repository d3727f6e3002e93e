import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from infrastructure.external.storage import (
    AccessToken,
    ConfigurationError,
    ErrorClassification,
    PermissionDeniedError,
    RateLimitedError,
    StorageError,
    TransientError,
)
from infrastructure.external.storage.providers.google_drive import build_google_drive_provider


async def _provider(config, fake, initial_token=None):
    return await build_google_drive_provider(
        config, initial_token=initial_token, transport=httpx.MockTransport(fake.handler)
    )


def _valid(value: str) -> AccessToken:
    return AccessToken(value=value, expires_at=datetime.now(timezone.utc) + timedelta(hours=1))


@pytest.mark.asyncio
async def test_get_buffer_by_file_id(drive_config, fake_drive):
    file_id = fake_drive.add_file("p1.jpg", "appDataFolder", b"jpeg-bytes")
    provider = await _provider(drive_config, fake_drive)

    assert await provider.get_buffer(file_id) == b"jpeg-bytes"
    assert fake_drive.token_requests[0]["grant_type"] == "refresh_token"
    await provider.aclose()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(drive_config, fake_drive):
    file_id = fake_drive.add_file("p1.jpg", "appDataFolder", b"data")
    provider = await _provider(drive_config, fake_drive)

    results = await asyncio.gather(*(provider.get_buffer(file_id) for _ in range(8)))

    assert results == [b"data"] * 8
    assert len(fake_drive.token_requests) == 1
    assert provider.tokens.refresh_count == 1
    await provider.aclose()


@pytest.mark.asyncio
async def test_rejected_token_is_refreshed_and_retried_once(drive_config, fake_drive):
    file_id = fake_drive.add_file("p1.jpg", "appDataFolder", b"data")
    fake_drive.rejected_tokens = {"stale"}
    provider = await _provider(drive_config, fake_drive, initial_token=_valid("stale"))

    assert await provider.get_buffer(file_id) == b"data"
    assert len(fake_drive.token_requests) == 1
    assert fake_drive.requests[-1].headers["Authorization"] == "Bearer tok-1"
    await provider.aclose()


@pytest.mark.asyncio
async def test_second_rejection_is_permission_denied(drive_config, fake_drive):
    file_id = fake_drive.add_file("p1.jpg", "appDataFolder", b"data")
    fake_drive.rejected_tokens = {"stale", "tok-1"}
    provider = await _provider(drive_config, fake_drive, initial_token=_valid("stale"))

    with pytest.raises(PermissionDeniedError) as excinfo:
        await provider.get_buffer(file_id)

    assert excinfo.value.code == "401"
    assert excinfo.value.classification == ErrorClassification.AUTH
    await provider.aclose()


@pytest.mark.asyncio
async def test_put_creates_folders_and_path_resolves(drive_config, fake_drive):
    provider = await _provider(drive_config, fake_drive)
    data = b"\x89PNG" + bytes(range(200))

    file_id = await provider.put_buffer("albums/a1/p1.png", data)

    folders = {f["name"] for f in fake_drive.files.values() if f["mimeType"].endswith("folder")}
    assert folders == {"albums", "a1"}
    assert fake_drive.files[file_id]["mimeType"] == "image/png"

    # a fresh provider has no path cache and must walk the folders
    fresh = await _provider(drive_config, fake_drive)
    assert await fresh.get_buffer("albums/a1/p1.png") == data
    info = await fresh.get_info("/albums/a1/p1.png")
    assert info.key == file_id
    assert info.size == len(data)
    assert info.last_modified == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    await provider.aclose()
    await fresh.aclose()


@pytest.mark.asyncio
async def test_put_existing_path_overwrites_in_place(drive_config, fake_drive):
    provider = await _provider(drive_config, fake_drive)
    first = await provider.put_buffer("albums/p1.jpg", b"one")
    second = await provider.put_buffer("albums/p1.jpg", b"two")

    assert first == second
    assert await provider.get_buffer(first) == b"two"
    await provider.aclose()


@pytest.mark.asyncio
async def test_missing_objects_are_none(drive_config, fake_drive):
    provider = await _provider(drive_config, fake_drive)

    assert await provider.get_buffer("albums/missing.jpg") is None
    assert await provider.get_buffer("x" * 33) is None
    assert await provider.get_info("x" * 33) is None
    await provider.aclose()


@pytest.mark.asyncio
async def test_delete_is_idempotent(drive_config, fake_drive):
    provider = await _provider(drive_config, fake_drive)
    await provider.put_buffer("albums/p1.jpg", b"one")

    assert await provider.delete("albums/p1.jpg") is True
    assert await provider.delete("albums/p1.jpg") is False
    assert await provider.get_buffer("albums/p1.jpg") is None
    await provider.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body,expected",
    [
        (429, {"error": {"message": "slow down"}}, RateLimitedError),
        (403, {"error": {"message": "quota", "errors": [{"reason": "userRateLimitExceeded"}]}}, RateLimitedError),
        (403, {"error": {"message": "forbidden", "errors": [{"reason": "insufficientPermissions"}]}}, PermissionDeniedError),
        (503, {"error": {"message": "backend error"}}, TransientError),
    ],
)
async def test_api_errors_are_classified(drive_config, fake_drive, status, body, expected):
    file_id = fake_drive.add_file("p1.jpg", "appDataFolder", b"data")
    fake_drive.api_error = (status, body)
    provider = await _provider(drive_config, fake_drive)

    with pytest.raises(expected) as excinfo:
        await provider.get_buffer(file_id)

    assert excinfo.value.provider == "google-drive"
    await provider.aclose()


@pytest.mark.asyncio
async def test_timeout_is_transient(drive_config, fake_drive):
    fake_drive.api_exception = httpx.ReadTimeout("timed out")
    provider = await _provider(drive_config, fake_drive)

    with pytest.raises(TransientError) as excinfo:
        await provider.get_buffer("x" * 33)

    assert excinfo.value.retryable
    await provider.aclose()


@pytest.mark.asyncio
async def test_unreadable_api_response_is_storage_error(drive_config, fake_drive):
    fake_drive.api_error = (200, {"kind": "drive#file"})
    provider = await _provider(drive_config, fake_drive)

    with pytest.raises(StorageError) as excinfo:
        await provider.put_buffer("p1.jpg", b"data")

    assert excinfo.value.code == "invalid_response"
    assert excinfo.value.provider == "google-drive"
    await provider.aclose()


@pytest.mark.asyncio
async def test_validate_connection(drive_config, fake_drive):
    provider = await _provider(drive_config, fake_drive)
    assert await provider.validate_connection() is True
    await provider.aclose()


@pytest.mark.asyncio
async def test_validate_without_refresh_token_is_configuration_error(drive_config, fake_drive):
    drive_config.google_drive.refresh_token = None
    provider = await _provider(drive_config, fake_drive)

    with pytest.raises(ConfigurationError) as excinfo:
        await provider.validate_connection()

    assert "refresh_token" in str(excinfo.value)
    assert excinfo.value.suggestions
    assert fake_drive.requests == []
    await provider.aclose()


@pytest.mark.asyncio
async def test_validate_with_revoked_grant_suggests_reauthorizing(drive_config, fake_drive):
    fake_drive.token_error = (400, {"error": "invalid_grant", "error_description": "Token has been expired or revoked."})
    provider = await _provider(drive_config, fake_drive)

    with pytest.raises(PermissionDeniedError) as excinfo:
        await provider.validate_connection()

    assert excinfo.value.code == "invalid_grant"
    assert any("authorize" in s.lower() for s in excinfo.value.suggestions)
    await provider.aclose()
