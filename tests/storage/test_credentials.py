import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from infrastructure.external.storage import (
    AccessToken,
    ConfigurationError,
    CredentialStore,
    ErrorClassification,
    GoogleTokenManager,
    LocalOptions,
    PermissionDeniedError,
    StorageConfig,
    StorageType,
    TransientError,
)
from infrastructure.external.storage.credentials import build_authorization_url, exchange_code


def _client(fake) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))


def test_access_token_expiry_margin():
    now = datetime.now(timezone.utc)
    assert AccessToken("a", now + timedelta(minutes=10)).is_expired() is False
    assert AccessToken("a", now + timedelta(seconds=30)).is_expired() is True
    assert AccessToken("a", now - timedelta(seconds=1)).is_expired(margin=timedelta(0)) is True


def test_access_token_from_response():
    token = AccessToken.from_response({"access_token": "abc", "expires_in": 120})
    assert token.value == "abc"
    assert not token.is_expired()


@pytest.mark.asyncio
async def test_token_manager_is_single_flight(drive_config, fake_drive):
    refreshed = []
    async with _client(fake_drive) as client:
        tokens = GoogleTokenManager(drive_config.google_drive, client, on_refresh=refreshed.append)

        values = await asyncio.gather(*(tokens.get_token() for _ in range(10)))

    assert set(values) == {"tok-1"}
    assert tokens.refresh_count == 1
    assert len(fake_drive.token_requests) == 1
    assert [t.value for t in refreshed] == ["tok-1"]


@pytest.mark.asyncio
async def test_expired_token_is_refreshed(drive_config, fake_drive):
    expired = AccessToken("old", datetime.now(timezone.utc) - timedelta(minutes=1))
    async with _client(fake_drive) as client:
        tokens = GoogleTokenManager(drive_config.google_drive, client, initial=expired)
        assert await tokens.get_token() == "tok-1"


@pytest.mark.asyncio
async def test_failed_refresh_keeps_cached_token(drive_config, fake_drive):
    expired = AccessToken("old", datetime.now(timezone.utc) - timedelta(minutes=1))
    fake_drive.token_error = (400, {"error": "invalid_grant"})
    async with _client(fake_drive) as client:
        tokens = GoogleTokenManager(drive_config.google_drive, client, initial=expired)

        with pytest.raises(PermissionDeniedError) as excinfo:
            await tokens.get_token()

    assert excinfo.value.code == "invalid_grant"
    assert excinfo.value.suggestions
    assert tokens.current is expired
    assert tokens.refresh_count == 0


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"token_type": "Bearer"}),
        httpx.Response(200, json={"access_token": "abc", "expires_in": "soon"}),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, content=b"<html>captive portal</html>"),
    ],
)
@pytest.mark.asyncio
async def test_malformed_token_response_is_auth_error(drive_config, response):
    expired = AccessToken("old", datetime.now(timezone.utc) - timedelta(minutes=1))

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)) as client:
        tokens = GoogleTokenManager(drive_config.google_drive, client, initial=expired)
        with pytest.raises(PermissionDeniedError) as excinfo:
            await tokens.get_token()

    assert excinfo.value.code == "invalid_token_response"
    assert excinfo.value.classification == ErrorClassification.AUTH
    assert tokens.current is expired
    assert tokens.refresh_count == 0


@pytest.mark.asyncio
async def test_exchange_code_with_malformed_response(drive_config):
    def handler(request):
        return httpx.Response(200, json={"refresh_token": "1//r"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(PermissionDeniedError) as excinfo:
            await exchange_code(drive_config.google_drive, "4/code", client=client)

    assert excinfo.value.code == "invalid_token_response"


@pytest.mark.asyncio
async def test_unreachable_token_endpoint_is_transient(drive_config):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        tokens = GoogleTokenManager(drive_config.google_drive, client)
        with pytest.raises(TransientError):
            await tokens.get_token()


@pytest.mark.asyncio
async def test_missing_refresh_token(drive_config, fake_drive):
    drive_config.google_drive.refresh_token = None
    async with _client(fake_drive) as client:
        tokens = GoogleTokenManager(drive_config.google_drive, client)
        with pytest.raises(PermissionDeniedError) as excinfo:
            await tokens.get_token()

    assert excinfo.value.code == "missing_refresh_token"
    assert fake_drive.token_requests == []


def test_invalidate_only_drops_matching_token(drive_config):
    tokens = GoogleTokenManager(drive_config.google_drive, client=None, initial=AccessToken(
        "current", datetime.now(timezone.utc) + timedelta(hours=1)
    ))
    tokens.invalidate("older")
    assert tokens.current.value == "current"
    tokens.invalidate("current")
    assert tokens.current is None


@pytest.mark.parametrize(
    "storage_type,scope",
    [
        ("appdata", "https://www.googleapis.com/auth/drive.appdata"),
        ("visible", "https://www.googleapis.com/auth/drive.file"),
    ],
)
def test_authorization_url(storage_type, scope):
    url = build_authorization_url("cid", "http://localhost/cb", storage_type, state="xyz")

    parsed = urlparse(url)
    params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
    assert parsed.netloc == "accounts.google.com"
    assert params["scope"] == scope
    assert params["access_type"] == "offline"
    assert params["prompt"] == "consent"
    assert params["redirect_uri"] == "http://localhost/cb"
    assert params["state"] == "xyz"


@pytest.mark.asyncio
async def test_exchange_code(drive_config, fake_drive):
    async with _client(fake_drive) as client:
        refresh, access = await exchange_code(drive_config.google_drive, "4/code", client=client)

    assert refresh == "1//new-refresh"
    assert access.value == "tok-1"
    form = fake_drive.token_requests[0]
    assert form["grant_type"] == "authorization_code"
    assert form["redirect_uri"] == drive_config.google_drive.redirect_uri


@pytest.mark.asyncio
async def test_exchange_code_requires_redirect(drive_config, fake_drive):
    drive_config.google_drive.redirect_uri = None
    async with _client(fake_drive) as client:
        with pytest.raises(ConfigurationError):
            await exchange_code(drive_config.google_drive, "4/code", client=client)


@pytest.mark.asyncio
async def test_exchange_code_rejected(drive_config, fake_drive):
    fake_drive.token_error = (400, {"error": "invalid_grant"})
    async with _client(fake_drive) as client:
        with pytest.raises(PermissionDeniedError) as excinfo:
            await exchange_code(drive_config.google_drive, "4/used", client=client)
    assert excinfo.value.code == "invalid_grant"


def test_store_snapshots_are_isolated(local_config):
    store = CredentialStore({StorageType.LOCAL: local_config})

    snapshot = store.get_config(StorageType.LOCAL)
    snapshot.local.base_path = "/elsewhere"

    assert store.get_config(StorageType.LOCAL).local.base_path == local_config.local.base_path


def test_store_rejects_missing_disabled_and_invalid(local_config):
    disabled = local_config.model_copy(update={"enabled": False})
    store = CredentialStore(
        {StorageType.LOCAL: disabled},
        errors={StorageType.S3: "bucket: field required"},
    )

    with pytest.raises(ConfigurationError, match="disabled"):
        store.get_config(StorageType.LOCAL)
    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        store.get_config(StorageType.S3)
    with pytest.raises(ConfigurationError, match="not configured"):
        store.get_config(StorageType.GOOGLE_DRIVE)
    assert store.configured_kinds() == [StorageType.LOCAL, StorageType.S3]


def test_update_config_bumps_version_and_clears_error(tmp_path):
    store = CredentialStore(errors={StorageType.LOCAL: "broken"})
    assert store.version(StorageType.LOCAL) == 0

    config = StorageConfig(type=StorageType.LOCAL, local=LocalOptions(base_path=str(tmp_path)))
    assert store.update_config(config) == 1
    assert store.error_for(StorageType.LOCAL) is None
    assert store.get_config(StorageType.LOCAL).local.base_path == str(tmp_path)


def test_update_refresh_token(drive_config):
    store = CredentialStore({StorageType.GOOGLE_DRIVE: drive_config})
    token = AccessToken("fresh", datetime.now(timezone.utc) + timedelta(hours=1))

    version = store.update_refresh_token("1//rotated", token)

    assert version == 1
    assert store.get_config(StorageType.GOOGLE_DRIVE).google_drive.refresh_token == "1//rotated"
    assert store.cached_access_token(StorageType.GOOGLE_DRIVE) is token
