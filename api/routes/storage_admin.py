"""Storage administration routes.

Mounted under ``/admin/storage``; the host application is expected to put
its own admin authentication in front of this router.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.dependencies import get_storage_manager
from core.logging_config import get_logger
from core.response import Response as ApiResponse, success_response
from domain.common.exceptions import StorageProviderUnavailableException, UnknownStorageProviderException
from infrastructure.external.storage import StorageError, StorageManager, StorageType
from infrastructure.external.storage.credentials import build_authorization_url, exchange_code


logger = get_logger(__name__)

router = APIRouter(
    prefix="/admin/storage",
    tags=["Storage admin"],
)


class ProviderStatus(BaseModel):
    provider: str
    configured: bool
    enabled: bool
    active: bool
    error: Optional[str] = None
    config: Optional[dict] = None


class ConnectionTestResult(BaseModel):
    provider: str
    ok: bool
    classification: Optional[str] = None
    message: Optional[str] = None
    suggestions: list[str] = Field(default_factory=list)


class AuthUrlResponse(BaseModel):
    url: str
    storage_type: str


class CodeExchangeRequest(BaseModel):
    code: str = Field(..., min_length=1)
    redirect_uri: Optional[str] = None


class CodeExchangeResponse(BaseModel):
    provider: str
    version: int
    access_token_expires_at: str


def _parse_kind(provider: str) -> StorageType:
    try:
        return StorageType.parse(provider)
    except ValueError:
        raise UnknownStorageProviderException(provider)


@router.get(
    "/providers",
    summary="List storage providers",
    response_model=ApiResponse[list[ProviderStatus]],
)
async def list_providers(manager: StorageManager = Depends(get_storage_manager)):
    store = manager.credentials
    active = set(manager.active_providers())
    items = []
    for kind in StorageType:
        config = store.describe(kind)
        items.append(ProviderStatus(
            provider=kind.value,
            configured=config is not None,
            enabled=bool(config and config.enabled),
            active=kind.value in active,
            error=store.error_for(kind),
            config=config.masked() if config else None,
        ))
    return success_response(data=items)


@router.post(
    "/{provider}/test",
    summary="Test a provider connection",
    response_model=ApiResponse[ConnectionTestResult],
)
async def check_provider_connection(provider: str, manager: StorageManager = Depends(get_storage_manager)):
    kind = _parse_kind(provider)
    try:
        await manager.validate(kind)
    except StorageError as exc:
        logger.warning(
            "storage_connection_test_failed",
            provider=kind.value,
            classification=exc.classification.value,
            code=exc.code,
        )
        result = ConnectionTestResult(
            provider=kind.value,
            ok=False,
            classification=exc.classification.value,
            message=exc.message,
            suggestions=exc.suggestions,
        )
        return success_response(data=result, message="Connection test failed")

    logger.info("storage_connection_test_passed", provider=kind.value)
    return success_response(data=ConnectionTestResult(provider=kind.value, ok=True))


@router.post(
    "/{provider}/invalidate",
    summary="Drop a cached provider client",
)
async def invalidate_provider(provider: str, manager: StorageManager = Depends(get_storage_manager)):
    kind = _parse_kind(provider)
    dropped = await manager.invalidate(kind)
    return success_response(data={"provider": kind.value, "invalidated": dropped})


@router.get(
    "/google-drive/auth-url",
    summary="Google Drive consent URL",
    response_model=ApiResponse[AuthUrlResponse],
)
async def google_drive_auth_url(
    redirect_uri: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    manager: StorageManager = Depends(get_storage_manager),
):
    kind = StorageType.GOOGLE_DRIVE
    config = manager.credentials.describe(kind)
    if config is None:
        raise StorageProviderUnavailableException(kind.value, "Google Drive is not configured")
    options = config.google_drive
    redirect = redirect_uri or options.redirect_uri
    if not redirect:
        raise StorageProviderUnavailableException(kind.value, "No OAuth redirect URI configured")

    url = build_authorization_url(options.client_id, redirect, options.storage_type, state=state)
    return success_response(data=AuthUrlResponse(url=url, storage_type=options.storage_type))


@router.post(
    "/google-drive/exchange",
    summary="Exchange an authorization code for a refresh token",
    response_model=ApiResponse[CodeExchangeResponse],
)
async def google_drive_exchange(
    payload: CodeExchangeRequest,
    manager: StorageManager = Depends(get_storage_manager),
):
    kind = StorageType.GOOGLE_DRIVE
    config = manager.credentials.describe(kind)
    if config is None:
        raise StorageProviderUnavailableException(kind.value, "Google Drive is not configured")

    refresh_token, access_token = await exchange_code(
        config.google_drive, payload.code, redirect_uri=payload.redirect_uri
    )
    version = manager.credentials.update_refresh_token(refresh_token, access_token)
    await manager.invalidate(kind)
    logger.info("drive_reauthorized", version=version)
    return success_response(
        data=CodeExchangeResponse(
            provider=kind.value,
            version=version,
            access_token_expires_at=access_token.expires_at.isoformat(),
        ),
        message="Google Drive authorized",
    )
