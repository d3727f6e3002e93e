"""Media serving routes."""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from api.dependencies import get_asset_resolver, get_media_service
from application.services.asset_resolver import AssetResolver
from application.services.media_service import MediaResponse, MediaService
from core.response import Response as ApiResponse, success_response
from domain.photo import PhotoStorageRecord


router = APIRouter(
    prefix="/storage",
    tags=["Media"],
)


class ResolvedAssetResponse(BaseModel):
    provider: str
    key: str
    variant: str
    is_placeholder: bool
    url: str


def _to_http(result: MediaResponse) -> Response:
    if result.error is not None:
        return JSONResponse(status_code=result.status_code, content=result.error)
    if result.status_code == 304:
        return Response(status_code=304, headers=result.headers)
    # Explicit Content-Length wins over the body length, so HEAD reports the object size
    return Response(content=result.body, status_code=result.status_code, headers=result.headers)


@router.api_route(
    "/serve/{path:path}",
    methods=["GET", "HEAD"],
    summary="Serve a stored media object",
    response_class=Response,
)
async def serve_media(
    path: str,
    request: Request,
    service: MediaService = Depends(get_media_service),
):
    """
    Stream ``{provider}/{key}`` from the configured provider with cache headers.

    Conditional requests (``If-None-Match``/``If-Modified-Since``) for
    cacheable content get an empty 304 without touching the provider.
    """
    result = await service.serve(
        path,
        request.headers,
        include_body=request.method != "HEAD",
    )
    return _to_http(result)


@router.post(
    "/resolve",
    summary="Resolve a photo's storage record to a serve URL",
    response_model=ApiResponse[ResolvedAssetResponse],
)
async def resolve_asset(
    record: Optional[dict[str, Any]] = Body(default=None),
    prefer_thumbnail: bool = Query(True),
    resolver: AssetResolver = Depends(get_asset_resolver),
):
    """Pick the key to display for a stored ``photo.storage`` document.

    A missing record resolves to the placeholder image.
    """
    asset = resolver.resolve(
        PhotoStorageRecord.from_mapping(record) if record else None,
        prefer_thumbnail=prefer_thumbnail,
    )
    return success_response(data=ResolvedAssetResponse(
        provider=asset.provider,
        key=asset.key,
        variant=asset.variant.value,
        is_placeholder=asset.is_placeholder,
        url=resolver.serve_url(asset),
    ))
