"""
API dependencies: services built from the per-app StorageManager on app.state
"""
from fastapi import Depends, HTTPException, Request, status

from application.ports.storage import MediaStoragePort
from application.services.asset_resolver import AssetResolver
from application.services.cache_policy import CachePolicy
from application.services.media_service import MediaService
from infrastructure.adapters.storage_port import StorageManagerPortAdapter
from infrastructure.external.storage import StorageManager


def get_storage_manager(request: Request) -> StorageManager:
    manager = getattr(request.app.state, "storage_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage manager not initialized",
        )
    return manager


def get_cache_policy(request: Request) -> CachePolicy:
    return request.app.state.cache_policy


def get_asset_resolver(request: Request) -> AssetResolver:
    return request.app.state.asset_resolver


def get_media_storage(manager: StorageManager = Depends(get_storage_manager)) -> MediaStoragePort:
    return StorageManagerPortAdapter(manager)


def get_media_service(
    storage: MediaStoragePort = Depends(get_media_storage),
    cache_policy: CachePolicy = Depends(get_cache_policy),
) -> MediaService:
    return MediaService(storage, cache_policy)
