"""
FastAPI application entry point
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import storage as storage_routes
from api.routes import storage_admin as storage_admin_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from application.services.asset_resolver import AssetResolver
from application.services.cache_policy import CachePolicy
from core.config import Settings, settings as default_settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.external.storage import StorageManager, build_storage_manager


# Configure logging explicitly at the entry point
configure_logging()
logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    storage_manager: Optional[StorageManager] = None,
) -> FastAPI:
    """Build the application; each app owns one StorageManager.

    Args:
        settings: Overrides the module-level settings (tests)
        storage_manager: Prebuilt manager (tests); built from settings otherwise
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        manager = storage_manager or build_storage_manager(settings)
        app.state.storage_manager = manager
        logger.info(
            "storage_initialized",
            providers=[kind.value for kind in manager.credentials.configured_kinds()],
        )
        try:
            yield
        finally:
            await manager.aclose()
            logger.info("application_shutdown", message="Application shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="Photo gallery storage and media serving",
    )

    # Static per-app collaborators; the manager is attached in lifespan
    app.state.cache_policy = CachePolicy.from_settings(settings.cache)
    app.state.asset_resolver = AssetResolver(
        placeholder_key=settings.SERVE_PLACEHOLDER_KEY,
        serve_prefix=f"{settings.API_PREFIX}/storage/serve",
    )

    # Middleware runs bottom-up: RequestID first so logging sees request_id
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "HEAD", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["ETag", "Last-Modified", "X-Request-ID"],
    )

    register_exception_handlers(app)

    app.include_router(storage_routes.router, prefix=settings.API_PREFIX)
    app.include_router(storage_admin_routes.router, prefix=settings.API_PREFIX)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Liveness; does not call storage providers."""
        manager = getattr(app.state, "storage_manager", None)
        return success_response(data={
            "status": "healthy",
            "active_providers": manager.active_providers() if manager else [],
        })

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.DEBUG,
        log_level="debug" if default_settings.DEBUG else "info"
    )
