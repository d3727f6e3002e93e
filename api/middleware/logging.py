"""
Access logging for the serve and admin routes
"""
import json
import time
from typing import Any, Optional
from urllib.parse import parse_qs

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

# Admin bodies carry OAuth codes and provider secrets
SENSITIVE_FIELDS = frozenset({
    "code",
    "token",
    "secret",
    "client_secret",
    "secret_access_key",
    "access_key_id",
    "access_token",
    "refresh_token",
})


def mask_sensitive(data: Any) -> Any:
    if isinstance(data, dict):
        return {
            k: "***" if str(k).lower() in SENSITIVE_FIELDS else mask_sensitive(v)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [mask_sensitive(v) for v in data]
    return data


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    One ``request_started`` line and one completion line per request.

    The completion event is ``request_completed``, ``request_client_error``
    or ``request_server_error`` depending on the status. Media responses
    also log the served byte count and whether the request was conditional.
    """

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_body_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = await self._request_fields(request)
        logger.info("request_started", **fields)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=time.perf_counter() - started,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
                **fields,
            )
            raise

        duration = time.perf_counter() - started
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        self._log_completion(response, duration, fields)
        return response

    async def _request_fields(self, request: Request) -> dict:
        fields: dict[str, Any] = {"method": request.method, "path": request.url.path}
        if request.query_params:
            fields["query_params"] = mask_sensitive(dict(request.query_params))
        if request.headers.get("If-None-Match") or request.headers.get("If-Modified-Since"):
            fields["conditional"] = True
        user_agent = request.headers.get("User-Agent")
        if user_agent:
            fields["user_agent"] = user_agent

        if request.method in ("POST", "PUT", "PATCH") and self._wants_body(request):
            body = await self._read_body(request)
            if body is not None:
                fields["body"] = body
        return fields

    def _wants_body(self, request: Request) -> bool:
        # X-Log-Body overrides the configured default
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return self.log_body_default and settings.DEBUG

    async def _read_body(self, request: Request) -> Optional[Any]:
        raw = await request.body()
        if not raw:
            return None
        text = raw[: self.max_body_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            try:
                return mask_sensitive(json.loads(text))
            except ValueError:
                return text
        if "application/x-www-form-urlencoded" in content_type:
            return mask_sensitive({k: v[0] if len(v) == 1 else v for k, v in parse_qs(text).items()})
        return text

    def _log_completion(self, response: Response, duration: float, fields: dict) -> None:
        status_code = response.status_code
        data = {"status_code": status_code, "duration": round(duration, 4), **fields}
        length = response.headers.get("content-length")
        if length and length.isdigit():
            data["bytes"] = int(length)

        if status_code >= 500:
            logger.error("request_server_error", **data)
        elif status_code >= 400:
            logger.warning("request_client_error", **data)
        else:
            logger.info("request_completed", **data)
