"""Middlewares personalizados para LeadRelay."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger("app.request")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Registra información básica de cada request HTTP entrante.

    Las conexiones WebSocket no pasan por aquí; `BaseHTTPMiddleware` sólo
    intercepta scopes HTTP.
    """

    def __init__(self, app: ASGIApp, skip_prefixes: tuple[str, ...] | None = None) -> None:
        super().__init__(app)
        self._skip_prefixes = (
            skip_prefixes if skip_prefixes is not None else settings.request_log_skip_prefixes
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path.startswith(self._skip_prefixes):
            return await call_next(request)

        request_id = request.headers.get("x-request-id") or uuid4().hex
        start = time.perf_counter()
        client_ip = request.headers.get("x-forwarded-for")
        if client_ip:
            client_ip = client_ip.split(",")[0].strip()
        elif request.client:
            client_ip = request.client.host

        logger.info(
            "request.started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "client_ip": client_ip,
            },
        )

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request.failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["x-request-id"] = request_id

        logger.info(
            "request.completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        return response
