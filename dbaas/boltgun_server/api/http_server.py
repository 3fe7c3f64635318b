"""
HTTP server implementation for Boltgun.

This module binds BucketService operations to routes:

    POST /authenticate   {username, password}          -> {token}
    POST /update         {key, bucket, value, token}   -> {success}
    POST /retrieve       {key, bucket, token}          -> {value}
    POST /remove         {key, bucket, token}          -> {success}
    GET  /health                                       -> {healthy, backup}

Invariants:
    - Every response body is JSON
    - Content-Type of requests is not enforced
    - The body is fully read before any store transaction starts

How to change safely:
    - Keep routes and error messages stable; the SDK depends on them
    - Add new routes instead of changing existing request shapes
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import hdrs, web
from aiohttp.http_exceptions import HttpProcessingError

from ..config import HttpConfig
from .service import BODY_UNREADABLE, RESPONSE_FAILED, BucketService, OperationResult

logger = logging.getLogger(__name__)

Operation = Callable[[bytes], Awaitable[OperationResult]]


def create_http_app(
    service: BucketService,
    scheduler: Any = None,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create the HTTP application for Boltgun.

    Args:
        service: BucketService instance
        scheduler: Optional BackupScheduler, reported by /health
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException as e:
            if e.status < 400:
                raise
            headers = {hdrs.ALLOW: e.headers[hdrs.ALLOW]} if hdrs.ALLOW in e.headers else None
            return web.json_response({"error": e.reason}, status=e.status, headers=headers)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response({"error": RESPONSE_FAILED}, status=500)

    app = web.Application(middlewares=[error_middleware], client_max_size=config.client_max_size)

    app.router.add_post("/authenticate", lambda r: handle_operation(r, service.issue_token))
    app.router.add_post("/update", lambda r: handle_operation(r, service.update))
    app.router.add_post("/retrieve", lambda r: handle_operation(r, service.retrieve))
    app.router.add_post("/remove", lambda r: handle_operation(r, service.remove))
    app.router.add_get("/health", lambda r: handle_health(r, scheduler))

    return app


async def handle_operation(request: web.Request, operation: Operation) -> web.Response:
    """Read the body, run the operation, and render its result."""
    try:
        body = await request.read()
    except (HttpProcessingError, ConnectionResetError) as e:
        logger.info(f"Error reading request body: {e}", extra={"path": request.path})
        return web.json_response({"error": BODY_UNREADABLE}, status=400)

    result = await operation(body)
    return web.json_response(result.payload, status=result.status)


async def handle_health(request: web.Request, scheduler: Any) -> web.Response:
    """Handle GET /health - Liveness and backup status."""
    return web.json_response(
        {
            "healthy": True,
            "backup": scheduler.stats if scheduler is not None else None,
        }
    )
