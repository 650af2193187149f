from __future__ import annotations

import logging
from time import perf_counter
from typing import Any
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger("actiko.api.request")

CLIENT_VERSION_HEADER = "X-Client-Version"


def _resolve_route(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path", None)
    if isinstance(route_path, str):
        return route_path
    return request.url.path


def _request_bytes(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None or not raw.isdigit():
        return None
    return int(raw)


def _log_context(request: Request, *, request_id: str, status_code: int, started: float) -> dict[str, Any]:
    # user_id is only known once get_current_user has run.
    return {
        "request_id": request_id,
        "user_id": getattr(request.state, "user_id", None),
        "route": _resolve_route(request),
        "method": request.method,
        "status_code": status_code,
        "execution_time_ms": round((perf_counter() - started) * 1000, 2),
        "client_version": request.headers.get(CLIENT_VERSION_HEADER),
        "request_bytes": _request_bytes(request),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs one line per sync call.

    Offline clients send their app build in ``X-Client-Version`` so replayed
    batches can be traced back to the client that queued them.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = perf_counter()
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.failed",
                extra=_log_context(request, request_id=request_id, status_code=500, started=started),
            )
            raise

        logger.info(
            "request.completed",
            extra=_log_context(request, request_id=request_id, status_code=response.status_code, started=started),
        )
        response.headers["X-Request-Id"] = request_id
        return response
