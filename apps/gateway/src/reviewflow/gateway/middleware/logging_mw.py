"""LoggingMiddleware -- 请求级日志上下文

每个 HTTP 请求绑定 request_id（X-Request-ID 原样回传，缺省生成 ULID），
查询参数中带 actor_id 的请求（如 DELETE /api/tasks/{task_id}）同时绑定 actor_id。
健康检查不记录请求日志。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

log = structlog.get_logger()

_UNLOGGED_PATHS = frozenset({"/health", "/ready"})


def request_context(request: Request, request_id: str) -> dict[str, str]:
    """构造请求级日志上下文"""
    context = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
    }
    actor_id = request.query_params.get("actor_id")
    if actor_id:
        context["actor_id"] = actor_id
    return context


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(ULID())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**request_context(request, request_id))

        if request.url.path in _UNLOGGED_PATHS:
            response = await call_next(request)
        else:
            start = time.monotonic()
            response = await call_next(request)
            await log.ainfo(
                "request_completed",
                status_code=response.status_code,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        response.headers["X-Request-ID"] = request_id
        return response
