"""TraceMiddleware -- 任务级 trace_id 绑定

路径中包含 /tasks/{task_id} 时绑定 trace_id=trace-{task_id}，
与事件表中的 trace_id 一致，便于把请求日志和审计事件串起来。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ULID 字符串长度
_ULID_LENGTH = 26


def extract_task_id(path: str) -> str | None:
    """从 /api/tasks/{task_id}[/...] 形式的路径中提取 task_id"""
    parts = path.split("/")
    for i, part in enumerate(parts[:-1]):
        if part == "tasks":
            candidate = parts[i + 1]
            if len(candidate) == _ULID_LENGTH:
                return candidate
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件 -- 为任务操作绑定 trace_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        task_id = extract_task_id(request.url.path)
        if task_id:
            structlog.contextvars.bind_contextvars(trace_id=f"trace-{task_id}")

        return await call_next(request)
