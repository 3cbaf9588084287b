"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、WAL 模式、通知投递器状态、磁盘空间。
"""

import shutil

import structlog
from fastapi import APIRouter, Request
from reviewflow.core.store.sqlite_init import verify_wal_mode
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. wal_mode: WAL 模式已启用
    3. notification_dispatcher: 后台 worker 是否运行（不影响就绪结论）
    4. disk_space_mb: 磁盘剩余空间
    """
    checks: dict = {}
    all_ok = True
    store_group = getattr(request.app.state, "store_group", None)

    # 1. SQLite 连通性
    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("ready_check_failed", check="sqlite", error=str(e))
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. WAL 模式
    if checks["sqlite"] == "ok":
        try:
            checks["wal_mode"] = "ok" if await verify_wal_mode(store_group.conn) else "off"
        except Exception as e:
            checks["wal_mode"] = f"error: {str(e)}"
            all_ok = False
    else:
        checks["wal_mode"] = "skipped"

    # 3. 通知投递器：尽力而为组件，停止时降级但仍可处理任务变更
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        checks["notification_dispatcher"] = "disabled"
    elif dispatcher.is_running:
        checks["notification_dispatcher"] = "ok"
        checks["notification_queue"] = dispatcher.pending
    else:
        checks["notification_dispatcher"] = "stopped"

    # 4. 磁盘空间
    try:
        disk_usage = shutil.disk_usage("/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except Exception:
        checks["disk_space_mb"] = 0
        all_ok = False

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "checks": checks,
        },
    )
