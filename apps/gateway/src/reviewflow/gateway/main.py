"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、经理名单登记、
通知投递器启动/停止、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from reviewflow.core.config import get_db_path, get_manager_ids
from reviewflow.core.models import UserRole
from reviewflow.core.store import StoreGroup, create_store_group

from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, notifications, tasks, transitions
from .services.notification_dispatcher import NotificationDispatcher
from .services.notification_hub import NotificationHub

log = structlog.get_logger()


async def seed_managers(store_group: StoreGroup, manager_ids: list[str]) -> None:
    """登记配置中的经理名单（幂等）"""
    if not manager_ids:
        return
    async with store_group.lock:
        try:
            for user_id in manager_ids:
                await store_group.identity_store.set_role(user_id, UserRole.MANAGER)
            await store_group.conn.commit()
        except Exception:
            await store_group.conn.rollback()
            raise
    log.info("managers_seeded", count=len(manager_ids))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 和通知组件，关闭时清理"""
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    await seed_managers(store_group, get_manager_ids())

    hub = NotificationHub()
    app.state.notification_hub = hub

    dispatcher = NotificationDispatcher(store_group, hub)
    dispatcher.start()
    app.state.dispatcher = dispatcher

    yield

    await dispatcher.stop()
    if hasattr(app.state, "store_group") and app.state.store_group:
        await app.state.store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="ReviewFlow Gateway",
        version="0.1.0",
        description="任务评审流程与配对任务一致性 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging，Logging 在最外层）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire()

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(transitions.router, tags=["transitions"])
    app.include_router(notifications.router, tags=["notifications"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
