"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store 与通知组件

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request
from reviewflow.core.store import StoreGroup

from .services.notification_dispatcher import NotificationDispatcher
from .services.notification_hub import NotificationHub


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_notification_hub(request: Request) -> NotificationHub:
    """从 app.state 获取 NotificationHub 实例"""
    return request.app.state.notification_hub


def get_dispatcher(request: Request) -> NotificationDispatcher | None:
    """从 app.state 获取 NotificationDispatcher 实例（未配置时为 None）"""
    return getattr(request.app.state, "dispatcher", None)
