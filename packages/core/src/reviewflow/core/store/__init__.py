"""ReviewFlow Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from pathlib import Path

import aiosqlite

from .event_store import SqliteEventStore
from .identity_store import SqliteIdentityStore
from .notification_store import SqliteNotificationStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import (
    TaskVersionConflictError,
    commit_mutation_set,
    create_tasks_with_events,
)


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接

    同一连接上的事务互相可见，所有读写都需持有 lock，
    保证其他协程看不到未提交的中间状态。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.lock = asyncio.Lock()
        self.task_store = SqliteTaskStore(conn)
        self.event_store = SqliteEventStore(conn)
        self.notification_store = SqliteNotificationStore(conn)
        self.identity_store = SqliteIdentityStore(conn)


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteEventStore",
    "SqliteNotificationStore",
    "SqliteIdentityStore",
    "init_db",
    "TaskVersionConflictError",
    "commit_mutation_set",
    "create_tasks_with_events",
]
