"""NotificationStore SQLite 实现

idempotency_key 唯一：同一效果请求重复投递只会落一条记录。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import NotificationKind
from ..models.notification import Notification

_COLUMNS = (
    "notification_id, recipient_id, kind, task_id, message, "
    "idempotency_key, created_at, is_read"
)


class SqliteNotificationStore:
    """NotificationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def put_notification(self, notification: Notification) -> bool:
        """写入通知（不提交事务）

        Returns:
            True 表示新写入，False 表示幂等键已存在
        """
        cursor = await self._conn.execute(
            f"""
            INSERT OR IGNORE INTO notifications ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                notification.notification_id,
                notification.recipient_id,
                notification.kind.value,
                notification.task_id,
                notification.message,
                notification.idempotency_key,
                notification.created_at.isoformat(),
                int(notification.is_read),
            ),
        )
        return cursor.rowcount == 1

    async def get_notification(self, notification_id: str) -> Notification | None:
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM notifications WHERE notification_id = ?",
            (notification_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_notification(row)

    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
    ) -> list[Notification]:
        """查询接收者的通知，最新的在前"""
        sql = f"SELECT {_COLUMNS} FROM notifications WHERE recipient_id = ?"
        if unread_only:
            sql += " AND is_read = 0"
        sql += " ORDER BY created_at DESC, notification_id DESC"
        cursor = await self._conn.execute(sql, (recipient_id,))
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def mark_read(self, notification_id: str) -> bool:
        """标记已读（不提交事务）"""
        cursor = await self._conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE notification_id = ?",
            (notification_id,),
        )
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_notification(row: aiosqlite.Row) -> Notification:
        return Notification(
            notification_id=row[0],
            recipient_id=row[1],
            kind=NotificationKind(row[2]),
            task_id=row[3],
            message=row[4],
            idempotency_key=row[5],
            created_at=datetime.fromisoformat(row[6]),
            is_read=bool(row[7]),
        )
