"""身份/授权提供方 SQLite 实现

role_of(user_id) 返回用户的全局角色；未登记的用户视为 MEMBER。
FOLLOW_UP_ASSIGNEE 是按任务判定的角色，由编排器根据任务负责人计算。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.enums import UserRole


class SqliteIdentityStore:
    """IdentityProvider 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def role_of(self, user_id: str) -> UserRole:
        cursor = await self._conn.execute(
            "SELECT role FROM user_roles WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return UserRole.MEMBER
        return UserRole(row[0])

    async def set_role(self, user_id: str, role: UserRole) -> None:
        """登记用户角色（不提交事务）"""
        await self._conn.execute(
            """
            INSERT INTO user_roles (user_id, role, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                role = excluded.role,
                updated_at = excluded.updated_at
            """,
            (user_id, role.value, datetime.now(UTC).isoformat()),
        )
