"""TaskStore SQLite 实现

tasks 表是 events 的物化视图（projection）。
所有字段变更必须经由 transaction 模块与事件一起提交，此处仅提供数据库操作。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import TaskStatus
from ..models.task import Comment, Subtask, Task

_COLUMNS = (
    "task_id, created_at, updated_at, title, description, role, status, "
    "assignee_id, creator_id, linked_task_id, needs_validation, review_state, "
    "feedback, progress, subtasks, version, completed_at, declined_at, archived_at, "
    "comments, deleted_at"
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录（不提交事务）"""
        await self._conn.execute(
            f"""
            INSERT INTO tasks ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._task_to_params(task),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务，已删除的任务视为不存在"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE task_id = ? AND deleted_at IS NULL",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(self, status: str | None = None) -> list[Task]:
        """查询任务列表，支持按状态筛选，按 created_at 倒序"""
        if status:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE status = ? AND deleted_at IS NULL "
                "ORDER BY created_at DESC",
                (status,),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE deleted_at IS NULL "
                "ORDER BY created_at DESC"
            )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_active_for_assignee(self, assignee_id: str) -> list[Task]:
        """查询负责人名下未归档的任务，按 created_at 倒序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM tasks
            WHERE assignee_id = ? AND archived_at IS NULL AND deleted_at IS NULL
            ORDER BY created_at DESC
            """,
            (assignee_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_history_for_assignee(self, assignee_id: str) -> list[Task]:
        """查询负责人已完成或已归档的任务，最近完成的在前"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM tasks
            WHERE assignee_id = ? AND deleted_at IS NULL
              AND (status = ? OR archived_at IS NOT NULL)
            ORDER BY COALESCE(completed_at, archived_at) DESC
            """,
            (assignee_id, TaskStatus.DONE.value),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def list_done_before(self, threshold: datetime) -> list[Task]:
        """查询 threshold 之前完成且尚未归档的任务"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM tasks
            WHERE status = ? AND archived_at IS NULL AND deleted_at IS NULL
              AND completed_at IS NOT NULL AND completed_at < ?
            ORDER BY completed_at ASC
            """,
            (TaskStatus.DONE.value, threshold.isoformat()),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def replace_task(self, task: Task, expected_version: int) -> bool:
        """以 CAS 方式整行写入任务（不提交事务）

        仅当库中 version 仍为 expected_version 时写入。

        Returns:
            True 如果写入成功，False 表示版本已变化
        """
        params = self._task_to_params(task)
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET created_at = ?, updated_at = ?, title = ?, description = ?, role = ?,
                status = ?, assignee_id = ?, creator_id = ?, linked_task_id = ?,
                needs_validation = ?, review_state = ?, feedback = ?, progress = ?,
                subtasks = ?, version = ?, completed_at = ?, declined_at = ?,
                archived_at = ?, comments = ?, deleted_at = ?
            WHERE task_id = ? AND version = ?
            """,
            (*params[1:], task.task_id, expected_version),
        )
        return cursor.rowcount == 1

    @staticmethod
    def _task_to_params(task: Task) -> tuple:
        return (
            task.task_id,
            task.created_at.isoformat(),
            task.updated_at.isoformat(),
            task.title,
            task.description,
            task.role.value,
            task.status.value,
            task.assignee_id,
            task.creator_id,
            task.linked_task_id,
            int(task.needs_validation),
            task.review_state.value,
            task.feedback,
            task.progress,
            json.dumps([s.model_dump() for s in task.subtasks], ensure_ascii=False),
            task.version,
            _iso(task.completed_at),
            _iso(task.declined_at),
            _iso(task.archived_at),
            json.dumps(
                [c.model_dump(mode="json") for c in task.comments], ensure_ascii=False
            ),
            _iso(task.deleted_at),
        )

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        subtasks_data = json.loads(row[14]) if row[14] else []
        comments_data = json.loads(row[19]) if row[19] else []
        return Task(
            task_id=row[0],
            created_at=datetime.fromisoformat(row[1]),
            updated_at=datetime.fromisoformat(row[2]),
            title=row[3],
            description=row[4],
            role=row[5],
            status=row[6],
            assignee_id=row[7],
            creator_id=row[8],
            linked_task_id=row[9],
            needs_validation=bool(row[10]),
            review_state=row[11],
            feedback=row[12],
            progress=row[13],
            subtasks=[Subtask(**s) for s in subtasks_data],
            version=row[15],
            completed_at=_parse_dt(row[16]),
            declined_at=_parse_dt(row[17]),
            archived_at=_parse_dt(row[18]),
            comments=[Comment.model_validate(c) for c in comments_data],
            deleted_at=_parse_dt(row[20]),
        )
