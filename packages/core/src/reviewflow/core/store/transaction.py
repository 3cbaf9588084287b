"""MutationSet 原子提交封装

在同一 SQLite 事务内写入 MutationSet 涉及的所有 Task（CAS 比较 version）
以及每个 Task 对应的事件，要么全部生效，要么全部回滚。
"""

from datetime import UTC, datetime

import aiosqlite
from ulid import ULID

from ..models.enums import EventType
from ..models.event import Event, EventCausality
from ..models.mutation import MutationSet, apply_changes
from ..models.payloads import TaskCreatedPayload, TaskMutationPayload
from ..models.task import Task
from .event_store import SqliteEventStore
from .task_store import SqliteTaskStore


class TaskVersionConflictError(Exception):
    """提交时任务版本与期望不一致"""

    def __init__(
        self,
        task_id: str,
        expected_version: int,
        actual_version: int | None,
    ) -> None:
        super().__init__(
            f"Task {task_id} version conflict: expected {expected_version}, "
            f"found {actual_version}"
        )
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version


def trace_id_for(task_id: str) -> str:
    return f"trace-{task_id}"


async def create_tasks_with_events(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    event_store: SqliteEventStore,
    tasks: list[Task],
    actor_id: str,
) -> str:
    """在同一事务内写入一组新任务及各自的 TASK_CREATED 事件

    配对任务必须通过此函数一次性写入，避免只落盘一半。

    Returns:
        本次提交的 commit_id
    """
    commit_id = str(ULID())
    try:
        for task in tasks:
            await task_store.create_task(task)
            await event_store.append_event(
                Event(
                    event_id=str(ULID()),
                    task_id=task.task_id,
                    task_seq=task.version,
                    ts=task.created_at,
                    type=EventType.TASK_CREATED,
                    actor_id=actor_id,
                    payload=TaskCreatedPayload(
                        snapshot=task.model_dump(mode="json"),
                    ).model_dump(),
                    trace_id=trace_id_for(task.task_id),
                    causality=EventCausality(commit_id=commit_id),
                )
            )
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
    return commit_id


async def commit_mutation_set(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    event_store: SqliteEventStore,
    mutation_set: MutationSet,
    actor_id: str,
    ts: datetime | None = None,
) -> list[Task]:
    """在同一事务内原子提交 MutationSet

    每个 Task 先比较 expected_version，再以 CAS 方式写入 version+1 的新状态，
    并追加一条 task_seq = 新 version 的事件。同一次提交的事件共享 commit_id。

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        task_store: TaskStore 实例
        event_store: EventStore 实例
        mutation_set: 同步器产出的变更集合
        actor_id: 操作者 ID
        ts: 提交时间，默认当前 UTC 时间

    Returns:
        提交后的 Task 列表，顺序与 mutation_set.mutations 一致

    Raises:
        TaskVersionConflictError: 任一 Task 版本已变化，整体回滚
        Exception: 其他写入失败，整体回滚后原样抛出
    """
    ts = ts or datetime.now(UTC)
    commit_id = str(ULID())
    committed: list[Task] = []

    try:
        for mutation in mutation_set.mutations:
            current = await task_store.get_task(mutation.task_id)
            if current is None or current.version != mutation.expected_version:
                raise TaskVersionConflictError(
                    mutation.task_id,
                    mutation.expected_version,
                    current.version if current else None,
                )

            updated = apply_changes(current, mutation.changes, ts)
            if not await task_store.replace_task(updated, mutation.expected_version):
                raise TaskVersionConflictError(
                    mutation.task_id, mutation.expected_version, None
                )

            await event_store.append_event(
                Event(
                    event_id=str(ULID()),
                    task_id=updated.task_id,
                    task_seq=updated.version,
                    ts=ts,
                    type=mutation_set.event_type,
                    actor_id=actor_id,
                    payload=TaskMutationPayload(
                        from_status=current.status,
                        to_status=updated.status,
                        decision=mutation_set.decision,
                        feedback=mutation_set.feedback,
                        changes=mutation.json_changes(),
                    ).model_dump(mode="json"),
                    trace_id=trace_id_for(updated.task_id),
                    causality=EventCausality(commit_id=commit_id),
                )
            )
            committed.append(updated)

        # 原子提交
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise

    return committed
