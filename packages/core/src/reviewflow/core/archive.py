"""已完成任务归档

完成超过指定天数的任务打上 archived_at，从看板中移出、保留在历史中。
归档也是一次提交：version 递增并写入 TASK_ARCHIVED 事件。
"""

from datetime import UTC, datetime, timedelta

import structlog

from .models.enums import EventType
from .models.mutation import MutationSet, TaskMutation
from .store import StoreGroup
from .store.transaction import commit_mutation_set

log = structlog.get_logger()

SYSTEM_ACTOR_ID = "system"


async def archive_done_tasks(
    store_group: StoreGroup,
    older_than_days: int,
    now: datetime | None = None,
) -> list[str]:
    """归档 older_than_days 天前完成的任务

    Args:
        store_group: Store 实例组
        older_than_days: 完成天数阈值
        now: 当前时间，默认 UTC 当前时间

    Returns:
        被归档的 task_id 列表
    """
    now = now or datetime.now(UTC)
    threshold = now - timedelta(days=older_than_days)

    async with store_group.lock:
        candidates = await store_group.task_store.list_done_before(threshold)
        if not candidates:
            return []

        mutation_set = MutationSet(
            event_type=EventType.TASK_ARCHIVED,
            mutations=[
                TaskMutation(
                    task_id=task.task_id,
                    expected_version=task.version,
                    changes={"archived_at": now},
                )
                for task in candidates
            ],
        )
        archived = await commit_mutation_set(
            store_group.conn,
            store_group.task_store,
            store_group.event_store,
            mutation_set,
            actor_id=SYSTEM_ACTOR_ID,
            ts=now,
        )

    await log.ainfo(
        "tasks_archived",
        count=len(archived),
        older_than_days=older_than_days,
    )
    return [task.task_id for task in archived]
