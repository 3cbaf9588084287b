"""TaskService -- 任务创建与查询

创建独立任务、原子创建 FollowUp/Realization 配对任务，
以及任务详情、用户看板、历史与审计事件查询。
状态变更一律走 WorkflowService。
"""

from datetime import UTC, datetime

import structlog
from reviewflow.core.archive import archive_done_tasks
from reviewflow.core.config import TITLE_MAX_LENGTH
from reviewflow.core.models import Event, Subtask, Task, TaskRole, TaskStatus
from reviewflow.core.store import StoreGroup
from reviewflow.core.store.transaction import create_tasks_with_events
from ulid import ULID

log = structlog.get_logger()


class TaskService:
    """任务业务服务"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    @staticmethod
    def _clean_title(title: str) -> str:
        title = title.strip()
        if not title:
            raise ValueError("Task title must not be empty")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValueError(f"Task title exceeds {TITLE_MAX_LENGTH} characters")
        return title

    async def create_task(
        self,
        title: str,
        creator_id: str,
        assignee_id: str | None = None,
        description: str = "",
        needs_validation: bool = False,
        subtasks: list[str] | None = None,
    ) -> Task:
        """创建独立任务

        Raises:
            ValueError: 标题为空或过长
        """
        now = datetime.now(UTC)
        task = Task(
            task_id=str(ULID()),
            created_at=now,
            updated_at=now,
            title=self._clean_title(title),
            description=description,
            role=TaskRole.STANDALONE,
            assignee_id=assignee_id,
            creator_id=creator_id,
            needs_validation=needs_validation,
            subtasks=[
                Subtask(id=str(ULID()), text=text.strip())
                for text in subtasks or []
                if text.strip()
            ],
        )

        async with self._stores.lock:
            await create_tasks_with_events(
                self._stores.conn,
                self._stores.task_store,
                self._stores.event_store,
                [task],
                actor_id=creator_id,
            )

        await log.ainfo(
            "task_created",
            task_id=task.task_id,
            creator_id=creator_id,
            assignee_id=assignee_id,
        )
        return task

    async def create_task_pair(
        self,
        title: str,
        creator_id: str,
        realization_assignee_id: str,
        follow_up_assignee_id: str,
        description: str = "",
        needs_validation: bool = False,
    ) -> tuple[Task, Task]:
        """原子创建 FollowUp + Realization 配对任务

        两个任务的 linked_task_id 互相指向对方，needs_validation 取值一致，
        两条 TASK_CREATED 事件在同一事务内写入。

        Returns:
            (follow_up, realization)

        Raises:
            ValueError: 标题不合法，或执行人与评审人相同
        """
        title = self._clean_title(title)
        if realization_assignee_id == follow_up_assignee_id:
            raise ValueError("The follow-up assignee must differ from the realization assignee")

        now = datetime.now(UTC)
        follow_up_id = str(ULID())
        realization_id = str(ULID())

        follow_up = Task(
            task_id=follow_up_id,
            created_at=now,
            updated_at=now,
            title=title,
            description=description,
            role=TaskRole.FOLLOW_UP,
            assignee_id=follow_up_assignee_id,
            creator_id=creator_id,
            linked_task_id=realization_id,
            needs_validation=needs_validation,
        )
        realization = Task(
            task_id=realization_id,
            created_at=now,
            updated_at=now,
            title=title,
            description=description,
            role=TaskRole.REALIZATION,
            assignee_id=realization_assignee_id,
            creator_id=creator_id,
            linked_task_id=follow_up_id,
            needs_validation=needs_validation,
        )

        async with self._stores.lock:
            commit_id = await create_tasks_with_events(
                self._stores.conn,
                self._stores.task_store,
                self._stores.event_store,
                [follow_up, realization],
                actor_id=creator_id,
            )

        await log.ainfo(
            "task_pair_created",
            follow_up_id=follow_up_id,
            realization_id=realization_id,
            needs_validation=needs_validation,
            commit_id=commit_id,
        )
        return follow_up, realization

    async def get_task(self, task_id: str) -> Task | None:
        """查询任务详情"""
        async with self._stores.lock:
            return await self._stores.task_store.get_task(task_id)

    async def get_task_with_linked(self, task_id: str) -> tuple[Task | None, Task | None]:
        """查询任务及其配对任务（同一次读取，看到的是同一提交后的状态）"""
        async with self._stores.lock:
            task = await self._stores.task_store.get_task(task_id)
            if task is None or task.linked_task_id is None:
                return task, None
            linked = await self._stores.task_store.get_task(task.linked_task_id)
        return task, linked

    async def list_tasks(self, status: str | None = None) -> list[Task]:
        """查询任务列表"""
        async with self._stores.lock:
            return await self._stores.task_store.list_tasks(status)

    async def list_user_board(self, user_id: str) -> dict[str, list[Task]]:
        """用户看板：负责人名下未归档任务，按状态分组"""
        async with self._stores.lock:
            tasks = await self._stores.task_store.list_active_for_assignee(user_id)

        board: dict[str, list[Task]] = {status.value: [] for status in TaskStatus}
        for task in tasks:
            board[task.status.value].append(task)
        return board

    async def get_task_history(self, user_id: str) -> list[Task]:
        """用户历史：已完成或已归档的任务"""
        async with self._stores.lock:
            return await self._stores.task_store.list_history_for_assignee(user_id)

    async def get_task_events(self, task_id: str) -> list[Event]:
        """任务审计事件，按 task_seq 升序"""
        async with self._stores.lock:
            return await self._stores.event_store.get_events_for_task(task_id)

    async def archive_done_tasks(self, older_than_days: int) -> list[str]:
        """归档完成超过 older_than_days 天的任务"""
        return await archive_done_tasks(self._stores, older_than_days)
