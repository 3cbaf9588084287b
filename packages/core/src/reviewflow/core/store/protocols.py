"""Store Protocol 接口定义

定义 TaskStore、EventStore、NotificationStore、IdentityProvider、NotificationSink
的抽象接口，使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Protocol

from ..models.enums import UserRole
from ..models.event import Event
from ..models.notification import EffectRequest, Notification
from ..models.task import Task


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks(self, status: str | None = None) -> list[Task]:
        """查询任务列表，支持按状态筛选"""
        ...

    async def list_active_for_assignee(self, assignee_id: str) -> list[Task]:
        """查询负责人名下未归档的任务"""
        ...

    async def list_history_for_assignee(self, assignee_id: str) -> list[Task]:
        """查询负责人已完成或已归档的任务"""
        ...

    async def list_done_before(self, threshold: datetime) -> list[Task]:
        """查询 threshold 之前完成且未归档的任务"""
        ...

    async def replace_task(self, task: Task, expected_version: int) -> bool:
        """CAS 写入任务，版本不匹配返回 False"""
        ...


class EventStore(Protocol):
    """Event 存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_event(self, event: Event) -> None:
        """追加事件（append-only）"""
        ...

    async def get_events_for_task(self, task_id: str) -> list[Event]:
        """查询指定任务的所有事件"""
        ...

    async def get_events_for_commit(self, commit_id: str) -> list[Event]:
        """查询同一次原子提交写入的事件"""
        ...

    async def get_all_events(self) -> list[Event]:
        """查询所有事件（用于 Projection 重建）"""
        ...


class NotificationStore(Protocol):
    """通知存储接口"""

    async def put_notification(self, notification: Notification) -> bool:
        """写入通知，幂等键已存在时返回 False"""
        ...

    async def get_notification(self, notification_id: str) -> Notification | None:
        ...

    async def list_for_recipient(
        self,
        recipient_id: str,
        unread_only: bool = False,
    ) -> list[Notification]:
        ...

    async def mark_read(self, notification_id: str) -> bool:
        ...


class IdentityProvider(Protocol):
    """身份/授权提供方接口"""

    async def role_of(self, user_id: str) -> UserRole:
        """返回用户角色"""
        ...


class NotificationSink(Protocol):
    """效果请求接收方（fire-and-forget）"""

    def enqueue(self, effect: EffectRequest) -> None:
        """提交效果请求，不等待投递结果"""
        ...
