"""NotificationHub -- 内存中通知广播器

每个订阅者持有一个 asyncio.Queue，按接收者 user_id 分组，
支持 subscribe/unsubscribe/publish。仅用于实时推送，持久化由 NotificationStore 负责。
"""

import asyncio
from collections import defaultdict

import structlog
from reviewflow.core.models.notification import Notification

log = structlog.get_logger()


class NotificationHub:
    """通知广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # recipient_id -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    def subscriber_count(self, recipient_id: str) -> int:
        return len(self._subscribers.get(recipient_id, ()))

    async def subscribe(self, recipient_id: str) -> asyncio.Queue:
        """订阅指定用户的通知流

        Args:
            recipient_id: 接收者 ID

        Returns:
            asyncio.Queue 实例，新通知会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[recipient_id].add(queue)
        return queue

    async def unsubscribe(self, recipient_id: str, queue: asyncio.Queue) -> None:
        """取消订阅"""
        subscribers = self._subscribers.get(recipient_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[recipient_id]

    async def publish(self, notification: Notification) -> None:
        """向接收者的所有订阅者推送通知

        消费过慢（队列已满）的订阅者会被移除。
        """
        recipient_id = notification.recipient_id
        dead_queues = []
        for queue in self._subscribers.get(recipient_id, set()):
            try:
                queue.put_nowait(notification)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        for q in dead_queues:
            self._subscribers[recipient_id].discard(q)
            log.warning(
                "notification_subscriber_dropped",
                recipient_id=recipient_id,
            )
        if recipient_id in self._subscribers and not self._subscribers[recipient_id]:
            del self._subscribers[recipient_id]
