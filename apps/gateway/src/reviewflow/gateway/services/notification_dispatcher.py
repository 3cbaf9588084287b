"""NotificationDispatcher -- 通知投递（fire-and-forget）

编排器在提交成功后调用 enqueue() 提交 EffectRequest，不等待投递结果。
后台 worker 逐条处理：按 idempotency_key 去重写入 notifications 表，
再推送给在线订阅者。投递失败按配置重试，最终失败只记录日志，
从不影响已经提交的状态流转。
"""

import asyncio
import contextlib

import structlog
from reviewflow.core.config import (
    NOTIFICATION_MAX_ATTEMPTS,
    NOTIFICATION_QUEUE_MAXSIZE,
    NOTIFICATION_RETRY_DELAY_S,
)
from reviewflow.core.models.notification import EffectRequest, Notification
from reviewflow.core.store import StoreGroup
from ulid import ULID

from .notification_hub import NotificationHub

log = structlog.get_logger()


class NotificationDispatcher:
    """通知投递器 -- asyncio.Queue + 单个后台 worker"""

    def __init__(
        self,
        store_group: StoreGroup,
        hub: NotificationHub | None = None,
        *,
        max_attempts: int = NOTIFICATION_MAX_ATTEMPTS,
        retry_delay_s: float = NOTIFICATION_RETRY_DELAY_S,
        queue_maxsize: int = NOTIFICATION_QUEUE_MAXSIZE,
    ) -> None:
        self._stores = store_group
        self._hub = hub
        self._max_attempts = max(1, max_attempts)
        self._retry_delay_s = retry_delay_s
        self._queue: asyncio.Queue[EffectRequest] = asyncio.Queue(maxsize=queue_maxsize)
        self._worker: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, effect: EffectRequest) -> None:
        """提交效果请求，立即返回

        队列已满时丢弃该请求并记录告警。
        """
        try:
            self._queue.put_nowait(effect)
        except asyncio.QueueFull:
            log.warning(
                "notification_queue_full",
                task_id=effect.task_id,
                kind=effect.kind,
                idempotency_key=effect.idempotency_key,
            )

    def start(self) -> None:
        """启动后台 worker（重复调用无副作用）"""
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
        log.info("notification_dispatcher_started")

    async def stop(self) -> None:
        """停止后台 worker，未处理的请求被丢弃"""
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        log.info("notification_dispatcher_stopped", dropped=self._queue.qsize())

    async def drain(self) -> None:
        """等待队列中已提交的请求全部处理完"""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            effect = await self._queue.get()
            try:
                await self.deliver(effect)
            except Exception as e:
                # deliver 自身已吞掉投递异常，这里只兜住意外错误，保持 worker 存活
                log.error(
                    "notification_worker_error",
                    task_id=effect.task_id,
                    error_type=type(e).__name__,
                )
            finally:
                self._queue.task_done()

    async def deliver(self, effect: EffectRequest) -> bool:
        """投递单条通知，带重试

        Returns:
            True 表示新写入并推送，False 表示重复请求或最终失败
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                notification = await self._persist(effect)
            except Exception as e:
                log.warning(
                    "notification_delivery_failed",
                    task_id=effect.task_id,
                    kind=effect.kind,
                    recipient_id=effect.recipient_id,
                    attempt=attempt,
                    error_type=type(e).__name__,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._retry_delay_s)
                continue

            if notification is None:
                log.info(
                    "notification_duplicate_skipped",
                    idempotency_key=effect.idempotency_key,
                )
                return False

            await self._publish(notification)
            log.info(
                "notification_delivered",
                notification_id=notification.notification_id,
                task_id=effect.task_id,
                kind=effect.kind,
                recipient_id=effect.recipient_id,
            )
            return True

        log.error(
            "notification_dropped",
            task_id=effect.task_id,
            kind=effect.kind,
            recipient_id=effect.recipient_id,
            attempts=self._max_attempts,
        )
        return False

    async def _persist(self, effect: EffectRequest) -> Notification | None:
        notification = Notification(
            notification_id=str(ULID()),
            recipient_id=effect.recipient_id,
            kind=effect.kind,
            task_id=effect.task_id,
            message=effect.message,
            idempotency_key=effect.idempotency_key,
            created_at=effect.created_at,
        )
        async with self._stores.lock:
            try:
                inserted = await self._stores.notification_store.put_notification(
                    notification
                )
                await self._stores.conn.commit()
            except Exception:
                await self._stores.conn.rollback()
                raise
        return notification if inserted else None

    async def _publish(self, notification: Notification) -> None:
        if self._hub is None:
            return
        try:
            await self._hub.publish(notification)
        except Exception as e:
            # 已持久化，实时推送失败不重试
            log.warning(
                "notification_publish_failed",
                notification_id=notification.notification_id,
                error_type=type(e).__name__,
            )
