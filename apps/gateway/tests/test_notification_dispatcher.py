"""通知投递测试

测试内容：
1. 提交后产出的通知被持久化、按接收者查询
2. 操作者本人不会收到通知
3. idempotency_key 去重：同一请求重复投递只写入一次，新版本上的同类通知照常送达
4. 写入失败重试，最终失败只记录日志，worker 继续运行
5. 在线订阅者通过 NotificationHub 实时收到通知
6. 队列已满时丢弃新请求，不抛异常
"""

from reviewflow.core.models import (
    DecisionKind,
    EffectRequest,
    Notification,
    NotificationKind,
    TaskStatus,
    build_idempotency_key,
)
from reviewflow.gateway.services.notification_dispatcher import NotificationDispatcher
from reviewflow.gateway.services.notification_hub import NotificationHub


def _effect(recipient_id: str = "alice", version: int = 2) -> EffectRequest:
    kind = NotificationKind.TASK_COMPLETED
    return EffectRequest(
        recipient_id=recipient_id,
        kind=kind,
        task_id="01TASK",
        message='La tâche "Rapport" a été acceptée',
        idempotency_key=build_idempotency_key("01TASK", kind, recipient_id, version),
    )


class TestWorkflowNotifications:
    async def test_review_requested_sent_to_reviewer(
        self, pair_in_review, dispatcher, store_group
    ):
        follow_up, _ = await pair_in_review()
        await dispatcher.drain()

        received = await store_group.notification_store.list_for_recipient("bob")
        assert [n.kind for n in received] == [NotificationKind.TASK_REVIEW_REQUESTED]
        assert received[0].task_id == follow_up.task_id
        assert "est prête pour révision" in received[0].message

        # 执行人自己提交评审，不通知自己
        assert await store_group.notification_store.list_for_recipient("alice") == []

    async def test_accept_notifies_assignee(
        self, pair_in_review, workflow, dispatcher, store_group
    ):
        follow_up, realization = await pair_in_review()
        await workflow.review_task(
            follow_up.task_id, DecisionKind.ACCEPT, None, "bob", follow_up.version
        )
        await dispatcher.drain()

        received = await store_group.notification_store.list_for_recipient("alice")
        assert [n.kind for n in received] == [NotificationKind.TASK_COMPLETED]
        assert received[0].task_id == realization.task_id

    async def test_manager_validation_flow(
        self, pair_in_review, workflow, dispatcher, store_group
    ):
        follow_up, _ = await pair_in_review(needs_validation=True)
        first = await workflow.review_task(
            follow_up.task_id, DecisionKind.ACCEPT, None, "bob", follow_up.version
        )
        await dispatcher.drain()

        to_manager = await store_group.notification_store.list_for_recipient("manager-1")
        assert [n.kind for n in to_manager] == [
            NotificationKind.MANAGER_VALIDATION_REQUESTED
        ]

        await workflow.review_task(
            follow_up.task_id, DecisionKind.ACCEPT, None, "manager-1", first.task.version
        )
        await dispatcher.drain()

        to_alice = await store_group.notification_store.list_for_recipient("alice")
        assert [n.kind for n in to_alice] == [NotificationKind.TASK_VALIDATED]
        to_bob = await store_group.notification_store.list_for_recipient("bob")
        assert NotificationKind.TASK_VALIDATED in [n.kind for n in to_bob]

    async def test_return_message_carries_feedback(
        self, pair_in_review, workflow, dispatcher, store_group
    ):
        follow_up, _ = await pair_in_review()
        await workflow.review_task(
            follow_up.task_id,
            DecisionKind.RETURN,
            "Compléter le rapport",
            "bob",
            follow_up.version,
        )
        await dispatcher.drain()

        received = await store_group.notification_store.list_for_recipient("alice")
        assert received[0].kind == NotificationKind.TASK_RETURNED
        assert received[0].message.endswith(": Compléter le rapport")

    async def test_second_return_after_resubmission_delivered(
        self, pair_in_review, workflow, dispatcher, store_group
    ):
        follow_up, _ = await pair_in_review()
        first = await workflow.review_task(
            follow_up.task_id, DecisionKind.RETURN, "Photos floues", "bob", follow_up.version
        )
        follow_up, realization = first.tasks

        resubmitted = await workflow.update_status(
            realization.task_id, TaskStatus.IN_REVIEW, "alice", realization.version
        )
        assert resubmitted.ok, resubmitted.error
        _, follow_up = resubmitted.tasks
        await workflow.review_task(
            follow_up.task_id, DecisionKind.RETURN, "Mesure manquante", "bob", follow_up.version
        )
        await dispatcher.drain()

        returned = [
            n
            for n in await store_group.notification_store.list_for_recipient("alice")
            if n.kind == NotificationKind.TASK_RETURNED
        ]
        assert len(returned) == 2
        assert len({n.idempotency_key for n in returned}) == 2
        assert {n.message.rsplit(": ", 1)[1] for n in returned} == {
            "Photos floues",
            "Mesure manquante",
        }

    async def test_denied_operation_sends_nothing(
        self, pair_in_review, workflow, dispatcher, store_group
    ):
        follow_up, _ = await pair_in_review()
        await dispatcher.drain()
        before = await store_group.notification_store.list_for_recipient("alice")

        result = await workflow.review_task(
            follow_up.task_id, DecisionKind.ACCEPT, None, "mallory", follow_up.version
        )
        await dispatcher.drain()

        assert not result.ok
        assert await store_group.notification_store.list_for_recipient("alice") == before


class TestDispatcher:
    async def test_duplicate_delivered_once(self, dispatcher, store_group):
        dispatcher.enqueue(_effect())
        dispatcher.enqueue(_effect())
        await dispatcher.drain()

        received = await store_group.notification_store.list_for_recipient("alice")
        assert len(received) == 1

    async def test_deliver_returns_false_for_duplicate(self, store_group):
        d = NotificationDispatcher(store_group, retry_delay_s=0)
        assert await d.deliver(_effect()) is True
        assert await d.deliver(_effect()) is False

    async def test_retry_then_drop_keeps_worker_alive(
        self, store_group, monkeypatch
    ):
        d = NotificationDispatcher(store_group, max_attempts=3, retry_delay_s=0)
        calls = []

        async def failing_put(notification):
            calls.append(notification.idempotency_key)
            raise RuntimeError("disk full")

        original_put = store_group.notification_store.put_notification
        monkeypatch.setattr(store_group.notification_store, "put_notification", failing_put)

        d.start()
        try:
            d.enqueue(_effect(version=2))
            await d.drain()
            assert len(calls) == 3
            assert d.is_running

            monkeypatch.setattr(
                store_group.notification_store, "put_notification", original_put
            )
            d.enqueue(_effect(version=3))
            await d.drain()
        finally:
            await d.stop()

        received = await store_group.notification_store.list_for_recipient("alice")
        assert [n.idempotency_key for n in received] == [
            build_idempotency_key("01TASK", NotificationKind.TASK_COMPLETED, "alice", 3)
        ]

    async def test_transient_failure_recovers(self, store_group, monkeypatch):
        d = NotificationDispatcher(store_group, max_attempts=3, retry_delay_s=0)
        original_put = store_group.notification_store.put_notification
        attempts = {"n": 0}

        async def flaky_put(notification):
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise RuntimeError("database is locked")
            return await original_put(notification)

        monkeypatch.setattr(store_group.notification_store, "put_notification", flaky_put)

        assert await d.deliver(_effect()) is True
        assert attempts["n"] == 2

    async def test_publish_to_online_subscriber(self, store_group, hub):
        d = NotificationDispatcher(store_group, hub, retry_delay_s=0)
        queue = await hub.subscribe("alice")
        other = await hub.subscribe("bob")

        await d.deliver(_effect())

        notification = queue.get_nowait()
        assert notification.recipient_id == "alice"
        assert other.empty()

    async def test_queue_full_drops_request(self, store_group):
        d = NotificationDispatcher(store_group, queue_maxsize=1)
        d.enqueue(_effect(version=2))
        d.enqueue(_effect(version=3))
        assert d.pending == 1

    async def test_stop_is_idempotent(self, store_group):
        d = NotificationDispatcher(store_group)
        await d.stop()
        d.start()
        d.start()
        assert d.is_running
        await d.stop()
        assert not d.is_running


class TestNotificationHub:
    async def test_slow_subscriber_dropped(self):
        small = NotificationHub(queue_maxsize=1)
        await small.subscribe("alice")
        effect = _effect()
        notification = Notification(
            notification_id="01N",
            recipient_id="alice",
            kind=effect.kind,
            task_id=effect.task_id,
            message=effect.message,
            idempotency_key=effect.idempotency_key,
            created_at=effect.created_at,
        )

        await small.publish(notification)
        assert small.subscriber_count("alice") == 1
        await small.publish(notification)
        assert small.subscriber_count("alice") == 0

    async def test_unsubscribe(self, hub):
        queue = await hub.subscribe("alice")
        assert hub.subscriber_count("alice") == 1
        await hub.unsubscribe("alice", queue)
        assert hub.subscriber_count("alice") == 0
        # 重复取消订阅无副作用
        await hub.unsubscribe("alice", queue)
