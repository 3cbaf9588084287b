"""评论与删除测试

测试内容：
1. 评论追加到任务并通知对方（负责人评论通知创建者，其他人评论通知负责人）
2. 评论校验：空内容、超长
3. 删除配对任务：两个成员同一次提交一起删除，事件历史保留
4. 删除权限：创建者或经理；版本过期与中途失败都不留下单边删除
"""

import pytest
from reviewflow.core.models import (
    DecisionKind,
    ErrorKind,
    EventType,
    NotificationKind,
    TaskStatus,
)
from reviewflow.core.projection import rebuild_all
from reviewflow.gateway.services.workflow_service import WorkflowService


class TestComments:
    async def test_assignee_comment_notifies_creator(
        self, workflow, task_service, dispatcher, store_group
    ):
        task = await task_service.create_task(
            "Relevé des compteurs", creator_id="manager-1", assignee_id="alice"
        )

        result = await workflow.add_comment(task.task_id, "  Compteur C3 illisible ", "alice")

        assert result.ok
        comment = result.task.comments[0]
        assert (comment.author_id, comment.text) == ("alice", "Compteur C3 illisible")
        assert result.task.version == task.version + 1

        await dispatcher.drain()
        to_creator = await store_group.notification_store.list_for_recipient("manager-1")
        assert [n.kind for n in to_creator] == [NotificationKind.TASK_COMMENT_ADDED]
        assert to_creator[0].message == (
            'Nouveau commentaire sur la tâche "Relevé des compteurs"'
        )
        assert await store_group.notification_store.list_for_recipient("alice") == []

    async def test_other_author_notifies_assignee(
        self, workflow, task_service, dispatcher, store_group
    ):
        task = await task_service.create_task(
            "Relevé des compteurs", creator_id="manager-1", assignee_id="alice"
        )

        await workflow.add_comment(task.task_id, "Merci de joindre la photo", "manager-1")
        await workflow.add_comment(task.task_id, "Je passe demain", "carol")

        await dispatcher.drain()
        to_alice = await store_group.notification_store.list_for_recipient("alice")
        assert [n.kind for n in to_alice] == [NotificationKind.TASK_COMMENT_ADDED] * 2
        stored = await store_group.task_store.get_task(task.task_id)
        assert [c.author_id for c in stored.comments] == ["manager-1", "carol"]

    async def test_done_task_accepts_comments(self, workflow, task_service):
        task = await task_service.create_task("Peinture", creator_id="manager-1")
        done = await workflow.update_status(
            task.task_id, TaskStatus.DONE, "manager-1", task.version
        )

        result = await workflow.add_comment(
            task.task_id, "Deuxième couche faite", "manager-1", done.task.version
        )

        assert result.ok
        assert result.task.status == TaskStatus.DONE

    async def test_comment_validation(self, store_group, task_service):
        workflow = WorkflowService(store_group, comment_max_length=10)
        task = await task_service.create_task("Peinture", creator_id="manager-1")

        empty = await workflow.add_comment(task.task_id, "   ", "alice")
        assert empty.error.kind == ErrorKind.VALIDATION_ERROR
        assert empty.error.code == "INVALID_COMMENT"

        too_long = await workflow.add_comment(task.task_id, "x" * 11, "alice")
        assert too_long.error.code == "COMMENT_TOO_LONG"

        missing = await workflow.add_comment("01UNKNOWN", "Bonjour", "alice")
        assert missing.error.kind == ErrorKind.NOT_FOUND

    async def test_stale_version_conflict(self, workflow, task_service):
        task = await task_service.create_task("Peinture", creator_id="manager-1")
        await workflow.add_comment(task.task_id, "Premier", "alice", task.version)

        result = await workflow.add_comment(task.task_id, "Second", "bob", task.version)

        assert result.error.kind == ErrorKind.CONFLICT


class TestDeletion:
    async def test_pair_deleted_in_one_commit(self, workflow, pair_in_review, store_group):
        follow_up, realization = await pair_in_review()

        result = await workflow.delete_task(follow_up.task_id, "manager-1")

        assert result.ok
        assert [t.task_id for t in result.tasks] == [
            follow_up.task_id,
            realization.task_id,
        ]
        assert all(t.deleted_at is not None for t in result.tasks)
        assert await store_group.task_store.get_task(follow_up.task_id) is None
        assert await store_group.task_store.get_task(realization.task_id) is None

        events = [
            (await store_group.event_store.get_events_for_task(task_id))[-1]
            for task_id in (follow_up.task_id, realization.task_id)
        ]
        assert [e.type for e in events] == [EventType.TASK_DELETED] * 2
        assert events[0].causality.commit_id == events[1].causality.commit_id

    async def test_deleted_tasks_reject_further_operations(
        self, workflow, pair_in_review
    ):
        follow_up, realization = await pair_in_review()
        await workflow.delete_task(realization.task_id, "manager-1")

        review = await workflow.review_task(
            follow_up.task_id, DecisionKind.ACCEPT, None, "bob", follow_up.version + 1
        )
        move = await workflow.update_status(
            realization.task_id, TaskStatus.IN_PROGRESS, "alice", realization.version + 1
        )
        again = await workflow.delete_task(follow_up.task_id, "manager-1")

        assert review.error.kind == ErrorKind.NOT_FOUND
        assert move.error.kind == ErrorKind.NOT_FOUND
        assert again.error.kind == ErrorKind.NOT_FOUND

    async def test_rebuild_keeps_tasks_deleted(
        self, workflow, pair_in_review, task_service, store_group
    ):
        follow_up, realization = await pair_in_review()
        kept = await task_service.create_task("Inventaire", creator_id="manager-1")
        await workflow.delete_task(follow_up.task_id, "manager-1")

        async with store_group.lock:
            await rebuild_all(
                store_group.conn, store_group.event_store, store_group.task_store
            )

        assert [t.task_id for t in await store_group.task_store.list_tasks()] == [
            kept.task_id
        ]
        assert await store_group.task_store.get_task(realization.task_id) is None

    async def test_only_creator_or_manager_deletes(
        self, workflow, task_service, store_group
    ):
        task = await task_service.create_task(
            "Inventaire", creator_id="carol", assignee_id="alice"
        )

        denied = await workflow.delete_task(task.task_id, "alice")
        assert denied.error.kind == ErrorKind.DENIED
        assert denied.error.code == "NOT_AUTHORIZED"
        assert await store_group.task_store.get_task(task.task_id) is not None

        by_manager = await workflow.delete_task(task.task_id, "manager-1")
        assert by_manager.ok

    async def test_denied_before_version_check(self, workflow, pair_in_review):
        follow_up, _ = await pair_in_review()
        result = await workflow.delete_task(
            follow_up.task_id, "mallory", expected_version=follow_up.version + 5
        )
        assert result.error.kind == ErrorKind.DENIED

    async def test_stale_version_keeps_pair(self, workflow, pair_in_review, store_group):
        follow_up, realization = await pair_in_review()

        result = await workflow.delete_task(
            realization.task_id, "manager-1", expected_version=realization.version - 1
        )

        assert result.error.kind == ErrorKind.CONFLICT
        assert await store_group.task_store.get_task(follow_up.task_id) is not None
        assert await store_group.task_store.get_task(realization.task_id) is not None

    async def test_failure_mid_commit_keeps_both_members(
        self, workflow, pair_in_review, store_group, monkeypatch
    ):
        follow_up, realization = await pair_in_review()
        original_append = store_group.event_store.append_event
        calls = []

        async def failing_second_append(event):
            calls.append(event.task_id)
            if len(calls) == 2:
                raise OSError("disk full")
            await original_append(event)

        monkeypatch.setattr(store_group.event_store, "append_event", failing_second_append)

        with pytest.raises(OSError):
            await workflow.delete_task(follow_up.task_id, "manager-1")

        for task in (follow_up, realization):
            stored = await store_group.task_store.get_task(task.task_id)
            assert stored is not None
            assert stored.deleted_at is None
            assert stored.version == task.version
