"""领域模型单元测试

测试内容：
1. Task 默认值与字段约束
2. requires_review / is_paired 派生属性
3. apply_changes：version 递增、JSON 值还原为枚举
4. 通知幂等键格式
5. OperationResult 成功/失败构造
"""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError
from reviewflow.core.models import (
    EffectRequest,
    ErrorKind,
    NotificationKind,
    OperationResult,
    ReviewState,
    Subtask,
    Task,
    TaskMutation,
    TaskRole,
    TaskStatus,
    apply_changes,
    build_idempotency_key,
)


class TestTaskModel:
    def test_defaults(self, make_task):
        task = make_task()
        assert task.role == TaskRole.STANDALONE
        assert task.status == TaskStatus.TODO
        assert task.review_state == ReviewState.NONE
        assert task.version == 1
        assert task.progress == 0
        assert task.subtasks == []
        assert task.linked_task_id is None
        assert task.completed_at is None

    @pytest.mark.parametrize("progress", [-1, 101])
    def test_progress_out_of_range_rejected(self, make_task, progress):
        with pytest.raises(ValidationError):
            make_task(progress=progress)

    def test_version_must_be_positive(self, make_task):
        with pytest.raises(ValidationError):
            make_task(version=0)

    def test_requires_review(self, make_task, make_pair):
        assert make_task().requires_review is False
        assert make_task(needs_validation=True).requires_review is True

        follow_up, realization = make_pair()
        assert realization.requires_review is True
        assert follow_up.is_paired and realization.is_paired
        assert not make_task().is_paired

    def test_json_round_trip_keeps_enums(self, make_task):
        task = make_task(
            status=TaskStatus.IN_REVIEW,
            review_state=ReviewState.AWAITING_REVIEW,
            subtasks=[Subtask(id="s1", text="Vérifier la vanne")],
        )
        restored = Task.model_validate(task.model_dump(mode="json"))
        assert restored == task
        assert isinstance(restored.status, TaskStatus)


class TestApplyChanges:
    def test_increments_version_and_updated_at(self, make_task):
        task = make_task()
        ts = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

        updated = apply_changes(task, {"status": TaskStatus.IN_PROGRESS}, ts)

        assert updated.status == TaskStatus.IN_PROGRESS
        assert updated.version == task.version + 1
        assert updated.updated_at == ts
        # 原实例不变
        assert task.status == TaskStatus.TODO

    def test_accepts_json_values(self, make_task):
        task = make_task()
        ts = datetime.now(UTC)
        changes = TaskMutation(
            task_id=task.task_id,
            expected_version=1,
            changes={
                "status": TaskStatus.DONE,
                "completed_at": ts,
                "subtasks": [Subtask(id="s1", text="Photo", completed=True)],
            },
        ).json_changes()

        assert changes["status"] == "DONE"
        assert isinstance(changes["completed_at"], str)

        updated = apply_changes(task, changes, ts)
        assert updated.status == TaskStatus.DONE
        assert updated.completed_at == ts
        assert updated.subtasks[0].completed is True

    def test_invalid_change_rejected(self, make_task):
        with pytest.raises(ValidationError):
            apply_changes(make_task(), {"progress": 150}, datetime.now(UTC))


class TestNotificationModels:
    def test_idempotency_key_format(self):
        key = build_idempotency_key(
            "01TASK", NotificationKind.TASK_RETURNED, "alice", 4
        )
        assert key == "01TASK:TASK_RETURNED:alice:v4"

    def test_effect_request_has_timestamp(self):
        effect = EffectRequest(
            recipient_id="alice",
            kind=NotificationKind.TASK_COMPLETED,
            task_id="01TASK",
            message="ok",
            idempotency_key="k",
        )
        assert effect.created_at.tzinfo is not None


class TestOperationResult:
    def test_success(self, make_task):
        task = make_task()
        result = OperationResult.success([task])
        assert result.ok
        assert result.task == task
        assert result.error is None

    def test_failure(self):
        result = OperationResult.failure(ErrorKind.CONFLICT, "VERSION_CONFLICT", "stale")
        assert not result.ok
        assert result.task is None
        assert result.error.kind == ErrorKind.CONFLICT
        assert result.error.code == "VERSION_CONFLICT"
