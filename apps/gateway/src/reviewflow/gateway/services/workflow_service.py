"""WorkflowService -- 评审流程编排器

所有任务变更的唯一入口：
1. 读取任务（及配对任务）
2. 校验输入、版本与权限，Transition Guard 提前拒绝
3. Linked-Task Synchronizer 计算 MutationSet
4. 单事务原子提交（CAS 比较 version）
5. 提交成功后产出通知请求，交给 NotificationDispatcher（fire-and-forget）

拒绝、冲突、校验失败、未找到都以 OperationResult 返回，不抛异常。
步骤 1-4 在 StoreGroup.lock 内执行，并发调用按顺序看到彼此已提交的结果。
每个操作期间 task_id / actor_id 绑定在 structlog contextvars 中。
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from reviewflow.core.config import COMMENT_MAX_LENGTH, FEEDBACK_MAX_LENGTH
from reviewflow.core.guard import can_transition
from reviewflow.core.models import (
    FEEDBACK_REQUIRED_DECISIONS,
    Comment,
    Decision,
    DecisionKind,
    EffectRequest,
    ErrorKind,
    EventType,
    MutationSet,
    NotificationKind,
    OperationResult,
    ReviewState,
    Subtask,
    Task,
    TaskMutation,
    TaskRole,
    TaskStatus,
    UserRole,
    build_idempotency_key,
)
from reviewflow.core.store import StoreGroup
from reviewflow.core.store.protocols import NotificationSink
from reviewflow.core.store.transaction import (
    TaskVersionConflictError,
    commit_mutation_set,
)
from reviewflow.core.synchronizer import InvalidDecisionError, compute_mutation_set
from structlog.contextvars import bound_contextvars
from ulid import ULID

log = structlog.get_logger()

# 错误代码
TASK_NOT_FOUND = "TASK_NOT_FOUND"
LINKED_TASK_NOT_FOUND = "LINKED_TASK_NOT_FOUND"
SUBTASK_NOT_FOUND = "SUBTASK_NOT_FOUND"
VERSION_CONFLICT = "VERSION_CONFLICT"
FEEDBACK_REQUIRED = "FEEDBACK_REQUIRED"
FEEDBACK_TOO_LONG = "FEEDBACK_TOO_LONG"
INVALID_DECISION = "INVALID_DECISION"
INVALID_PROGRESS = "INVALID_PROGRESS"
INVALID_SUBTASK = "INVALID_SUBTASK"
INVALID_COMMENT = "INVALID_COMMENT"
COMMENT_TOO_LONG = "COMMENT_TOO_LONG"
REVIEW_TARGETS_FOLLOW_UP = "REVIEW_TARGETS_FOLLOW_UP"
NOT_UNDER_REVIEW = "NOT_UNDER_REVIEW"
NOT_AUTHORIZED = "NOT_AUTHORIZED"
SELF_REVIEW = "SELF_REVIEW"
MANAGER_REQUIRED = "MANAGER_REQUIRED"
TASK_DONE = "TASK_DONE"
FOLLOW_UP_LOCKED = "FOLLOW_UP_LOCKED"
INVALID_STATE = "INVALID_STATE"

_REVIEW_DECISIONS = {
    DecisionKind.ACCEPT,
    DecisionKind.RETURN,
    DecisionKind.DECLINE,
}

_MESSAGES: dict[NotificationKind, str] = {
    NotificationKind.TASK_REVIEW_REQUESTED: 'La tâche "{title}" est prête pour révision',
    NotificationKind.MANAGER_VALIDATION_REQUESTED: (
        'La tâche "{title}" a été acceptée par le suivi et attend votre validation'
    ),
    NotificationKind.TASK_COMPLETED: 'La tâche "{title}" a été acceptée',
    NotificationKind.TASK_VALIDATED: 'La tâche "{title}" a été validée',
    NotificationKind.TASK_RETURNED: (
        'La tâche "{title}" vous a été retournée pour modifications : {feedback}'
    ),
    NotificationKind.TASK_DECLINED: 'La tâche "{title}" a été refusée : {feedback}',
    NotificationKind.TASK_COMMENT_ADDED: 'Nouveau commentaire sur la tâche "{title}"',
}


def _not_found(task_id: str) -> OperationResult:
    return OperationResult.failure(
        ErrorKind.NOT_FOUND,
        TASK_NOT_FOUND,
        f"Task with id {task_id} does not exist",
    )


def _conflict(task_id: str, expected: int, actual: int | None) -> OperationResult:
    return OperationResult.failure(
        ErrorKind.CONFLICT,
        VERSION_CONFLICT,
        f"Task {task_id} is at version {actual}, expected {expected}; "
        "re-fetch and retry",
    )


def _denied(code: str, message: str) -> OperationResult:
    return OperationResult.failure(ErrorKind.DENIED, code, message)


def _invalid(code: str, message: str) -> OperationResult:
    return OperationResult.failure(ErrorKind.VALIDATION_ERROR, code, message)


class WorkflowService:
    """评审流程编排器"""

    def __init__(
        self,
        store_group: StoreGroup,
        dispatcher: NotificationSink | None = None,
        *,
        feedback_max_length: int = FEEDBACK_MAX_LENGTH,
        comment_max_length: int = COMMENT_MAX_LENGTH,
    ) -> None:
        self._stores = store_group
        self._dispatcher = dispatcher
        self._feedback_max_length = feedback_max_length
        self._comment_max_length = comment_max_length

    # ------------------------------------------------------------------
    # 直接状态变更
    # ------------------------------------------------------------------

    async def update_status(
        self,
        task_id: str,
        new_status: TaskStatus,
        actor_id: str,
        expected_version: int,
    ) -> OperationResult:
        """直接状态变更（看板拖拽）

        配对任务的状态同步镜像到对方，两者在同一事务内提交。
        校验顺序：NOT_FOUND -> DENIED（Guard）-> CONFLICT。
        """
        now = datetime.now(UTC)
        with bound_contextvars(task_id=task_id, actor_id=actor_id):
            async with self._stores.lock:
                task = await self._stores.task_store.get_task(task_id)
                if task is None:
                    return _not_found(task_id)

                guard = can_transition(task, new_status, actor_id)
                if not guard.allowed:
                    await log.ainfo("status_change_denied", code=guard.code)
                    return _denied(guard.code, guard.reason)

                if task.version != expected_version:
                    return _conflict(task_id, expected_version, task.version)

                linked, error = await self._load_linked(task)
                if error is not None:
                    return error

                decision = Decision(
                    kind=DecisionKind.PLAIN_STATUS_CHANGE,
                    new_status=new_status,
                )
                result = await self._synchronize_and_commit(
                    task, decision, linked, actor_id, now
                )

            if result.ok:
                await log.ainfo(
                    "task_status_changed",
                    from_status=task.status,
                    to_status=new_status,
                    version=result.task.version,
                )
                self._emit(self._status_effects(result.tasks, actor_id))
            return result

    # ------------------------------------------------------------------
    # 评审决策
    # ------------------------------------------------------------------

    async def review_task(
        self,
        task_id: str,
        decision: DecisionKind,
        feedback: str | None,
        actor_id: str,
        expected_version: int,
    ) -> OperationResult:
        """评审决策（accept / return / decline）

        配对任务的决策作用在 FOLLOW_UP 任务上；独立任务直接作用在自身。
        校验顺序：NOT_FOUND -> VALIDATION_ERROR -> CONFLICT -> DENIED。
        """
        now = datetime.now(UTC)

        if decision not in _REVIEW_DECISIONS:
            return _invalid(INVALID_DECISION, f"Unsupported review decision: {decision}")

        with bound_contextvars(task_id=task_id, actor_id=actor_id):
            async with self._stores.lock:
                task = await self._stores.task_store.get_task(task_id)
                if task is None:
                    return _not_found(task_id)

                feedback_text, error = self._validate_feedback(decision, feedback)
                if error is not None:
                    return error

                if task.version != expected_version:
                    return _conflict(task_id, expected_version, task.version)

                linked, error = await self._load_linked(task)
                if error is not None:
                    return error

                manager_tier = task.review_state == ReviewState.AWAITING_MANAGER_VALIDATION
                error = await self._authorize_review(task, linked, actor_id, manager_tier)
                if error is not None:
                    await log.ainfo(
                        "review_denied",
                        decision=decision,
                        code=error.error.code,
                    )
                    return error

                result = await self._synchronize_and_commit(
                    task,
                    Decision(kind=decision, feedback=feedback_text),
                    linked,
                    actor_id,
                    now,
                )

            if result.ok:
                await log.ainfo(
                    "review_decision_committed",
                    decision=decision,
                    manager_tier=manager_tier,
                    task_ids=[t.task_id for t in result.tasks],
                )
                self._emit(
                    self._review_effects(
                        result.tasks, decision, feedback_text, actor_id, manager_tier
                    )
                )
            return result

    def _validate_feedback(
        self,
        decision: DecisionKind,
        feedback: str | None,
    ) -> tuple[str | None, OperationResult | None]:
        text = (feedback or "").strip()
        if decision in FEEDBACK_REQUIRED_DECISIONS and not text:
            return None, _invalid(
                FEEDBACK_REQUIRED,
                f"Feedback is required to {decision.value} a task",
            )
        if len(text) > self._feedback_max_length:
            return None, _invalid(
                FEEDBACK_TOO_LONG,
                f"Feedback exceeds {self._feedback_max_length} characters",
            )
        return text or None, None

    async def _authorize_review(
        self,
        task: Task,
        linked: Task | None,
        actor_id: str,
        manager_tier: bool,
    ) -> OperationResult | None:
        """校验评审前置条件与评审人权限，通过返回 None"""
        if task.role == TaskRole.REALIZATION:
            return _denied(
                REVIEW_TARGETS_FOLLOW_UP,
                f"Review decisions for {task.task_id} must target its follow-up "
                f"task {task.linked_task_id}",
            )
        if task.status == TaskStatus.DONE:
            return _denied(TASK_DONE, f"Task {task.task_id} is already done")

        under_review = linked if linked is not None else task
        if under_review.status != TaskStatus.IN_REVIEW:
            return _denied(
                NOT_UNDER_REVIEW,
                f"Task {under_review.task_id} is not under review",
            )

        role = await self._stores.identity_store.role_of(actor_id)

        if task.role == TaskRole.STANDALONE:
            return self._authorize_standalone_review(task, actor_id, role)

        if manager_tier:
            if role == UserRole.MANAGER:
                return None
            return _denied(
                MANAGER_REQUIRED,
                f"Task {task.task_id} awaits manager validation",
            )

        if task.status != TaskStatus.IN_REVIEW:
            return _denied(
                INVALID_STATE,
                f"Follow-up task {task.task_id} is not in review with its realization",
            )
        if actor_id != task.assignee_id:
            return _denied(
                NOT_AUTHORIZED,
                f"Only the follow-up assignee can review task {task.task_id}",
            )
        return None

    @staticmethod
    def _authorize_standalone_review(
        task: Task,
        actor_id: str,
        role: UserRole,
    ) -> OperationResult | None:
        """独立任务单层评审

        负责人不能评审自己提交的工作；
        needs_validation 的独立任务只能由经理确认，否则创建者或经理均可。
        """
        if actor_id == task.assignee_id:
            return _denied(
                SELF_REVIEW,
                f"User {actor_id} cannot review their own work on task {task.task_id}",
            )
        if task.needs_validation:
            if role == UserRole.MANAGER:
                return None
            return _denied(
                MANAGER_REQUIRED,
                f"Task {task.task_id} requires manager validation",
            )
        if actor_id == task.creator_id or role == UserRole.MANAGER:
            return None
        return _denied(
            NOT_AUTHORIZED,
            f"User {actor_id} cannot review task {task.task_id}",
        )

    # ------------------------------------------------------------------
    # 单任务字段变更
    # ------------------------------------------------------------------

    async def update_progress(
        self,
        task_id: str,
        value: int,
        actor_id: str,
        expected_version: int | None = None,
    ) -> OperationResult:
        """更新进度（0-100）"""
        if not 0 <= value <= 100:
            return _invalid(INVALID_PROGRESS, "Progress must be between 0 and 100")

        return await self._update_fields(
            task_id,
            actor_id,
            expected_version,
            lambda task: ({"progress": value}, None),
        )

    async def toggle_subtask(
        self,
        task_id: str,
        subtask_id: str,
        actor_id: str,
        expected_version: int | None = None,
    ) -> OperationResult:
        """切换子任务完成状态，进度按已完成子任务比例重算"""

        def build(task: Task) -> tuple[dict[str, Any], OperationResult | None]:
            if not any(s.id == subtask_id for s in task.subtasks):
                return {}, OperationResult.failure(
                    ErrorKind.NOT_FOUND,
                    SUBTASK_NOT_FOUND,
                    f"Subtask {subtask_id} does not exist on task {task_id}",
                )
            subtasks = [
                s.model_copy(update={"completed": not s.completed})
                if s.id == subtask_id
                else s
                for s in task.subtasks
            ]
            return {
                "subtasks": subtasks,
                "progress": _progress_of(subtasks),
            }, None

        return await self._update_fields(task_id, actor_id, expected_version, build)

    async def add_subtask(
        self,
        task_id: str,
        text: str,
        actor_id: str,
        expected_version: int | None = None,
    ) -> OperationResult:
        """追加子任务，进度按已完成子任务比例重算"""
        text = text.strip()
        if not text:
            return _invalid(INVALID_SUBTASK, "Subtask text must not be empty")

        def build(task: Task) -> tuple[dict[str, Any], OperationResult | None]:
            subtasks = [*task.subtasks, Subtask(id=str(ULID()), text=text)]
            return {
                "subtasks": subtasks,
                "progress": _progress_of(subtasks),
            }, None

        return await self._update_fields(task_id, actor_id, expected_version, build)

    async def add_comment(
        self,
        task_id: str,
        text: str,
        author_id: str,
        expected_version: int | None = None,
    ) -> OperationResult:
        """发表评论

        已完成的任务仍可评论。
        评论者是负责人时通知创建者，否则通知负责人。
        """
        text = text.strip()
        if not text:
            return _invalid(INVALID_COMMENT, "Comment text must not be empty")
        if len(text) > self._comment_max_length:
            return _invalid(
                COMMENT_TOO_LONG,
                f"Comment exceeds {self._comment_max_length} characters",
            )

        def build(task: Task) -> tuple[dict[str, Any], OperationResult | None]:
            comment = Comment(
                id=str(ULID()),
                author_id=author_id,
                text=text,
                created_at=datetime.now(UTC),
            )
            return {"comments": [*task.comments, comment]}, None

        def effects(task: Task) -> list[EffectRequest]:
            recipient = (
                task.creator_id if author_id == task.assignee_id else task.assignee_id
            )
            collected = _Effects(author_id)
            collected.add(
                task, NotificationKind.TASK_COMMENT_ADDED, recipient, title=task.title
            )
            return collected.requests

        return await self._update_fields(
            task_id,
            author_id,
            expected_version,
            build,
            effects=effects,
            allow_done=True,
        )

    async def _update_fields(
        self,
        task_id: str,
        actor_id: str,
        expected_version: int | None,
        build,
        *,
        effects: Callable[[Task], list[EffectRequest]] | None = None,
        allow_done: bool = False,
    ) -> OperationResult:
        """单任务字段变更：不跨任务

        expected_version 省略时以读取到的版本为准。
        """
        now = datetime.now(UTC)
        with bound_contextvars(task_id=task_id, actor_id=actor_id):
            async with self._stores.lock:
                task = await self._stores.task_store.get_task(task_id)
                if task is None:
                    return _not_found(task_id)
                if task.status == TaskStatus.DONE and not allow_done:
                    return _denied(TASK_DONE, f"Task {task_id} is done and read-only")
                if expected_version is not None and task.version != expected_version:
                    return _conflict(task_id, expected_version, task.version)

                changes, error = build(task)
                if error is not None:
                    return error

                mutation_set = MutationSet(
                    event_type=EventType.TASK_UPDATED,
                    mutations=[
                        TaskMutation(
                            task_id=task.task_id,
                            expected_version=task.version,
                            changes=changes,
                        )
                    ],
                )
                result = await self._commit(mutation_set, actor_id, now)

            if result.ok:
                await log.ainfo(
                    "task_fields_updated",
                    fields=sorted(changes),
                    version=result.task.version,
                )
                if effects is not None:
                    self._emit(effects(result.task))
            return result

    # ------------------------------------------------------------------
    # 删除
    # ------------------------------------------------------------------

    async def delete_task(
        self,
        task_id: str,
        actor_id: str,
        expected_version: int | None = None,
    ) -> OperationResult:
        """删除任务（创建者或经理）

        配对任务的两个成员在同一事务内一起删除，不会留下单边任务。
        删除写入 TASK_DELETED 事件并打上 deleted_at，事件历史保留。
        """
        now = datetime.now(UTC)
        with bound_contextvars(task_id=task_id, actor_id=actor_id):
            async with self._stores.lock:
                task = await self._stores.task_store.get_task(task_id)
                if task is None:
                    return _not_found(task_id)

                role = await self._stores.identity_store.role_of(actor_id)
                if actor_id != task.creator_id and role != UserRole.MANAGER:
                    await log.ainfo("task_delete_denied")
                    return _denied(
                        NOT_AUTHORIZED,
                        f"Only the creator or a manager can delete task {task_id}",
                    )

                if expected_version is not None and task.version != expected_version:
                    return _conflict(task_id, expected_version, task.version)

                linked, error = await self._load_linked(task)
                if error is not None:
                    return error

                mutation_set = MutationSet(
                    event_type=EventType.TASK_DELETED,
                    mutations=[
                        TaskMutation(
                            task_id=t.task_id,
                            expected_version=t.version,
                            changes={"deleted_at": now},
                        )
                        for t in (task, linked)
                        if t is not None
                    ],
                )
                result = await self._commit(mutation_set, actor_id, now)

            if result.ok:
                await log.ainfo(
                    "task_deleted",
                    task_ids=[t.task_id for t in result.tasks],
                )
            return result

    # ------------------------------------------------------------------
    # 提交
    # ------------------------------------------------------------------

    async def _load_linked(
        self, task: Task
    ) -> tuple[Task | None, OperationResult | None]:
        if task.role == TaskRole.STANDALONE:
            return None, None
        linked = await self._stores.task_store.get_task(task.linked_task_id or "")
        if linked is None:
            log.warning(
                "linked_task_missing",
                task_id=task.task_id,
                linked_task_id=task.linked_task_id,
            )
            return None, OperationResult.failure(
                ErrorKind.NOT_FOUND,
                LINKED_TASK_NOT_FOUND,
                f"Linked task {task.linked_task_id} of {task.task_id} does not exist",
            )
        return linked, None

    async def _synchronize_and_commit(
        self,
        task: Task,
        decision: Decision,
        linked: Task | None,
        actor_id: str,
        now: datetime,
    ) -> OperationResult:
        try:
            mutation_set = compute_mutation_set(task, decision, linked, now=now)
        except InvalidDecisionError as e:
            log.warning(
                "invalid_decision",
                task_id=task.task_id,
                decision=decision.kind,
                error=str(e),
            )
            return _denied(INVALID_STATE, str(e))
        return await self._commit(mutation_set, actor_id, now)

    async def _commit(
        self,
        mutation_set: MutationSet,
        actor_id: str,
        now: datetime,
    ) -> OperationResult:
        try:
            committed = await commit_mutation_set(
                self._stores.conn,
                self._stores.task_store,
                self._stores.event_store,
                mutation_set,
                actor_id=actor_id,
                ts=now,
            )
        except TaskVersionConflictError as e:
            await log.awarning(
                "task_version_conflict",
                task_id=e.task_id,
                expected_version=e.expected_version,
                actual_version=e.actual_version,
            )
            return _conflict(e.task_id, e.expected_version, e.actual_version)
        return OperationResult.success(committed)

    # ------------------------------------------------------------------
    # 通知
    # ------------------------------------------------------------------

    def _emit(self, effects: list[EffectRequest]) -> None:
        """提交成功后投递通知请求；投递失败只记录日志"""
        if self._dispatcher is None:
            return
        for effect in effects:
            try:
                self._dispatcher.enqueue(effect)
            except Exception as e:
                log.error(
                    "notification_enqueue_failed",
                    task_id=effect.task_id,
                    kind=effect.kind,
                    error_type=type(e).__name__,
                )

    def _status_effects(self, tasks: list[Task], actor_id: str) -> list[EffectRequest]:
        task = tasks[0]
        linked = tasks[1] if len(tasks) > 1 else None
        effects = _Effects(actor_id)

        if task.status == TaskStatus.IN_REVIEW:
            if linked is not None:
                effects.add(
                    linked,
                    NotificationKind.TASK_REVIEW_REQUESTED,
                    linked.assignee_id,
                    title=task.title,
                )
            elif task.needs_validation:
                effects.add(
                    task,
                    NotificationKind.TASK_REVIEW_REQUESTED,
                    task.creator_id,
                    title=task.title,
                )
        elif task.status == TaskStatus.DONE and linked is None:
            effects.add(
                task,
                NotificationKind.TASK_COMPLETED,
                task.creator_id,
                title=task.title,
            )
        return effects.requests

    def _review_effects(
        self,
        tasks: list[Task],
        decision: DecisionKind,
        feedback: str | None,
        actor_id: str,
        manager_tier: bool,
    ) -> list[EffectRequest]:
        reviewed = tasks[0]
        realization = tasks[1] if len(tasks) > 1 else None
        # 独立任务：评审对象即工作成果
        work = realization or reviewed
        effects = _Effects(actor_id)

        if decision == DecisionKind.ACCEPT:
            if reviewed.review_state == ReviewState.AWAITING_MANAGER_VALIDATION:
                effects.add(
                    reviewed,
                    NotificationKind.MANAGER_VALIDATION_REQUESTED,
                    reviewed.creator_id,
                    title=reviewed.title,
                )
            elif manager_tier or (realization is None and reviewed.needs_validation):
                effects.add(
                    work, NotificationKind.TASK_VALIDATED, work.assignee_id, title=work.title
                )
                if realization is not None:
                    effects.add(
                        reviewed,
                        NotificationKind.TASK_VALIDATED,
                        reviewed.assignee_id,
                        title=work.title,
                    )
            else:
                effects.add(
                    work, NotificationKind.TASK_COMPLETED, work.assignee_id, title=work.title
                )
            return effects.requests

        kind = (
            NotificationKind.TASK_DECLINED
            if decision == DecisionKind.DECLINE
            else NotificationKind.TASK_RETURNED
        )
        effects.add(work, kind, work.assignee_id, title=work.title, feedback=feedback)
        if manager_tier and realization is not None:
            effects.add(
                reviewed,
                kind,
                reviewed.assignee_id,
                title=work.title,
                feedback=feedback,
            )
        return effects.requests


class _Effects:
    """按接收者收集通知请求：跳过操作者本人与空接收者，同一任务同一接收者只发一次"""

    def __init__(self, actor_id: str) -> None:
        self._actor_id = actor_id
        self.requests: list[EffectRequest] = []

    def add(
        self,
        task: Task,
        kind: NotificationKind,
        recipient_id: str | None,
        **fields: Any,
    ) -> None:
        if not recipient_id or recipient_id == self._actor_id:
            return
        key = build_idempotency_key(task.task_id, kind, recipient_id, task.version)
        if any(r.idempotency_key == key for r in self.requests):
            return
        self.requests.append(
            EffectRequest(
                recipient_id=recipient_id,
                kind=kind,
                task_id=task.task_id,
                message=_MESSAGES[kind].format(**fields),
                idempotency_key=key,
            )
        )


def _progress_of(subtasks: list[Subtask]) -> int:
    if not subtasks:
        return 0
    done = sum(1 for s in subtasks if s.completed)
    return round(done * 100 / len(subtasks))
