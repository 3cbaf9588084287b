"""Linked-Task Synchronizer -- 计算一次决策的完整变更集合

纯函数：只根据传入的任务快照计算 MutationSet，不访问存储。
调用方（编排器）负责事先完成授权与前置条件校验，并原子提交结果；
此处遇到不可能的输入直接抛出 InvalidDecisionError。
"""

from datetime import datetime
from typing import Any

from .models.enums import (
    DecisionKind,
    EventType,
    ReviewState,
    TaskRole,
    TaskStatus,
)
from .models.mutation import Decision, MutationSet, TaskMutation
from .models.task import Task


class InvalidDecisionError(ValueError):
    """决策与任务状态不匹配（编排器应已拒绝此类请求）"""


def compute_mutation_set(
    task: Task,
    decision: Decision,
    linked: Task | None = None,
    *,
    now: datetime,
) -> MutationSet:
    """计算 decision 作用于 task（及其配对任务 linked）时的变更集合

    Args:
        task: 决策作用的任务
        decision: 决策
        linked: task 的配对任务；task 为 STANDALONE 时为 None
        now: 提交时间，用于 completed_at / declined_at

    Returns:
        MutationSet，被操作的任务排在第一位
    """
    _check_pairing(task, linked)

    if decision.kind == DecisionKind.PLAIN_STATUS_CHANGE:
        return _plain_status_change(task, decision, linked, now)
    if decision.kind == DecisionKind.ACCEPT:
        return _accept(task, linked, now)
    if decision.kind in (DecisionKind.RETURN, DecisionKind.DECLINE):
        return _send_back(task, decision, linked, now)

    raise InvalidDecisionError(f"Unsupported decision: {decision.kind}")


def _check_pairing(task: Task, linked: Task | None) -> None:
    if task.role == TaskRole.STANDALONE:
        if linked is not None:
            raise InvalidDecisionError("Standalone task cannot have a linked task")
        return

    linked = _require_linked(task, linked)
    if task.linked_task_id != linked.task_id or linked.linked_task_id != task.task_id:
        raise InvalidDecisionError(
            f"Tasks {task.task_id} and {linked.task_id} are not linked to each other"
        )
    if {task.role, linked.role} != {TaskRole.FOLLOW_UP, TaskRole.REALIZATION}:
        raise InvalidDecisionError("A pair must hold one follow-up and one realization")


def _require_linked(task: Task, linked: Task | None) -> Task:
    if linked is None:
        raise InvalidDecisionError(f"Linked task of {task.task_id} is required")
    return linked


def _mutation(task: Task, changes: dict[str, Any]) -> TaskMutation:
    return TaskMutation(
        task_id=task.task_id,
        expected_version=task.version,
        changes=changes,
    )


def _status_changes(
    task: Task,
    new_status: TaskStatus,
    now: datetime,
    *,
    reviewed: bool,
) -> dict[str, Any]:
    """直接状态变更时单个任务的字段变更"""
    changes: dict[str, Any] = {"status": new_status}

    if new_status == TaskStatus.IN_REVIEW:
        if reviewed:
            changes["review_state"] = ReviewState.AWAITING_REVIEW
            changes["feedback"] = None
    elif task.review_state == ReviewState.AWAITING_REVIEW:
        changes["review_state"] = ReviewState.NONE

    if new_status == TaskStatus.DONE:
        changes["completed_at"] = now

    return changes


def _plain_status_change(
    task: Task,
    decision: Decision,
    linked: Task | None,
    now: datetime,
) -> MutationSet:
    new_status = decision.new_status
    if new_status is None:
        raise InvalidDecisionError("Plain status change requires new_status")
    if task.role == TaskRole.FOLLOW_UP:
        raise InvalidDecisionError("Follow-up task status only changes by propagation")

    mutations = [
        _mutation(
            task,
            _status_changes(task, new_status, now, reviewed=task.requires_review),
        )
    ]
    if linked is not None:
        # 状态镜像：配对任务与执行任务保持同一状态
        mutations.append(
            _mutation(linked, _status_changes(linked, new_status, now, reviewed=True))
        )

    return MutationSet(
        event_type=EventType.STATE_TRANSITION,
        decision=DecisionKind.PLAIN_STATUS_CHANGE,
        mutations=mutations,
    )


def _done_changes(now: datetime) -> dict[str, Any]:
    return {
        "status": TaskStatus.DONE,
        "review_state": ReviewState.NONE,
        "feedback": None,
        "completed_at": now,
    }


def _accept(task: Task, linked: Task | None, now: datetime) -> MutationSet:
    if task.role == TaskRole.REALIZATION:
        raise InvalidDecisionError("Review decisions target the follow-up task")

    if task.role == TaskRole.STANDALONE:
        if task.status != TaskStatus.IN_REVIEW:
            raise InvalidDecisionError(f"Task {task.task_id} is not under review")
        return MutationSet(
            event_type=EventType.REVIEW_DECISION,
            decision=DecisionKind.ACCEPT,
            mutations=[_mutation(task, _done_changes(now))],
        )

    linked = _require_linked(task, linked)
    if linked.status != TaskStatus.IN_REVIEW:
        raise InvalidDecisionError(f"Realization task {linked.task_id} is not under review")

    if task.review_state == ReviewState.AWAITING_MANAGER_VALIDATION:
        # 经理确认：两个任务一起完成
        mutations = [
            _mutation(task, _done_changes(now)),
            _mutation(linked, _done_changes(now)),
        ]
    elif task.needs_validation:
        if task.status != TaskStatus.IN_REVIEW:
            raise InvalidDecisionError(
                "Manager validation can only be requested from IN_REVIEW"
            )
        # 第一层通过：仅标记等待经理确认，执行任务状态不变
        mutations = [
            _mutation(task, {"review_state": ReviewState.AWAITING_MANAGER_VALIDATION}),
        ]
    else:
        mutations = [
            _mutation(task, _done_changes(now)),
            _mutation(linked, _done_changes(now)),
        ]

    return MutationSet(
        event_type=EventType.REVIEW_DECISION,
        decision=DecisionKind.ACCEPT,
        mutations=mutations,
    )


def _send_back(
    task: Task,
    decision: Decision,
    linked: Task | None,
    now: datetime,
) -> MutationSet:
    """RETURN / DECLINE：工作重新打开，反馈记录在评审方"""
    feedback = (decision.feedback or "").strip()
    if not feedback:
        raise InvalidDecisionError(f"{decision.kind} requires feedback")
    if task.role == TaskRole.REALIZATION:
        raise InvalidDecisionError("Review decisions target the follow-up task")

    declined = decision.kind == DecisionKind.DECLINE

    if task.role == TaskRole.STANDALONE:
        if task.status != TaskStatus.IN_REVIEW:
            raise InvalidDecisionError(f"Task {task.task_id} is not under review")
        changes: dict[str, Any] = {
            "status": TaskStatus.IN_PROGRESS,
            "review_state": ReviewState.RETURNED_WITH_FEEDBACK,
            "feedback": feedback,
        }
        if declined:
            changes["declined_at"] = now
        mutations = [_mutation(task, changes)]
    else:
        linked = _require_linked(task, linked)
        if linked.status != TaskStatus.IN_REVIEW:
            raise InvalidDecisionError(
                f"Realization task {linked.task_id} is not under review"
            )
        realization_changes: dict[str, Any] = {
            "status": TaskStatus.IN_PROGRESS,
            "review_state": ReviewState.NONE,
        }
        if declined:
            realization_changes["declined_at"] = now
        mutations = [
            _mutation(
                task,
                {
                    "review_state": ReviewState.RETURNED_WITH_FEEDBACK,
                    "feedback": feedback,
                },
            ),
            _mutation(linked, realization_changes),
        ]

    return MutationSet(
        event_type=EventType.REVIEW_DECISION,
        decision=decision.kind,
        feedback=feedback,
        mutations=mutations,
    )
