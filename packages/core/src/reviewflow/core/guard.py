"""Transition Guard -- 判定直接状态变更请求是否合法

纯函数层：不读写存储，不抛异常。拒绝是常见的预期结果（驱动 UI 的可拖拽提示），
一律以 GuardDecision 返回。

规则按顺序求值，首个命中的规则生效：
1. 已完成的任务不再流转
2. FOLLOW_UP 任务不接受直接状态变更
3. 处于评审中、且完成需要评审的任务不能绕过评审被拖走
4. 不在 VALID_TRANSITIONS 中的流转
5. 完成需要评审的任务不能被直接拖到 DONE
6. 其余放行
"""

from .models.enums import TaskRole, TaskStatus, validate_transition
from .models.results import GuardDecision
from .models.task import Task

DENY_TASK_DONE = "TASK_DONE"
DENY_FOLLOW_UP_LOCKED = "FOLLOW_UP_LOCKED"
DENY_REVIEW_REQUIRED = "REVIEW_REQUIRED"
DENY_ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"


def can_transition(
    task: Task,
    requested_status: TaskStatus,
    acting_user_id: str,
    *,
    via_review: bool = False,
) -> GuardDecision:
    """判定 task 能否被 acting_user_id 直接变更到 requested_status

    Args:
        task: 当前任务
        requested_status: 请求的目标状态
        acting_user_id: 操作者 ID（写入拒绝原因，便于审计）
        via_review: 请求是否来自编排器的评审决策路径

    Returns:
        GuardDecision
    """
    if task.status == TaskStatus.DONE:
        return GuardDecision.deny(
            DENY_TASK_DONE,
            f"Task {task.task_id} is done and accepts no further transitions",
        )

    if task.role == TaskRole.FOLLOW_UP:
        return GuardDecision.deny(
            DENY_FOLLOW_UP_LOCKED,
            "Follow-up tasks only change status through review decisions "
            "on their realization task",
        )

    if task.status == TaskStatus.IN_REVIEW and task.requires_review and not via_review:
        return GuardDecision.deny(
            DENY_REVIEW_REQUIRED,
            f"Task {task.task_id} is under review; user {acting_user_id} "
            "cannot move it outside the review workflow",
        )

    if not validate_transition(task.status, requested_status):
        return GuardDecision.deny(
            DENY_ILLEGAL_TRANSITION,
            f"Cannot transition from {task.status} to {requested_status}",
        )

    if requested_status == TaskStatus.DONE and task.requires_review and not via_review:
        return GuardDecision.deny(
            DENY_REVIEW_REQUIRED,
            f"Task {task.task_id} must be reviewed before it can be marked done",
        )

    return GuardDecision.allow()
