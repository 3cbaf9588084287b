"""枚举定义 -- 任务状态机、角色、评审状态与事件类型

包含 TaskStatus 状态机、TaskRole、ReviewState、DecisionKind、UserRole、
EventType、NotificationKind、ErrorKind 枚举，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"


class TaskRole(StrEnum):
    """任务角色 -- 创建时显式指定，不从标题推断"""

    STANDALONE = "STANDALONE"
    # 评审方：其负责人审核配对的 Realization 任务
    FOLLOW_UP = "FOLLOW_UP"
    # 执行方：承载实际工作成果
    REALIZATION = "REALIZATION"


class ReviewState(StrEnum):
    """评审状态"""

    NONE = "NONE"
    AWAITING_REVIEW = "AWAITING_REVIEW"
    RETURNED_WITH_FEEDBACK = "RETURNED_WITH_FEEDBACK"
    AWAITING_MANAGER_VALIDATION = "AWAITING_MANAGER_VALIDATION"


class DecisionKind(StrEnum):
    """变更决策类型"""

    ACCEPT = "accept"
    RETURN = "return"
    DECLINE = "decline"
    PLAIN_STATUS_CHANGE = "plain_status_change"


class UserRole(StrEnum):
    """身份角色 -- 由身份提供方给出"""

    MEMBER = "member"
    FOLLOW_UP_ASSIGNEE = "follow_up_assignee"
    MANAGER = "manager"


class EventType(StrEnum):
    """事件类型"""

    TASK_CREATED = "TASK_CREATED"
    STATE_TRANSITION = "STATE_TRANSITION"
    REVIEW_DECISION = "REVIEW_DECISION"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_ARCHIVED = "TASK_ARCHIVED"
    TASK_DELETED = "TASK_DELETED"


class NotificationKind(StrEnum):
    """通知类型"""

    TASK_REVIEW_REQUESTED = "TASK_REVIEW_REQUESTED"
    TASK_RETURNED = "TASK_RETURNED"
    TASK_DECLINED = "TASK_DECLINED"
    TASK_VALIDATED = "TASK_VALIDATED"
    TASK_COMPLETED = "TASK_COMPLETED"
    MANAGER_VALIDATION_REQUESTED = "MANAGER_VALIDATION_REQUESTED"
    TASK_COMMENT_ADDED = "TASK_COMMENT_ADDED"


class ErrorKind(StrEnum):
    """引擎错误分类，决定调用方的处理方式"""

    # 策略拒绝：不换人/不换状态则不可重试
    DENIED = "DENIED"
    # 版本竞争：重新读取后可重试
    CONFLICT = "CONFLICT"
    # 请求不合法：修正输入后再试
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"


# 直接拖拽（非评审路径）可走的状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.TODO: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.IN_REVIEW,
        TaskStatus.DONE,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.TODO,
        TaskStatus.IN_REVIEW,
        TaskStatus.DONE,
    },
    TaskStatus.IN_REVIEW: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.DONE,
    },
    # 终态不可再流转
    TaskStatus.DONE: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.DONE,
}

# 需要填写反馈的评审决策
FEEDBACK_REQUIRED_DECISIONS: set[DecisionKind] = {
    DecisionKind.RETURN,
    DecisionKind.DECLINE,
}


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
