"""ReviewFlow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    FEEDBACK_REQUIRED_DECISIONS,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    DecisionKind,
    ErrorKind,
    EventType,
    NotificationKind,
    ReviewState,
    TaskRole,
    TaskStatus,
    UserRole,
    validate_transition,
)
from .event import Event, EventCausality
from .mutation import Decision, MutationSet, TaskMutation, apply_changes
from .notification import EffectRequest, Notification, build_idempotency_key
from .payloads import TaskCreatedPayload, TaskMutationPayload
from .results import EngineError, GuardDecision, OperationResult
from .task import Comment, Subtask, Task

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskRole",
    "ReviewState",
    "DecisionKind",
    "UserRole",
    "EventType",
    "NotificationKind",
    "ErrorKind",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "FEEDBACK_REQUIRED_DECISIONS",
    "validate_transition",
    # Task
    "Task",
    "Subtask",
    "Comment",
    # Event
    "Event",
    "EventCausality",
    # Mutation
    "Decision",
    "TaskMutation",
    "MutationSet",
    "apply_changes",
    # Results
    "GuardDecision",
    "EngineError",
    "OperationResult",
    # Notification
    "EffectRequest",
    "Notification",
    "build_idempotency_key",
    # Payloads
    "TaskCreatedPayload",
    "TaskMutationPayload",
]
