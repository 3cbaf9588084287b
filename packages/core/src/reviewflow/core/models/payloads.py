"""Event Payload 子类型

所有事件的结构化 payload 定义。
payload 必须足以在 projection 重建时复原 Task。
"""

from typing import Any

from pydantic import BaseModel, Field

from .enums import DecisionKind, TaskStatus


class TaskCreatedPayload(BaseModel):
    """TASK_CREATED 事件 payload"""

    snapshot: dict[str, Any] = Field(description="创建时的完整 Task（JSON 模式）")


class TaskMutationPayload(BaseModel):
    """TASK_CREATED 之外所有事件的 payload"""

    from_status: TaskStatus
    to_status: TaskStatus
    decision: DecisionKind | None = Field(default=None, description="触发变更的决策")
    feedback: str | None = Field(default=None, description="评审反馈")
    changes: dict[str, Any] = Field(
        default_factory=dict,
        description="本次提交写入的字段（JSON 模式）",
    )
