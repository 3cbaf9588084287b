"""Decision 与 MutationSet -- 同步器的输入与输出

MutationSet 是一次决策产生的完整字段变更集合，
可能跨越一个或两个 Task 聚合，必须整体原子提交。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from pydantic_core import to_jsonable_python

from .enums import DecisionKind, EventType, TaskStatus
from .task import Task


class Decision(BaseModel):
    """变更决策"""

    kind: DecisionKind
    feedback: str | None = Field(default=None, description="RETURN/DECLINE 必填")
    new_status: TaskStatus | None = Field(
        default=None,
        description="PLAIN_STATUS_CHANGE 的目标状态",
    )


class TaskMutation(BaseModel):
    """单个 Task 的字段变更"""

    task_id: str
    expected_version: int = Field(description="读取时的版本，提交时做 CAS 比较")
    changes: dict[str, Any] = Field(default_factory=dict)

    def json_changes(self) -> dict[str, Any]:
        """转换为可写入事件 payload 的 JSON 结构"""
        return to_jsonable_python(self.changes)


class MutationSet(BaseModel):
    """一次决策产生的全部变更"""

    event_type: EventType
    decision: DecisionKind | None = None
    feedback: str | None = None
    mutations: list[TaskMutation] = Field(default_factory=list)

    @property
    def task_ids(self) -> list[str]:
        return [m.task_id for m in self.mutations]

    def for_task(self, task_id: str) -> TaskMutation | None:
        for mutation in self.mutations:
            if mutation.task_id == task_id:
                return mutation
        return None


def apply_changes(task: Task, changes: dict[str, Any], ts: datetime) -> Task:
    """将字段变更应用到 Task，返回 version+1 的新实例

    changes 既可以是同步器产出的 Python 值，也可以是事件 payload 中的 JSON 值，
    统一经过模型校验还原类型。
    """
    data = task.model_dump()
    data.update(changes)
    data["version"] = task.version + 1
    data["updated_at"] = ts
    return Task.model_validate(data)
