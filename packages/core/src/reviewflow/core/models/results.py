"""引擎结果类型 -- Guard 判定与操作结果

拒绝、冲突、校验失败、未找到都是可预期的结果，
以类型化结果返回给调用方，而不是抛出异常。
"""

from pydantic import BaseModel, Field

from .enums import ErrorKind
from .task import Task


class GuardDecision(BaseModel):
    """Transition Guard 的判定结果"""

    allowed: bool
    code: str = Field(default="", description="拒绝原因代码")
    reason: str = Field(default="", description="拒绝原因描述")

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, code: str, reason: str) -> "GuardDecision":
        return cls(allowed=False, code=code, reason=reason)


class EngineError(BaseModel):
    """类型化的引擎错误"""

    kind: ErrorKind
    code: str
    message: str


class OperationResult(BaseModel):
    """编排器操作结果

    成功时 tasks 为提交后的任务（被操作的任务在前，配对任务在后）；
    失败时 error 非空。
    """

    tasks: list[Task] = Field(default_factory=list)
    error: EngineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def task(self) -> Task | None:
        return self.tasks[0] if self.tasks else None

    @classmethod
    def success(cls, tasks: list[Task]) -> "OperationResult":
        return cls(tasks=tasks)

    @classmethod
    def failure(cls, kind: ErrorKind, code: str, message: str) -> "OperationResult":
        return cls(error=EngineError(kind=kind, code=code, message=message))
