"""通知模型 -- 效果请求与持久化通知

EffectRequest 由编排器在提交成功后产出，交给 Notification Dispatcher 投递。
idempotency_key 由 task_id + kind + recipient_id + 提交版本组成，
由 Dispatcher 去重。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from .enums import NotificationKind


def build_idempotency_key(
    task_id: str,
    kind: NotificationKind,
    recipient_id: str,
    version: int,
) -> str:
    """构造通知幂等键"""
    return f"{task_id}:{kind.value}:{recipient_id}:v{version}"


class EffectRequest(BaseModel):
    """通知投递请求（fire-and-forget）"""

    recipient_id: str = Field(description="接收者 ID")
    kind: NotificationKind = Field(description="事件类型")
    task_id: str = Field(description="关联任务 ID")
    message: str = Field(description="可读的通知内容")
    idempotency_key: str = Field(description="去重键")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="请求生成时间",
    )


class Notification(BaseModel):
    """已投递的通知"""

    notification_id: str = Field(description="唯一标识，ULID 格式")
    recipient_id: str
    kind: NotificationKind
    task_id: str
    message: str
    idempotency_key: str
    created_at: datetime
    is_read: bool = Field(default=False)
