"""Task Domain Model -- 任务聚合

tasks 表是 events 的物化视图（projection），
所有字段变更都以事件形式落盘，version 与该任务最新事件的 task_seq 一致。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import ReviewState, TaskRole, TaskStatus


class Subtask(BaseModel):
    """子任务"""

    id: str = Field(description="子任务 ID")
    text: str = Field(description="子任务内容")
    completed: bool = Field(default=False, description="是否完成")


class Comment(BaseModel):
    """任务评论"""

    id: str = Field(description="评论 ID")
    author_id: str = Field(description="作者 ID")
    text: str = Field(description="评论内容")
    created_at: datetime = Field(description="发表时间")


class Task(BaseModel):
    """Task 数据模型

    role 在创建时确定；FOLLOW_UP / REALIZATION 成对出现，
    linked_task_id 互相指向对方。
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    title: str = Field(description="任务标题")
    description: str = Field(default="", description="任务描述")
    role: TaskRole = Field(default=TaskRole.STANDALONE, description="任务角色")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="当前状态")
    assignee_id: str | None = Field(default=None, description="负责人 ID")
    creator_id: str = Field(description="创建者 ID")
    linked_task_id: str | None = Field(default=None, description="配对任务 ID")
    needs_validation: bool = Field(
        default=False,
        description="完成是否需要经理二次确认，创建后不可变",
    )
    review_state: ReviewState = Field(default=ReviewState.NONE, description="评审状态")
    feedback: str | None = Field(default=None, description="退回/拒绝时的反馈")
    progress: int = Field(default=0, ge=0, le=100, description="进度百分比")
    subtasks: list[Subtask] = Field(default_factory=list, description="子任务列表")
    version: int = Field(default=1, ge=1, description="乐观并发版本号")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    declined_at: datetime | None = Field(default=None, description="被拒绝时间")
    archived_at: datetime | None = Field(default=None, description="归档时间")
    comments: list[Comment] = Field(default_factory=list, description="评论列表")
    deleted_at: datetime | None = Field(
        default=None,
        description="删除时间，非空时任务不再出现在任何查询中",
    )

    @property
    def is_paired(self) -> bool:
        return self.role != TaskRole.STANDALONE

    @property
    def requires_review(self) -> bool:
        """完成前必须经过评审路径"""
        return self.needs_validation or self.role == TaskRole.REALIZATION
