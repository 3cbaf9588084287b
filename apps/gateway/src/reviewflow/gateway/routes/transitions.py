"""任务变更路由 -- 全部经过 WorkflowService

POST /api/tasks/{task_id}/status: 直接状态变更
POST /api/tasks/{task_id}/review: 评审决策 accept / return / decline
POST /api/tasks/{task_id}/progress: 更新进度
POST /api/tasks/{task_id}/subtasks: 追加子任务
POST /api/tasks/{task_id}/subtasks/{subtask_id}/toggle: 切换子任务完成状态
POST /api/tasks/{task_id}/comments: 发表评论
DELETE /api/tasks/{task_id}: 删除任务（配对任务两端一起删除）

错误映射：DENIED -> 403, CONFLICT -> 409, VALIDATION_ERROR -> 422, NOT_FOUND -> 404
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from reviewflow.core.models import DecisionKind, ErrorKind, OperationResult, TaskStatus
from starlette.responses import JSONResponse

from ..deps import get_dispatcher, get_store_group
from ..services.workflow_service import WorkflowService

router = APIRouter()

_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.DENIED: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.NOT_FOUND: 404,
}


class StatusChangeRequest(BaseModel):
    """直接状态变更请求体"""

    new_status: TaskStatus = Field(description="目标状态")
    expected_version: int = Field(ge=1, description="读取时的任务版本")
    actor_id: str = Field(min_length=1, description="操作者 ID")


class ReviewRequest(BaseModel):
    """评审决策请求体"""

    decision: Literal["accept", "return", "decline"] = Field(description="评审决策")
    feedback: str | None = Field(default=None, description="return/decline 必填")
    expected_version: int = Field(ge=1, description="读取时的任务版本")
    actor_id: str = Field(min_length=1, description="评审人 ID")


class ProgressRequest(BaseModel):
    """进度更新请求体"""

    value: int = Field(ge=0, le=100, description="进度百分比")
    actor_id: str = Field(min_length=1, description="操作者 ID")
    expected_version: int | None = Field(default=None, ge=1)


class AddSubtaskRequest(BaseModel):
    """追加子任务请求体"""

    text: str = Field(min_length=1, description="子任务内容")
    actor_id: str = Field(min_length=1, description="操作者 ID")
    expected_version: int | None = Field(default=None, ge=1)


class ToggleSubtaskRequest(BaseModel):
    """切换子任务请求体"""

    actor_id: str = Field(min_length=1, description="操作者 ID")
    expected_version: int | None = Field(default=None, ge=1)


class AddCommentRequest(BaseModel):
    """评论请求体"""

    text: str = Field(min_length=1, description="评论内容")
    author_id: str = Field(min_length=1, description="评论者 ID")
    expected_version: int | None = Field(default=None, ge=1)


def error_response(result: OperationResult) -> JSONResponse:
    """将类型化错误转换为 HTTP 响应"""
    error = result.error
    return JSONResponse(
        status_code=_STATUS_CODES[error.kind],
        content={
            "error": {
                "code": error.code,
                "kind": error.kind.value,
                "message": error.message,
            }
        },
    )


@router.post("/api/tasks/{task_id}/status")
async def update_status(
    task_id: str,
    body: StatusChangeRequest,
    store_group=Depends(get_store_group),
    dispatcher=Depends(get_dispatcher),
):
    """直接状态变更，成功返回 200 + 被操作的 Task"""
    service = WorkflowService(store_group, dispatcher)
    result = await service.update_status(
        task_id,
        body.new_status,
        body.actor_id,
        body.expected_version,
    )
    if not result.ok:
        return error_response(result)
    return result.task.model_dump(mode="json")


@router.post("/api/tasks/{task_id}/review")
async def review_task(
    task_id: str,
    body: ReviewRequest,
    store_group=Depends(get_store_group),
    dispatcher=Depends(get_dispatcher),
):
    """评审决策，成功返回 200 + 本次提交的全部 Task"""
    service = WorkflowService(store_group, dispatcher)
    result = await service.review_task(
        task_id,
        DecisionKind(body.decision),
        body.feedback,
        body.actor_id,
        body.expected_version,
    )
    if not result.ok:
        return error_response(result)
    return [t.model_dump(mode="json") for t in result.tasks]


@router.post("/api/tasks/{task_id}/progress")
async def update_progress(
    task_id: str,
    body: ProgressRequest,
    store_group=Depends(get_store_group),
):
    """更新进度，成功返回 200 + Task"""
    service = WorkflowService(store_group)
    result = await service.update_progress(
        task_id,
        body.value,
        body.actor_id,
        body.expected_version,
    )
    if not result.ok:
        return error_response(result)
    return result.task.model_dump(mode="json")


@router.post("/api/tasks/{task_id}/subtasks")
async def add_subtask(
    task_id: str,
    body: AddSubtaskRequest,
    store_group=Depends(get_store_group),
):
    """追加子任务，成功返回 201 + Task"""
    service = WorkflowService(store_group)
    result = await service.add_subtask(
        task_id,
        body.text,
        body.actor_id,
        body.expected_version,
    )
    if not result.ok:
        return error_response(result)
    return JSONResponse(status_code=201, content=result.task.model_dump(mode="json"))


@router.post("/api/tasks/{task_id}/subtasks/{subtask_id}/toggle")
async def toggle_subtask(
    task_id: str,
    subtask_id: str,
    body: ToggleSubtaskRequest,
    store_group=Depends(get_store_group),
):
    """切换子任务完成状态，成功返回 200 + Task"""
    service = WorkflowService(store_group)
    result = await service.toggle_subtask(
        task_id,
        subtask_id,
        body.actor_id,
        body.expected_version,
    )
    if not result.ok:
        return error_response(result)
    return result.task.model_dump(mode="json")


@router.post("/api/tasks/{task_id}/comments")
async def add_comment(
    task_id: str,
    body: AddCommentRequest,
    store_group=Depends(get_store_group),
    dispatcher=Depends(get_dispatcher),
):
    """发表评论，成功返回 201 + Task"""
    service = WorkflowService(store_group, dispatcher)
    result = await service.add_comment(
        task_id,
        body.text,
        body.author_id,
        body.expected_version,
    )
    if not result.ok:
        return error_response(result)
    return JSONResponse(status_code=201, content=result.task.model_dump(mode="json"))


@router.delete("/api/tasks/{task_id}")
async def delete_task(
    task_id: str,
    actor_id: str = Query(min_length=1, description="操作者 ID"),
    expected_version: int | None = Query(default=None, ge=1),
    store_group=Depends(get_store_group),
):
    """删除任务，成功返回 200 + 被删除的 task_id 列表"""
    service = WorkflowService(store_group)
    result = await service.delete_task(task_id, actor_id, expected_version)
    if not result.ok:
        return error_response(result)
    return {"deleted": [t.task_id for t in result.tasks]}
