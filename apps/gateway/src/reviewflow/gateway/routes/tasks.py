"""任务创建与查询路由

POST /api/tasks: 创建独立任务。
POST /api/task-pairs: 原子创建 FollowUp + Realization 配对任务。
GET /api/tasks: 任务列表查询，支持 status 筛选。
GET /api/tasks/{task_id}: 任务详情，含配对任务与审计事件。
GET /api/users/{user_id}/tasks: 用户看板，按状态分组。
GET /api/users/{user_id}/task-history: 用户已完成/已归档任务。
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from reviewflow.core.config import TITLE_MAX_LENGTH
from reviewflow.core.models import Event, Task, TaskStatus
from starlette.responses import JSONResponse

from ..deps import get_store_group
from ..services.task_service import TaskService

router = APIRouter()


class CreateTaskRequest(BaseModel):
    """独立任务创建请求体"""

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH, description="任务标题")
    description: str = Field(default="", description="任务描述")
    creator_id: str = Field(min_length=1, description="创建者 ID")
    assignee_id: str | None = Field(default=None, description="负责人 ID")
    needs_validation: bool = Field(default=False, description="完成是否需要评审")
    subtasks: list[str] = Field(default_factory=list, description="子任务内容列表")


class CreateTaskPairRequest(BaseModel):
    """配对任务创建请求体"""

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH, description="任务标题")
    description: str = Field(default="", description="任务描述")
    creator_id: str = Field(min_length=1, description="创建者 ID（通常是经理）")
    realization_assignee_id: str = Field(min_length=1, description="执行人 ID")
    follow_up_assignee_id: str = Field(min_length=1, description="评审人 ID")
    needs_validation: bool = Field(default=False, description="是否需要经理二次确认")


def _validation_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "INVALID_TASK",
                "kind": "VALIDATION_ERROR",
                "message": message,
            }
        },
    )


def _task_not_found(task_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "error": {
                "code": "TASK_NOT_FOUND",
                "kind": "NOT_FOUND",
                "message": f"Task with id {task_id} does not exist",
            }
        },
    )


def _event_to_dict(event: Event) -> dict:
    return {
        "event_id": event.event_id,
        "task_seq": event.task_seq,
        "ts": event.ts.isoformat(),
        "type": event.type.value,
        "actor_id": event.actor_id,
        "payload": event.payload,
        "commit_id": event.causality.commit_id,
    }


@router.post("/api/tasks")
async def create_task(
    body: CreateTaskRequest,
    store_group=Depends(get_store_group),
):
    """创建独立任务，返回 201 + Task"""
    service = TaskService(store_group)
    try:
        task = await service.create_task(
            title=body.title,
            creator_id=body.creator_id,
            assignee_id=body.assignee_id,
            description=body.description,
            needs_validation=body.needs_validation,
            subtasks=body.subtasks,
        )
    except ValueError as e:
        return _validation_error(str(e))

    return JSONResponse(status_code=201, content=task.model_dump(mode="json"))


@router.post("/api/task-pairs")
async def create_task_pair(
    body: CreateTaskPairRequest,
    store_group=Depends(get_store_group),
):
    """原子创建配对任务，返回 201 + {follow_up, realization}"""
    service = TaskService(store_group)
    try:
        follow_up, realization = await service.create_task_pair(
            title=body.title,
            creator_id=body.creator_id,
            realization_assignee_id=body.realization_assignee_id,
            follow_up_assignee_id=body.follow_up_assignee_id,
            description=body.description,
            needs_validation=body.needs_validation,
        )
    except ValueError as e:
        return _validation_error(str(e))

    return JSONResponse(
        status_code=201,
        content={
            "follow_up": follow_up.model_dump(mode="json"),
            "realization": realization.model_dump(mode="json"),
        },
    )


@router.get("/api/tasks", response_model=list[Task])
async def list_tasks(
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    store_group=Depends(get_store_group),
):
    """查询任务列表，支持按状态筛选，按 created_at 倒序"""
    service = TaskService(store_group)
    return await service.list_tasks(status.value if status else None)


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    store_group=Depends(get_store_group),
):
    """查询任务详情，包含配对任务和审计事件"""
    service = TaskService(store_group)
    task, linked = await service.get_task_with_linked(task_id)

    if task is None:
        return _task_not_found(task_id)

    events = await service.get_task_events(task_id)

    return {
        "task": task.model_dump(mode="json"),
        "linked_task": linked.model_dump(mode="json") if linked else None,
        "events": [_event_to_dict(e) for e in events],
    }


@router.get("/api/users/{user_id}/tasks")
async def get_user_board(
    user_id: str,
    store_group=Depends(get_store_group),
):
    """用户看板：未归档任务按状态分组"""
    service = TaskService(store_group)
    board = await service.list_user_board(user_id)
    return {
        status: [t.model_dump(mode="json") for t in tasks]
        for status, tasks in board.items()
    }


@router.get("/api/users/{user_id}/task-history", response_model=list[Task])
async def get_user_task_history(
    user_id: str,
    store_group=Depends(get_store_group),
):
    """用户历史：已完成或已归档的任务"""
    service = TaskService(store_group)
    return await service.get_task_history(user_id)
