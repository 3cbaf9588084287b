"""通知路由

GET /api/users/{user_id}/notifications: 用户通知列表，支持 unread_only 筛选。
POST /api/notifications/{notification_id}/read: 标记已读。
GET /api/stream/notifications/{user_id}: SSE 实时推送用户的新通知。
"""

import asyncio
import json

import structlog
from fastapi import APIRouter, Depends, Query
from reviewflow.core.config import SSE_HEARTBEAT_INTERVAL
from reviewflow.core.models import Notification
from sse_starlette.sse import EventSourceResponse
from starlette.responses import JSONResponse

from ..deps import get_notification_hub, get_store_group

log = structlog.get_logger()

router = APIRouter()


def _notification_to_sse(notification: Notification) -> dict:
    return {
        "id": notification.notification_id,
        "event": notification.kind.value,
        "data": json.dumps(notification.model_dump(mode="json"), ensure_ascii=False),
    }


@router.get("/api/users/{user_id}/notifications", response_model=list[Notification])
async def list_notifications(
    user_id: str,
    unread_only: bool = Query(default=False, description="仅返回未读通知"),
    store_group=Depends(get_store_group),
):
    """查询用户通知，最新的在前"""
    async with store_group.lock:
        return await store_group.notification_store.list_for_recipient(
            user_id, unread_only
        )


@router.post("/api/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    store_group=Depends(get_store_group),
):
    """标记通知已读"""
    async with store_group.lock:
        try:
            updated = await store_group.notification_store.mark_read(notification_id)
            await store_group.conn.commit()
        except Exception:
            await store_group.conn.rollback()
            raise

    if not updated:
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "code": "NOTIFICATION_NOT_FOUND",
                    "kind": "NOT_FOUND",
                    "message": f"Notification with id {notification_id} does not exist",
                }
            },
        )
    return {"notification_id": notification_id, "is_read": True}


@router.get("/api/stream/notifications/{user_id}")
async def stream_notifications(
    user_id: str,
    hub=Depends(get_notification_hub),
):
    """SSE 通知流端点

    只推送订阅之后产生的新通知；历史通知通过列表接口获取。
    每 SSE_HEARTBEAT_INTERVAL 秒发送心跳保活。
    """

    async def event_generator():
        queue = await hub.subscribe(user_id)
        await log.ainfo("notification_stream_opened", user_id=user_id)
        try:
            while True:
                try:
                    notification = await asyncio.wait_for(
                        queue.get(), timeout=SSE_HEARTBEAT_INTERVAL
                    )
                    yield _notification_to_sse(notification)
                except TimeoutError:
                    yield {"comment": "heartbeat"}
        finally:
            await hub.unsubscribe(user_id, queue)
            await log.ainfo("notification_stream_closed", user_id=user_id)

    return EventSourceResponse(event_generator())
