"""apps/gateway 测试配置 -- StoreGroup、通知组件与 httpx AsyncClient

app fixture 绕过 lifespan，手动在 app.state 上挂载组件。
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from reviewflow.core.models import TaskStatus
from reviewflow.core.store import StoreGroup, create_store_group
from reviewflow.gateway.main import seed_managers
from reviewflow.gateway.services.notification_dispatcher import NotificationDispatcher
from reviewflow.gateway.services.notification_hub import NotificationHub
from reviewflow.gateway.services.task_service import TaskService
from reviewflow.gateway.services.workflow_service import WorkflowService


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """已登记经理 manager-1 的 StoreGroup"""
    group = await create_store_group(str(tmp_path / "gateway.db"))
    await seed_managers(group, ["manager-1"])
    yield group
    await group.conn.close()


@pytest_asyncio.fixture
async def hub() -> NotificationHub:
    return NotificationHub()


@pytest_asyncio.fixture
async def dispatcher(store_group, hub) -> AsyncGenerator[NotificationDispatcher, None]:
    """已启动的通知投递器（无重试等待）"""
    d = NotificationDispatcher(store_group, hub, retry_delay_s=0)
    d.start()
    yield d
    await d.stop()


@pytest_asyncio.fixture
async def task_service(store_group) -> TaskService:
    return TaskService(store_group)


@pytest_asyncio.fixture
async def workflow(store_group, dispatcher) -> WorkflowService:
    return WorkflowService(store_group, dispatcher)


@pytest_asyncio.fixture
async def pair_in_review(task_service, workflow):
    """工厂：创建配对任务并由执行人提交评审，返回 (follow_up, realization)"""

    async def factory(needs_validation: bool = False):
        follow_up, realization = await task_service.create_task_pair(
            title="Inspection de la vanne V-12",
            creator_id="manager-1",
            realization_assignee_id="alice",
            follow_up_assignee_id="bob",
            needs_validation=needs_validation,
        )
        result = await workflow.update_status(
            realization.task_id, TaskStatus.IN_PROGRESS, "alice", realization.version
        )
        result = await workflow.update_status(
            realization.task_id, TaskStatus.IN_REVIEW, "alice", result.task.version
        )
        assert result.ok, result.error
        realization, follow_up = result.tasks
        return follow_up, realization

    return factory


@pytest_asyncio.fixture
async def test_app(store_group, hub, dispatcher):
    """创建测试用 FastAPI app 实例"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from reviewflow.gateway.main import create_app

    app = create_app()

    # 手动初始化（绕过 lifespan）
    app.state.store_group = store_group
    app.state.notification_hub = hub
    app.state.dispatcher = dispatcher

    yield app

    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac
