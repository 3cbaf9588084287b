"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from reviewflow.core.store import create_store_group
from reviewflow.gateway.main import seed_managers
from reviewflow.gateway.services.notification_dispatcher import NotificationDispatcher
from reviewflow.gateway.services.notification_hub import NotificationHub


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path):
    """集成测试用 FastAPI app"""
    os.environ["REVIEWFLOW_DB_PATH"] = str(tmp_path / "test.db")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from reviewflow.gateway.main import create_app

    app = create_app()

    store_group = await create_store_group(str(tmp_path / "test.db"))
    await seed_managers(store_group, ["manager-1"])
    hub = NotificationHub()
    dispatcher = NotificationDispatcher(store_group, hub, retry_delay_s=0)
    dispatcher.start()

    app.state.store_group = store_group
    app.state.notification_hub = hub
    app.state.dispatcher = dispatcher

    yield app

    await dispatcher.stop()
    await store_group.conn.close()
    os.environ.pop("REVIEWFLOW_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
