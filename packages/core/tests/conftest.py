"""packages/core 测试配置 -- 任务构造器与 StoreGroup fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from reviewflow.core.models import Task, TaskRole, TaskStatus
from reviewflow.core.store import StoreGroup, create_store_group
from ulid import ULID

MANAGER_ID = "manager-1"
REALIZER_ID = "alice"
REVIEWER_ID = "bob"


def _build_task(**overrides) -> Task:
    now = datetime.now(UTC)
    data = {
        "task_id": str(ULID()),
        "created_at": now,
        "updated_at": now,
        "title": "Rapport d'inspection du puits",
        "creator_id": MANAGER_ID,
        "assignee_id": REALIZER_ID,
    }
    data.update(overrides)
    return Task(**data)


@pytest.fixture
def make_task():
    """构造独立任务"""
    return _build_task


@pytest.fixture
def make_pair():
    """构造 (follow_up, realization) 配对任务"""

    def factory(
        *,
        status: TaskStatus = TaskStatus.IN_REVIEW,
        needs_validation: bool = False,
        **overrides,
    ) -> tuple[Task, Task]:
        follow_up_id = str(ULID())
        realization_id = str(ULID())
        follow_up = _build_task(
            task_id=follow_up_id,
            role=TaskRole.FOLLOW_UP,
            linked_task_id=realization_id,
            assignee_id=REVIEWER_ID,
            status=status,
            needs_validation=needs_validation,
            **overrides,
        )
        realization = _build_task(
            task_id=realization_id,
            role=TaskRole.REALIZATION,
            linked_task_id=follow_up_id,
            assignee_id=REALIZER_ID,
            status=status,
            needs_validation=needs_validation,
            **overrides,
        )
        return follow_up, realization

    return factory


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """核心层已初始化的 StoreGroup"""
    group = await create_store_group(str(tmp_path / "core_test.db"))
    yield group
    await group.conn.close()
