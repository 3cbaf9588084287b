"""CLI 入口模块 -- python -m reviewflow.core <command>

支持的命令：
  rebuild-projections          从 events 表重建 tasks 表
  archive-done-tasks [days]    归档完成超过 days 天的任务
  set-role <user_id> <role>    登记用户角色（member / manager）
"""

import asyncio
import sys

from .config import ARCHIVE_AFTER_DAYS, get_db_path
from .models.enums import UserRole

_USAGE = """用法: python -m reviewflow.core <command>
命令:
  rebuild-projections          从 events 表重建 tasks 表
  archive-done-tasks [days]    归档完成超过 days 天的任务
  set-role <user_id> <role>    登记用户角色（member / manager）"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]
    args = sys.argv[2:]

    if command == "rebuild-projections":
        asyncio.run(rebuild_projections())
    elif command == "archive-done-tasks":
        try:
            days = int(args[0]) if args else ARCHIVE_AFTER_DAYS
        except ValueError:
            print(f"天数必须是整数: {args[0]}")
            sys.exit(1)
        asyncio.run(archive_done(days))
    elif command == "set-role":
        if len(args) != 2:
            print("用法: python -m reviewflow.core set-role <user_id> <role>")
            sys.exit(1)
        try:
            role = UserRole(args[1])
        except ValueError:
            print(f"未知角色: {args[1]}")
            print(f"可用角色: {', '.join(r.value for r in UserRole)}")
            sys.exit(1)
        asyncio.run(set_role(args[0], role))
    else:
        print(f"未知命令: {command}")
        print("可用命令: rebuild-projections, archive-done-tasks, set-role")
        sys.exit(1)


async def rebuild_projections() -> None:
    """执行 Projection 重建"""
    from .projection import rebuild_all
    from .store import create_store_group

    db_path = get_db_path()

    print(f"数据库路径: {db_path}")
    print("开始重建 Projection...")

    store_group = await create_store_group(db_path)

    try:
        async with store_group.lock:
            event_count = await rebuild_all(
                store_group.conn,
                store_group.event_store,
                store_group.task_store,
            )
        print(f"重建完成，处理 {event_count} 条事件")
    finally:
        await store_group.conn.close()


async def archive_done(days: int) -> None:
    """归档已完成任务"""
    from .archive import archive_done_tasks
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())

    try:
        archived = await archive_done_tasks(store_group, days)
        print(f"归档完成，共 {len(archived)} 个任务")
    finally:
        await store_group.conn.close()


async def set_role(user_id: str, role: UserRole) -> None:
    """登记用户角色"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())

    try:
        async with store_group.lock:
            await store_group.identity_store.set_role(user_id, role)
            await store_group.conn.commit()
        print(f"{user_id} -> {role.value}")
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
