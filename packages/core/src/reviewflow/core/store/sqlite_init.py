"""SQLite 数据库初始化

PRAGMA 配置 + 四张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id          TEXT PRIMARY KEY,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    title            TEXT NOT NULL DEFAULT '',
    description      TEXT NOT NULL DEFAULT '',
    role             TEXT NOT NULL DEFAULT 'STANDALONE',
    status           TEXT NOT NULL DEFAULT 'TODO',
    assignee_id      TEXT,
    creator_id       TEXT NOT NULL,
    linked_task_id   TEXT,
    needs_validation INTEGER NOT NULL DEFAULT 0,
    review_state     TEXT NOT NULL DEFAULT 'NONE',
    feedback         TEXT,
    progress         INTEGER NOT NULL DEFAULT 0,
    subtasks         TEXT NOT NULL DEFAULT '[]',
    version          INTEGER NOT NULL DEFAULT 1,
    completed_at     TEXT,
    declined_at      TEXT,
    archived_at      TEXT,
    comments         TEXT NOT NULL DEFAULT '[]',
    deleted_at       TEXT,

    CHECK (progress BETWEEN 0 AND 100),
    CHECK (version >= 1)
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assignee_status ON tasks(assignee_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_creator ON tasks(creator_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_linked ON tasks(linked_task_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status_completed ON tasks(status, completed_at);",
]

# events 表 DDL
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id        TEXT PRIMARY KEY,
    task_id         TEXT NOT NULL,
    task_seq        INTEGER NOT NULL,
    ts              TEXT NOT NULL,
    type            TEXT NOT NULL,
    schema_version  INTEGER NOT NULL DEFAULT 1,
    actor_id        TEXT NOT NULL,
    payload         TEXT NOT NULL DEFAULT '{}',
    trace_id        TEXT NOT NULL DEFAULT '',
    commit_id       TEXT,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_EVENTS_INDEXES = [
    # 任务内事件序号唯一约束（确保 task_seq 严格单调递增）
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_task_seq ON events(task_id, task_seq);",
    "CREATE INDEX IF NOT EXISTS idx_events_task_ts ON events(task_id, ts);",
    "CREATE INDEX IF NOT EXISTS idx_events_commit_id ON events(commit_id);",
]

# notifications 表 DDL
_NOTIFICATIONS_DDL = """
CREATE TABLE IF NOT EXISTS notifications (
    notification_id  TEXT PRIMARY KEY,
    recipient_id     TEXT NOT NULL,
    kind             TEXT NOT NULL,
    task_id          TEXT NOT NULL,
    message          TEXT NOT NULL DEFAULT '',
    idempotency_key  TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    is_read          INTEGER NOT NULL DEFAULT 0
);
"""

_NOTIFICATIONS_INDEXES = [
    # 幂等键唯一约束：重复投递只落一条
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_notifications_idempotency_key "
        "ON notifications(idempotency_key);"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_notifications_recipient "
        "ON notifications(recipient_id, created_at DESC);"
    ),
]

# user_roles 表 DDL
_USER_ROLES_DDL = """
CREATE TABLE IF NOT EXISTS user_roles (
    user_id     TEXT PRIMARY KEY,
    role        TEXT NOT NULL DEFAULT 'member',
    updated_at  TEXT NOT NULL
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_TASKS_DDL)
    await conn.execute(_EVENTS_DDL)
    await conn.execute(_NOTIFICATIONS_DDL)
    await conn.execute(_USER_ROLES_DDL)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _EVENTS_INDEXES + _NOTIFICATIONS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
