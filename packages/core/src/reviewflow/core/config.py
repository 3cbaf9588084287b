"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、经理名单、通知投递重试、归档阈值等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("REVIEWFLOW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "REVIEWFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "reviewflow.db"),
    )


def get_manager_ids() -> list[str]:
    """启动时登记为经理的用户 ID（逗号分隔）"""
    raw = os.environ.get("REVIEWFLOW_MANAGER_IDS", "")
    return [item.strip() for item in raw.split(",") if item.strip()]


# 通知投递最大尝试次数（含首次）
NOTIFICATION_MAX_ATTEMPTS: int = int(
    os.environ.get("REVIEWFLOW_NOTIFICATION_MAX_ATTEMPTS", "3")
)

# 通知投递重试间隔（秒）
NOTIFICATION_RETRY_DELAY_S: float = float(
    os.environ.get("REVIEWFLOW_NOTIFICATION_RETRY_DELAY_S", "0.5")
)

# 通知队列容量，满时丢弃新请求并记录告警
NOTIFICATION_QUEUE_MAXSIZE: int = int(
    os.environ.get("REVIEWFLOW_NOTIFICATION_QUEUE_MAXSIZE", "1000")
)

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("REVIEWFLOW_SSE_HEARTBEAT_INTERVAL", "15")
)

# 完成多少天后归档
ARCHIVE_AFTER_DAYS: int = int(
    os.environ.get("REVIEWFLOW_ARCHIVE_AFTER_DAYS", "1")
)

# 评审反馈最大长度
FEEDBACK_MAX_LENGTH: int = int(
    os.environ.get("REVIEWFLOW_FEEDBACK_MAX_LENGTH", "2000")
)

# 任务标题最大长度
TITLE_MAX_LENGTH: int = 200

# 评论最大长度
COMMENT_MAX_LENGTH: int = int(
    os.environ.get("REVIEWFLOW_COMMENT_MAX_LENGTH", "2000")
)


def get_log_format() -> str:
    """日志渲染模式：dev（可读输出）或 json（结构化输出）"""
    return os.environ.get("REVIEWFLOW_LOG_FORMAT", "dev")


def get_log_level() -> str:
    """日志级别，默认 INFO"""
    return os.environ.get("REVIEWFLOW_LOG_LEVEL", "INFO").upper()
