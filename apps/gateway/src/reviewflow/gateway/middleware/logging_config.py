"""structlog 配置模块

渲染模式与级别来自 reviewflow.core.config（REVIEWFLOW_LOG_FORMAT / REVIEWFLOW_LOG_LEVEL）。
请求、任务与操作者上下文通过 contextvars 合并进每条日志：
request_id（LoggingMiddleware）、trace_id（TraceMiddleware）、
task_id / actor_id（WorkflowService 操作期间）。
"""

import logging
import os

import structlog
from reviewflow.core.config import get_log_format, get_log_level

# 逐条 SQL 的 DEBUG 日志过于嘈杂
_QUIET_LOGGERS = ("aiosqlite",)


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog 配置

    Args:
        log_format: "json" 结构化输出，其他值为 dev 可读输出；默认读取配置
        log_level: 标准库日志级别名；默认读取配置
    """
    log_format = log_format or get_log_format()
    log_level = log_level or get_log_level()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logfire() -> None:
    """LOGFIRE_SEND_TO_LOGFIRE=true 时启用 Logfire APM，失败则只保留本地日志"""
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return

    try:
        import logfire

        logfire.configure(service_name="reviewflow-gateway")
        logfire.instrument_fastapi()
    except Exception:
        structlog.get_logger().warning("logfire_init_failed")
