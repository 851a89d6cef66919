"""structlog 配置模块

日志统一经标准库 logging 输出，便于与宿主服务的 handler 共存。
渲染模式由 MIRATHI_LOG_FORMAT 决定（dev / json），级别由 MIRATHI_LOG_LEVEL 决定。
"""

import logging
import os

import structlog

COMPONENT = "mirathi.roadmap"

# aiosqlite 在 DEBUG 下会逐条打印 SQL 执行
_NOISY_LOGGERS = ("aiosqlite",)


def _add_component(
    logger: logging.Logger, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("component", COMPONENT)
    return event_dict


def _select_renderers(log_format: str) -> list[structlog.types.Processor]:
    if log_format == "json":
        return [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    return [structlog.dev.ConsoleRenderer()]


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog 配置

    Args:
        log_format: "json" 或 "dev"，默认读取 MIRATHI_LOG_FORMAT（缺省 dev）
        log_level: 日志级别名，默认读取 MIRATHI_LOG_LEVEL；无法识别时使用 INFO
    """
    log_format = (log_format or os.environ.get("MIRATHI_LOG_FORMAT", "dev")).lower()
    level_name = (log_level or os.environ.get("MIRATHI_LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_component,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_select_renderers(log_format),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
