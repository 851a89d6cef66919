"""配置模块 -- 可通过环境变量覆盖

包含数据库路径、工作日时长、阶段推进阈值等可配置项。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("MIRATHI_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "MIRATHI_DB_PATH",
        str(_get_base_dir() / "sqlite" / "roadmap.db"),
    )


# 关键路径计算的时长单位：一个 8 小时工作日
WORKDAY_MINUTES: int = 60 * 8

# 阶段推进阈值（首阶段可配置，其余固定 100%）
DEFAULT_PRE_FILING_THRESHOLD: int = 80
STRICT_PHASE_THRESHOLD: int = 100

# 阻塞扇出超过此值的任务在 optimize 时提升为 HIGH
BLOCKER_FANOUT_THRESHOLD: int = 2

# 健康状态判定
HEALTH_CRITICAL_INACTIVE_DAYS: int = 30
HEALTH_WARNING_INACTIVE_DAYS: int = 14
HEALTH_WARNING_OVERDUE_TASKS: int = 3

# 费用估算（KES）
BASE_FILING_FEE_KES: int = 5000
GAZETTE_FEE_KES: int = 2000
CATEGORY_COST_KES: dict[str, int] = {
    "DISPUTE_RESOLUTION": 30000,
    "ASSET_TRANSFER": 5000,
    "TAX_CLEARANCE": 3000,
    "GUARDIANSHIP": 4000,
    "COURT_ATTENDANCE": 1500,
}


class RoadmapConfig(BaseModel):
    """Roadmap 引擎配置 -- 从环境变量加载

    环境变量:
        MIRATHI_PRE_FILING_THRESHOLD: PRE_FILING 阶段推进阈值（默认 80）
        MIRATHI_AUTO_TRANSITION: 任务完成后是否自动推进阶段（默认 false）
        MIRATHI_EVENT_QUEUE_SIZE: 事件订阅队列容量（默认 100）
    """

    pre_filing_threshold: int = Field(
        default=DEFAULT_PRE_FILING_THRESHOLD,
        ge=0,
        le=100,
        description="PRE_FILING 阶段推进所需完成百分比",
    )
    auto_transition: bool = Field(
        default=False,
        description="任务解决后自动尝试推进阶段",
    )
    event_queue_size: int = Field(
        default=100,
        ge=1,
        description="每个订阅者的事件队列容量",
    )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_roadmap_config() -> RoadmapConfig:
    """从环境变量加载 Roadmap 配置

    非法数值记录警告并回退默认值，不阻塞启动。
    """
    kwargs: dict = {}

    if val := os.environ.get("MIRATHI_PRE_FILING_THRESHOLD"):
        try:
            threshold = int(val)
            if not 0 <= threshold <= 100:
                raise ValueError(val)
            kwargs["pre_filing_threshold"] = threshold
        except ValueError:
            log.warning(
                "invalid_threshold_config",
                env_var="MIRATHI_PRE_FILING_THRESHOLD",
                value=val,
                fallback=DEFAULT_PRE_FILING_THRESHOLD,
            )

    if val := os.environ.get("MIRATHI_AUTO_TRANSITION"):
        kwargs["auto_transition"] = _parse_bool(val)

    if val := os.environ.get("MIRATHI_EVENT_QUEUE_SIZE"):
        try:
            size = int(val)
            if size < 1:
                raise ValueError(val)
            kwargs["event_queue_size"] = size
        except ValueError:
            log.warning(
                "invalid_queue_size_config",
                env_var="MIRATHI_EVENT_QUEUE_SIZE",
                value=val,
                fallback=100,
            )

    return RoadmapConfig(**kwargs)
