"""packages/roadmap 测试配置 -- 任务工厂与 Store fixture"""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from mirathi.roadmap.config import WORKDAY_MINUTES
from mirathi.roadmap.models import RoadmapTask, TaskCategory
from mirathi.roadmap.store import StoreGroup, create_store_group

# 固定时间点，避免测试依赖当前时间
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

TaskFactory = Callable[..., RoadmapTask]


def build_task(
    code: str,
    category: TaskCategory = TaskCategory.DOCUMENT_COLLECTION,
    depends_on: tuple[str, ...] = (),
    days: int = 1,
    **kwargs,
) -> RoadmapTask:
    """以 short_code 派生 task_id 的任务工厂（默认 T-<code>）"""
    kwargs.setdefault("task_id", f"T-{code}")
    return RoadmapTask.create(
        short_code=code,
        title=kwargs.pop("title", f"Task {code}"),
        category=category,
        depends_on={f"T-{d}" for d in depends_on},
        estimated_duration_minutes=days * WORKDAY_MINUTES,
        **kwargs,
    )


@pytest.fixture
def make_task() -> TaskFactory:
    return build_task


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供已初始化的 StoreGroup（独立数据库文件）"""
    group = await create_store_group(str(tmp_path / "roadmap.db"))
    yield group
    await group.close()
