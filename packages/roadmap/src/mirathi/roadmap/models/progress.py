"""阶段进度、阶段历史与分析快照

均为派生数据：由 ExecutorRoadmap 从任务集合重新计算，不手工修改。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import RoadmapPhase


def completion_percent(completed: int, total: int) -> int:
    """四舍五入（.5 进位）的完成百分比；空集合为 100，未全部完成时最多 99"""
    if total == 0:
        return 100
    percent = (200 * completed + total) // (2 * total)
    if completed < total:
        return min(percent, 99)
    return percent


class PhaseProgress(BaseModel):
    """单个阶段的完成度"""

    phase: RoadmapPhase
    completed: int = Field(default=0, ge=0, description="已解决任务数")
    total: int = Field(default=0, ge=0, description="阶段内任务总数")
    percent: int = Field(default=100, ge=0, le=100, description="完成百分比，空阶段为 100")

    @property
    def is_complete(self) -> bool:
        return self.completed >= self.total

    @classmethod
    def compute(cls, phase: RoadmapPhase, completed: int, total: int) -> "PhaseProgress":
        return cls(
            phase=phase,
            completed=completed,
            total=total,
            percent=completion_percent(completed, total),
        )


class PhaseHistoryEntry(BaseModel):
    """阶段停留记录：进入时追加，离开时关闭"""

    phase: RoadmapPhase
    entered_at: datetime
    exited_at: datetime | None = None
    duration_days: int | None = None
    forced: bool = Field(default=False, description="是否由强制流转进入")

    @property
    def is_open(self) -> bool:
        return self.exited_at is None


class RoadmapAnalytics(BaseModel):
    """分析快照（可丢弃重算，非权威状态）"""

    estimated_total_days: int = 0
    estimated_cost_kes: int = 0
    complexity_score: int = Field(default=1, ge=1, le=10)
    risk_exposure: int = Field(default=0, ge=0, le=100)
    efficiency_score: int = Field(
        default=100,
        ge=0,
        le=100,
        description="实际进度与预计工期之比",
    )
    critical_path_task_ids: list[str] = Field(default_factory=list)
    predicted_bottlenecks: list[str] = Field(
        default_factory=list,
        description="可能成为瓶颈的任务 ID",
    )
    acceleration_opportunities: list[str] = Field(default_factory=list)
    computed_at: datetime | None = None
