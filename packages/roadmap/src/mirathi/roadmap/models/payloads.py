"""Event Payload 子类型

所有 Roadmap 事件的结构化 payload 定义。
"""

from pydantic import BaseModel, Field

from .enums import RoadmapPhase, RoadmapStatus, TaskPriority, TaskStatus


class RoadmapCreatedPayload(BaseModel):
    """ROADMAP_CREATED 事件 payload"""

    case_id: str
    task_count: int
    phase: RoadmapPhase


class TaskAddedPayload(BaseModel):
    """TASK_ADDED 事件 payload"""

    short_code: str
    phase: RoadmapPhase
    depends_on: list[str] = Field(default_factory=list)


class TaskTransitionPayload(BaseModel):
    """任务状态变化通用 payload（started/completed/skipped/waived/reopened/unlocked）"""

    from_status: TaskStatus
    to_status: TaskStatus
    reason: str = Field(default="")


class TaskBlockedPayload(BaseModel):
    """TASK_BLOCKED / TASK_UNBLOCKED 事件 payload"""

    reason: str = Field(default="")
    risk_id: str | None = None


class TaskOverduePayload(BaseModel):
    """TASK_OVERDUE 事件 payload"""

    due_date: str
    days_overdue: int


class TaskPriorityChangedPayload(BaseModel):
    """TASK_PRIORITY_CHANGED 事件 payload"""

    from_priority: TaskPriority
    to_priority: TaskPriority
    reason: str


class RiskPayload(BaseModel):
    """RISK_LINKED / RISK_RESOLVED 事件 payload"""

    risk_id: str
    task_ids: list[str] = Field(default_factory=list, description="受影响的任务")


class PhaseTransitionedPayload(BaseModel):
    """PHASE_TRANSITIONED 事件 payload"""

    from_phase: RoadmapPhase
    to_phase: RoadmapPhase
    forced: bool = False
    reason: str = Field(default="")
    duration_days: int | None = Field(default=None, description="离开阶段的停留天数")


class PhaseTasksCompletedPayload(BaseModel):
    """ALL_PHASE_TASKS_COMPLETED 事件 payload"""

    phase: RoadmapPhase
    task_count: int


class CriticalPathPayload(BaseModel):
    """CRITICAL_PATH_IDENTIFIED 事件 payload"""

    task_ids: list[str]
    project_duration_days: int


class RoadmapOptimizedPayload(BaseModel):
    """ROADMAP_OPTIMIZED 事件 payload"""

    optimization_count: int
    priority_upgrades: int
    due_dates_assigned: int


class RoadmapStatusChangedPayload(BaseModel):
    """ROADMAP_STATUS_CHANGED 事件 payload"""

    from_status: RoadmapStatus
    to_status: RoadmapStatus
    reason: str = Field(default="")


class RoadmapCompletedPayload(BaseModel):
    """ROADMAP_COMPLETED 事件 payload"""

    total_tasks: int
    completed_tasks: int
    skipped_tasks: int
    total_days: int
