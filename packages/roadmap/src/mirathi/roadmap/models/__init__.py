"""Roadmap Domain Models -- 公共类型导出

枚举、任务实体、事件与 payload 从此入口导入。
ExecutorRoadmap 聚合依赖 engine 包，需从 models.roadmap 直接导入。
"""

from .enums import (
    CATEGORY_PHASE_MAP,
    FINAL_PHASE,
    PHASE_ORDER,
    PRIORITY_DUE_DAYS,
    PRIORITY_SCORES,
    RESOLVED_STATES,
    VALID_TRANSITIONS,
    ActorType,
    EventType,
    ProofType,
    RoadmapHealth,
    RoadmapPhase,
    RoadmapStatus,
    TaskCategory,
    TaskPriority,
    TaskStatus,
    phase_for_category,
    phase_index,
    validate_transition,
)
from .event import RoadmapEvent
from .payloads import (
    CriticalPathPayload,
    PhaseTasksCompletedPayload,
    PhaseTransitionedPayload,
    RiskPayload,
    RoadmapCompletedPayload,
    RoadmapCreatedPayload,
    RoadmapOptimizedPayload,
    RoadmapStatusChangedPayload,
    TaskAddedPayload,
    TaskBlockedPayload,
    TaskOverduePayload,
    TaskPriorityChangedPayload,
    TaskTransitionPayload,
)
from .progress import PhaseHistoryEntry, PhaseProgress, RoadmapAnalytics
from .task import ProofReference, RoadmapTask

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskPriority",
    "TaskCategory",
    "ProofType",
    "RoadmapPhase",
    "RoadmapStatus",
    "RoadmapHealth",
    "EventType",
    "ActorType",
    # 状态机与映射表
    "VALID_TRANSITIONS",
    "RESOLVED_STATES",
    "PHASE_ORDER",
    "FINAL_PHASE",
    "CATEGORY_PHASE_MAP",
    "PRIORITY_SCORES",
    "PRIORITY_DUE_DAYS",
    "validate_transition",
    "phase_for_category",
    "phase_index",
    # Task
    "RoadmapTask",
    "ProofReference",
    # 进度
    "PhaseProgress",
    "PhaseHistoryEntry",
    "RoadmapAnalytics",
    # Event
    "RoadmapEvent",
    # Payloads
    "RoadmapCreatedPayload",
    "TaskAddedPayload",
    "TaskTransitionPayload",
    "TaskBlockedPayload",
    "TaskOverduePayload",
    "TaskPriorityChangedPayload",
    "RiskPayload",
    "PhaseTransitionedPayload",
    "PhaseTasksCompletedPayload",
    "CriticalPathPayload",
    "RoadmapOptimizedPayload",
    "RoadmapStatusChangedPayload",
    "RoadmapCompletedPayload",
]
