"""Roadmap 调度引擎 -- 依赖图、关键路径、依赖解析

全部为同步纯计算，不做 I/O。
"""

from .critical_path import CriticalPathEngine, CriticalPathResult, ScheduleEntry
from .dependency_resolver import (
    ResolutionResult,
    can_start_task,
    resolve_dependencies,
    unresolved_dependencies,
)
from .graph import TaskGraph, validate_task_graph

__all__ = [
    "TaskGraph",
    "validate_task_graph",
    "CriticalPathEngine",
    "CriticalPathResult",
    "ScheduleEntry",
    "ResolutionResult",
    "resolve_dependencies",
    "can_start_task",
    "unresolved_dependencies",
]
