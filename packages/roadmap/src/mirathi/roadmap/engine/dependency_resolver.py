"""依赖解析器 -- 任务解决后沿依赖图传播解锁

每次 complete/skip/waive 以及风险解除之后都必须调用 resolve_dependencies，
否则本可解锁的任务会停留在 LOCKED。
重复调用没有副作用（幂等）：已解锁任务不再处理，已解决任务永不被重新锁定。
"""

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from ..models.enums import RESOLVED_STATES, TaskStatus
from ..models.task import RoadmapTask

if TYPE_CHECKING:
    from ..models.roadmap import ExecutorRoadmap


class ResolutionResult(BaseModel):
    """一次解析的结果"""

    unlocked_task_ids: list[str] = Field(default_factory=list)
    roadmap_complete: bool = Field(default=False, description="整体完成度是否达到 100%")


def resolved_task_ids(tasks: list[RoadmapTask]) -> set[str]:
    """处于 COMPLETED/SKIPPED/WAIVED 的任务 ID"""
    return {t.task_id for t in tasks if t.status in RESOLVED_STATES}


def unresolved_dependencies(task: RoadmapTask, resolved_ids: set[str]) -> list[str]:
    return sorted(task.depends_on - resolved_ids)


def is_risk_held(task: RoadmapTask, active_risk_ids: set[str]) -> bool:
    """任务是否仍被活跃风险持有"""
    return bool(task.related_risk_ids & active_risk_ids)


def resolve_dependencies(roadmap: "ExecutorRoadmap") -> ResolutionResult:
    """扫描 LOCKED 任务，依赖全部解决且未被活跃风险持有时解锁

    通过 task.unlock() 修改任务状态，不直接改字段。

    Returns:
        新解锁的任务 ID 列表与 roadmap 是否整体完成
    """
    resolved = resolved_task_ids(roadmap.tasks)
    active_risks = set(roadmap.blocked_by_risk_ids)

    unlocked: list[str] = []
    for task in roadmap.tasks:
        if task.status != TaskStatus.LOCKED or not task.depends_on:
            continue
        if unresolved_dependencies(task, resolved):
            continue
        if is_risk_held(task, active_risks):
            continue
        if task.unlock():
            unlocked.append(task.task_id)

    total = len(roadmap.tasks)
    complete = total == 0 or len(resolved) == total
    return ResolutionResult(unlocked_task_ids=unlocked, roadmap_complete=complete)


def can_start_task(roadmap: "ExecutorRoadmap", task_id: str) -> bool:
    """只读判断：任务为 PENDING 且所有依赖已解决"""
    task = roadmap.find_task(task_id)
    if task is None or task.status != TaskStatus.PENDING:
        return False
    return not unresolved_dependencies(task, resolved_task_ids(roadmap.tasks))
