"""关键路径引擎 -- CPM（Critical Path Method）

在 depends_on DAG 上计算每个任务的最早/最晚开始与完成时间、浮动时间（float），
浮动为 0 的任务构成关键路径。

实现：Kahn 拓扑排序后一次正向遍历 + 一次逆序反向遍历，复杂度 O(V + E)。
引擎只读：不修改任何任务状态，如何使用结果由调用方决定。
"""

from collections.abc import Iterable, Sequence

import structlog
from pydantic import BaseModel, Field

from ..exceptions import CyclicDependencyError
from ..models.enums import TaskStatus, phase_index
from ..models.task import RoadmapTask
from .graph import TaskGraph

log = structlog.get_logger()


class ScheduleEntry(BaseModel):
    """单个任务的调度窗口（单位：工作日）"""

    task_id: str
    duration_days: int = Field(ge=1)
    early_start: int = Field(ge=0)
    early_finish: int = Field(ge=0)
    late_start: int = Field(ge=0)
    late_finish: int = Field(ge=0)
    float_days: int = Field(description="可延迟天数，合法 DAG 上恒 >= 0")

    @property
    def is_critical(self) -> bool:
        return self.float_days == 0


class CriticalPathResult(BaseModel):
    """CPM 计算结果"""

    schedule: dict[str, ScheduleEntry] = Field(default_factory=dict)
    critical_task_ids: list[str] = Field(
        default_factory=list,
        description="浮动为 0 的任务，按 (phase, order_index) 排序",
    )
    project_duration_days: int = 0

    def float_of(self, task_id: str) -> int | None:
        entry = self.schedule.get(task_id)
        return entry.float_days if entry else None

    def is_critical(self, task_id: str) -> bool:
        entry = self.schedule.get(task_id)
        return entry is not None and entry.is_critical


class CriticalPathEngine:
    """关键路径计算（无状态）"""

    def compute(self, tasks: Iterable[RoadmapTask]) -> CriticalPathResult:
        """计算关键路径

        空任务集合返回空结果；引用不存在任务的依赖被忽略。

        Raises:
            CyclicDependencyError: 依赖图有环（正常情况下构图时已拒绝）
        """
        graph = TaskGraph(tasks)
        if not graph:
            return CriticalPathResult()

        order = graph.topological_order()
        if order is None:
            raise CyclicDependencyError(graph.find_cycle() or [])

        duration = {tid: graph.tasks[tid].duration_days for tid in order}

        # 正向遍历：ES = max(依赖的 EF)，EF = ES + duration
        early_start: dict[str, int] = {}
        early_finish: dict[str, int] = {}
        for tid in order:
            es = max((early_finish[d] for d in graph.dependencies[tid]), default=0)
            early_start[tid] = es
            early_finish[tid] = es + duration[tid]

        project_duration = max(early_finish.values())

        # 反向遍历：LF = min(被依赖者的 LS)，无被依赖者取项目工期
        late_start: dict[str, int] = {}
        late_finish: dict[str, int] = {}
        for tid in reversed(order):
            lf = min(
                (late_start[d] for d in graph.dependents[tid]),
                default=project_duration,
            )
            late_finish[tid] = lf
            late_start[tid] = lf - duration[tid]

        schedule = {
            tid: ScheduleEntry(
                task_id=tid,
                duration_days=duration[tid],
                early_start=early_start[tid],
                early_finish=early_finish[tid],
                late_start=late_start[tid],
                late_finish=late_finish[tid],
                float_days=late_start[tid] - early_start[tid],
            )
            for tid in order
        }

        critical = sorted(
            (tid for tid, entry in schedule.items() if entry.is_critical),
            key=lambda tid: (
                phase_index(graph.tasks[tid].phase),
                graph.tasks[tid].order_index,
                early_start[tid],
                tid,
            ),
        )

        log.debug(
            "critical_path_computed",
            task_count=len(order),
            critical_count=len(critical),
            project_duration_days=project_duration,
        )

        return CriticalPathResult(
            schedule=schedule,
            critical_task_ids=critical,
            project_duration_days=project_duration,
        )

    def parallel_opportunities(
        self,
        tasks: Sequence[RoadmapTask],
        result: CriticalPathResult | None = None,
    ) -> list[str]:
        """浮动 > 0 且为 PENDING 的任务，可不按严格顺序并行推进"""
        result = result or self.compute(tasks)
        return [
            task.task_id
            for task in tasks
            if task.status == TaskStatus.PENDING
            and (result.float_of(task.task_id) or 0) > 0
        ]
