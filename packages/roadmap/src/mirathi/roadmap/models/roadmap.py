"""ExecutorRoadmap 聚合 -- 单个案件的完整执行计划

聚合独占其任务集合：外部命令只能通过这里的公开操作修改任务状态。
每个公开操作的固定顺序：
1. 校验不变量（roadmap 未关闭、任务存在、流转合法）
2. 委托 RoadmapTask 完成单任务流转
3. 调用 DependencyResolver 传播解锁
4. 重算阶段进度与计数器（派生数据，从不增量维护）
5. 刷新分析快照，并记录待发布的领域事件

聚合本身不做 I/O，持久化与事件发布由 services 层在操作完成后负责。
"""

import math
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import BaseModel, Field, PrivateAttr, model_validator
from ulid import ULID

from ..config import (
    BASE_FILING_FEE_KES,
    BLOCKER_FANOUT_THRESHOLD,
    CATEGORY_COST_KES,
    DEFAULT_PRE_FILING_THRESHOLD,
    GAZETTE_FEE_KES,
    HEALTH_CRITICAL_INACTIVE_DAYS,
    HEALTH_WARNING_INACTIVE_DAYS,
    HEALTH_WARNING_OVERDUE_TASKS,
    STRICT_PHASE_THRESHOLD,
)
from ..engine.critical_path import CriticalPathEngine, CriticalPathResult
from ..engine.dependency_resolver import (
    ResolutionResult,
    resolve_dependencies,
    resolved_task_ids,
    unresolved_dependencies,
)
from ..engine.graph import TaskGraph, validate_task_graph
from ..exceptions import (
    CannotAdvancePastFinalPhaseError,
    DependenciesNotMetError,
    DuplicateTaskError,
    InvalidPhaseTransitionError,
    PhaseNotReadyError,
    RoadmapClosedError,
    TaskNotFoundError,
)
from .enums import (
    FINAL_PHASE,
    PHASE_ORDER,
    PRIORITY_DUE_DAYS,
    PRIORITY_SCORES,
    ActorType,
    EventType,
    RoadmapHealth,
    RoadmapPhase,
    RoadmapStatus,
    TaskCategory,
    TaskPriority,
    TaskStatus,
    phase_index,
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
from .progress import (
    PhaseHistoryEntry,
    PhaseProgress,
    RoadmapAnalytics,
    completion_percent,
)
from .task import ProofReference, RoadmapTask

log = structlog.get_logger()

SYSTEM_ACTOR = "system"

_SECONDS_PER_DAY = 24 * 60 * 60

# 手工可设置的粗粒度状态；COMPLETED 只能经由阶段推进到达
_MANUAL_STATUSES: frozenset[RoadmapStatus] = frozenset(
    {
        RoadmapStatus.ACTIVE,
        RoadmapStatus.PAUSED,
        RoadmapStatus.ESCALATED,
        RoadmapStatus.ABANDONED,
    }
)

_cpm = CriticalPathEngine()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _elapsed_days(start: datetime, end: datetime) -> int:
    return max(0, math.ceil((end - start).total_seconds() / _SECONDS_PER_DAY))


class ExecutorRoadmap(BaseModel):
    """Executor Roadmap 聚合根

    与案件 1:1。计数器、阶段进度均为任务集合的缓存，由 _recompute_progress() 统一重算。
    version 用于持久化层的乐观并发控制，聚合自身不修改它。
    """

    roadmap_id: str = Field(default_factory=lambda: str(ULID()), description="ULID 格式")
    case_id: str = Field(description="关联的继承案件 ID（1:1）")
    current_phase: RoadmapPhase = Field(default=RoadmapPhase.PRE_FILING)
    status: RoadmapStatus = Field(default=RoadmapStatus.DRAFT)
    tasks: list[RoadmapTask] = Field(default_factory=list)

    # 派生数据
    phase_progress: dict[RoadmapPhase, PhaseProgress] = Field(default_factory=dict)
    total_tasks: int = 0
    completed_tasks: int = 0
    skipped_tasks: int = 0
    waived_tasks: int = 0
    blocked_tasks: int = 0
    overdue_tasks: int = 0
    percent_complete: int = 100

    phase_history: list[PhaseHistoryEntry] = Field(default_factory=list)

    # 风险
    blocked_by_risk_ids: set[str] = Field(
        default_factory=set,
        description="当前持有至少一个任务的活跃风险",
    )
    resolved_risk_ids: set[str] = Field(default_factory=set)

    analytics: RoadmapAnalytics = Field(default_factory=RoadmapAnalytics)

    # 配置
    pre_filing_threshold: int = Field(default=DEFAULT_PRE_FILING_THRESHOLD, ge=0, le=100)
    auto_transition_enabled: bool = False
    optimization_count: int = 0

    version: int = Field(default=0, description="乐观并发版本号，由持久化层维护")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    last_activity_at: datetime = Field(default_factory=_utcnow)
    actual_completion_date: datetime | None = None

    _pending_events: list[RoadmapEvent] = PrivateAttr(default_factory=list)

    @model_validator(mode="after")
    def _derive_progress(self) -> "ExecutorRoadmap":
        self._recompute_progress()
        return self

    # ==================== 生成 ====================

    @classmethod
    def generate(
        cls,
        case_id: str,
        tasks: Iterable[RoadmapTask],
        *,
        actor: str = SYSTEM_ACTOR,
        pre_filing_threshold: int = DEFAULT_PRE_FILING_THRESHOLD,
        auto_transition: bool = False,
        now: datetime | None = None,
    ) -> "ExecutorRoadmap":
        """由模板提供的初始任务集合生成 roadmap

        整批校验：重复任务、悬空依赖、依赖环任一存在即拒绝整个生成。

        Raises:
            DuplicateTaskError / DanglingDependencyError / CyclicDependencyError
        """
        now = now or _utcnow()
        task_list = list(tasks)
        _check_duplicates([], task_list)
        graph = validate_task_graph(task_list)

        roadmap = cls(
            case_id=case_id,
            tasks=task_list,
            status=RoadmapStatus.ACTIVE,
            pre_filing_threshold=pre_filing_threshold,
            auto_transition_enabled=auto_transition,
            phase_history=[PhaseHistoryEntry(phase=RoadmapPhase.PRE_FILING, entered_at=now)],
            created_at=now,
            updated_at=now,
            started_at=now,
            last_activity_at=now,
        )
        roadmap._wire_inverse_edges(graph)
        roadmap._emit(
            EventType.ROADMAP_CREATED,
            actor,
            payload=RoadmapCreatedPayload(
                case_id=case_id,
                task_count=len(task_list),
                phase=roadmap.current_phase,
            ),
            now=now,
        )
        roadmap._resolve(actor, now)
        roadmap._finish(now)

        log.info(
            "roadmap_generated",
            roadmap_id=roadmap.roadmap_id,
            case_id=case_id,
            task_count=len(task_list),
        )
        return roadmap

    def add_task(
        self,
        task: RoadmapTask,
        actor: str = SYSTEM_ACTOR,
        now: datetime | None = None,
    ) -> None:
        self.add_tasks([task], actor=actor, now=now)

    def add_tasks(
        self,
        tasks: Iterable[RoadmapTask],
        actor: str = SYSTEM_ACTOR,
        now: datetime | None = None,
    ) -> None:
        """批量追加任务

        先对 (现有任务 + 新任务) 整体校验，失败时不修改任何状态。
        依赖已全部解决的新任务会被立即解锁。
        """
        self._ensure_open("add_tasks")
        now = now or _utcnow()
        new_tasks = list(tasks)
        _check_duplicates(self.tasks, new_tasks)
        graph = validate_task_graph([*self.tasks, *new_tasks])

        self.tasks.extend(new_tasks)
        self._wire_inverse_edges(graph)
        for task in new_tasks:
            self._emit(
                EventType.TASK_ADDED,
                actor,
                task_id=task.task_id,
                payload=TaskAddedPayload(
                    short_code=task.short_code,
                    phase=task.phase,
                    depends_on=sorted(task.depends_on),
                ),
                now=now,
            )
        self._resolve(actor, now)
        self._finish(now)

        log.info(
            "roadmap_tasks_added",
            roadmap_id=self.roadmap_id,
            added=len(new_tasks),
            total=len(self.tasks),
        )

    # ==================== 任务命令 ====================

    def start_task(self, task_id: str, actor: str, now: datetime | None = None) -> RoadmapTask:
        """PENDING -> IN_PROGRESS，依赖未全部解决时拒绝"""
        self._ensure_open("start_task")
        now = now or _utcnow()
        task = self.get_task(task_id)
        if task.status == TaskStatus.PENDING:
            missing = unresolved_dependencies(task, resolved_task_ids(self.tasks))
            if missing:
                raise DependenciesNotMetError(task_id, missing)

        task.start(actor)
        self._emit_transition(EventType.TASK_STARTED, task, TaskStatus.PENDING, actor, now)
        self._finish(now)
        log.info("task_started", roadmap_id=self.roadmap_id, task_id=task_id, actor=actor)
        return task

    def complete_task(
        self,
        task_id: str,
        actor: str,
        notes: str | None = None,
        proof: ProofReference | None = None,
        now: datetime | None = None,
    ) -> RoadmapTask:
        """IN_PROGRESS -> COMPLETED，随后传播解锁

        任务声明的 resolves_risk_ids 中仍活跃的风险一并解除。
        """
        self._ensure_open("complete_task")
        now = now or _utcnow()
        task = self.get_task(task_id)
        before = self.phase_progress[task.phase].is_complete

        task.complete(actor, notes=notes, proof=proof)
        self._emit_transition(
            EventType.TASK_COMPLETED, task, TaskStatus.IN_PROGRESS, actor, now, reason=notes or ""
        )
        self._after_resolution(task, before, actor, now)
        log.info("task_completed", roadmap_id=self.roadmap_id, task_id=task_id, actor=actor)
        return task

    def auto_complete_task(
        self,
        task_id: str,
        reason: str,
        proof: ProofReference | None = None,
        now: datetime | None = None,
    ) -> bool:
        """系统自动完成（例如外部文件校验通过）

        仅处理 PENDING / IN_PROGRESS 任务，其余状态直接返回 False。
        PENDING 任务先以系统身份 start 再 complete，依赖检查照常生效。
        """
        task = self.get_task(task_id)
        if task.status not in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS):
            return False
        if task.status == TaskStatus.PENDING:
            self.start_task(task_id, SYSTEM_ACTOR, now=now)
        self.complete_task(
            task_id,
            SYSTEM_ACTOR,
            notes=f"Auto-completed: {reason}",
            proof=proof,
            now=now,
        )
        return True

    def skip_task(
        self,
        task_id: str,
        actor: str,
        reason: str,
        now: datetime | None = None,
    ) -> RoadmapTask:
        self._ensure_open("skip_task")
        now = now or _utcnow()
        task = self.get_task(task_id)
        before = self.phase_progress[task.phase].is_complete
        from_status = task.status

        task.skip(actor, reason)
        self._emit_transition(EventType.TASK_SKIPPED, task, from_status, actor, now, reason=reason)
        self._after_resolution(task, before, actor, now)
        log.info("task_skipped", roadmap_id=self.roadmap_id, task_id=task_id, reason=reason)
        return task

    def waive_task(
        self,
        task_id: str,
        actor: str,
        reason: str,
        now: datetime | None = None,
    ) -> RoadmapTask:
        """行政豁免：任意未解决状态 -> WAIVED"""
        self._ensure_open("waive_task")
        now = now or _utcnow()
        task = self.get_task(task_id)
        before = self.phase_progress[task.phase].is_complete
        from_status = task.status

        task.waive(actor, reason)
        self._emit_transition(EventType.TASK_WAIVED, task, from_status, actor, now, reason=reason)
        self._after_resolution(task, before, actor, now)
        log.info("task_waived", roadmap_id=self.roadmap_id, task_id=task_id, reason=reason)
        return task

    def reopen_task(
        self,
        task_id: str,
        actor: str,
        reason: str = "",
        now: datetime | None = None,
    ) -> RoadmapTask:
        """COMPLETED/SKIPPED -> PENDING

        单向传播：已解锁的下游任务保持原状，不会被重新锁定。
        """
        self._ensure_open("reopen_task")
        now = now or _utcnow()
        task = self.get_task(task_id)
        from_status = task.status

        task.reopen()
        self._emit_transition(EventType.TASK_REOPENED, task, from_status, actor, now, reason=reason)
        self._finish(now)
        log.info("task_reopened", roadmap_id=self.roadmap_id, task_id=task_id, actor=actor)
        return task

    def block_task(
        self,
        task_id: str,
        actor: str,
        reason: str,
        risk_id: str | None = None,
        now: datetime | None = None,
    ) -> RoadmapTask:
        self._ensure_open("block_task")
        now = now or _utcnow()
        task = self.get_task(task_id)

        task.block(actor, reason, risk_id)
        if risk_id:
            self.blocked_by_risk_ids.add(risk_id)
        self._emit(
            EventType.TASK_BLOCKED,
            actor,
            task_id=task_id,
            payload=TaskBlockedPayload(reason=reason, risk_id=risk_id),
            now=now,
        )
        self._refresh_status(actor, now)
        self._finish(now)
        log.info(
            "task_blocked",
            roadmap_id=self.roadmap_id,
            task_id=task_id,
            risk_id=risk_id,
        )
        return task

    def unblock_task(self, task_id: str, actor: str, now: datetime | None = None) -> RoadmapTask:
        """手工解除阻塞：BLOCKED -> PENDING，需要重新 start"""
        self._ensure_open("unblock_task")
        now = now or _utcnow()
        task = self.get_task(task_id)
        risk_id = task.blocked_by_risk_id

        task.unblock(actor)
        self._emit(
            EventType.TASK_UNBLOCKED,
            actor,
            task_id=task_id,
            payload=TaskBlockedPayload(risk_id=risk_id),
            now=now,
        )
        self._drop_idle_risks()
        self._refresh_status(actor, now)
        self._finish(now)
        log.info("task_unblocked", roadmap_id=self.roadmap_id, task_id=task_id)
        return task

    def update_task_priority(
        self,
        task_id: str,
        priority: TaskPriority,
        actor: str,
        reason: str = "manual",
        now: datetime | None = None,
    ) -> bool:
        self._ensure_open("update_task_priority")
        now = now or _utcnow()
        changed = self._change_priority(self.get_task(task_id), priority, reason, actor, now)
        if changed:
            self._finish(now)
        return changed

    def mark_overdue_tasks(self, now: datetime | None = None) -> list[str]:
        """幂等逾期扫描

        Returns:
            本次新标记为逾期的任务 ID
        """
        self._ensure_open("mark_overdue_tasks")
        now = now or _utcnow()
        newly_overdue: list[str] = []
        for task in self.tasks:
            if not task.mark_overdue(now):
                continue
            newly_overdue.append(task.task_id)
            self._emit(
                EventType.TASK_OVERDUE,
                SYSTEM_ACTOR,
                task_id=task.task_id,
                payload=TaskOverduePayload(
                    due_date=task.due_date.isoformat(),
                    days_overdue=task.days_overdue(now),
                ),
                now=now,
            )
        if newly_overdue:
            self._recompute_progress()
            self.updated_at = now
            self.refresh_analytics(now)
            log.info(
                "tasks_marked_overdue",
                roadmap_id=self.roadmap_id,
                count=len(newly_overdue),
            )
        return newly_overdue

    # ==================== 风险 ====================

    def link_risk(
        self,
        risk_id: str,
        task_ids: Iterable[str],
        actor: str = SYSTEM_ACTOR,
        reason: str = "",
        now: datetime | None = None,
    ) -> list[str]:
        """将外部风险关联到任务

        LOCKED 任务只记录风险持有（保持 LOCKED，解析器不会解锁）；
        PENDING / IN_PROGRESS 任务转为 BLOCKED；已阻塞任务追加关联；已解决任务忽略。

        Returns:
            受影响的任务 ID；无受影响任务时为空操作
        """
        self._ensure_open("link_risk")
        now = now or _utcnow()
        targets = [self.get_task(tid) for tid in task_ids]

        affected: list[str] = []
        for task in targets:
            if task.is_resolved:
                continue
            if task.status in (TaskStatus.LOCKED, TaskStatus.BLOCKED):
                task.related_risk_ids.add(risk_id)
            else:
                task.block(actor, reason or f"risk {risk_id}", risk_id)
                self._emit(
                    EventType.TASK_BLOCKED,
                    actor,
                    task_id=task.task_id,
                    payload=TaskBlockedPayload(reason=reason, risk_id=risk_id),
                    now=now,
                )
            affected.append(task.task_id)

        if not affected:
            return []

        self.blocked_by_risk_ids.add(risk_id)
        self.resolved_risk_ids.discard(risk_id)
        self._emit(
            EventType.RISK_LINKED,
            actor,
            payload=RiskPayload(risk_id=risk_id, task_ids=affected),
            now=now,
        )
        self._refresh_status(actor, now)
        self._finish(now)
        log.info(
            "risk_linked",
            roadmap_id=self.roadmap_id,
            risk_id=risk_id,
            task_count=len(affected),
        )
        return affected

    def unlink_risk(
        self,
        risk_id: str,
        actor: str = SYSTEM_ACTOR,
        now: datetime | None = None,
    ) -> list[str]:
        """解除风险：释放被其阻塞的任务并重新解析依赖

        未关联的风险为空操作。

        Returns:
            被释放回 PENDING 的任务 ID
        """
        self._ensure_open("unlink_risk")
        if risk_id not in self.blocked_by_risk_ids:
            return []
        now = now or _utcnow()
        released = self._release_risk(risk_id, actor, now)
        self._finish(now)
        return released

    # ==================== 阶段 ====================

    def required_threshold(self, phase: RoadmapPhase) -> int:
        if phase == RoadmapPhase.PRE_FILING:
            return self.pre_filing_threshold
        return STRICT_PHASE_THRESHOLD

    def is_ready_for_next_phase(self) -> bool:
        """100% 阈值按任务计数判断，其余阈值按百分比判断"""
        progress = self.phase_progress[self.current_phase]
        required = self.required_threshold(self.current_phase)
        if required >= STRICT_PHASE_THRESHOLD:
            return progress.is_complete
        return progress.percent >= required

    def advance_phase(self, actor: str = SYSTEM_ACTOR, now: datetime | None = None) -> RoadmapPhase:
        """推进到下一阶段

        在最终阶段调用且整体完成 100% 时结束 roadmap。

        Returns:
            推进后的当前阶段

        Raises:
            PhaseNotReadyError: 当前阶段（或最终阶段的整体）完成度不足
        """
        self._ensure_open("advance_phase")
        now = now or _utcnow()
        current = self.current_phase
        progress = self.phase_progress[current]
        required = self.required_threshold(current)
        if not self.is_ready_for_next_phase():
            raise PhaseNotReadyError(current.value, progress.percent, required)

        if current == FINAL_PHASE:
            if not self.all_tasks_resolved:
                raise PhaseNotReadyError(
                    current.value, self.percent_complete, STRICT_PHASE_THRESHOLD
                )
            self._complete_roadmap(actor, now)
            self._finish(now)
            return current

        target = PHASE_ORDER[phase_index(current) + 1]
        self._enter_phase(target, actor, now)
        if target == FINAL_PHASE and self.all_tasks_resolved:
            self._complete_roadmap(actor, now)
        self._finish(now)
        return target

    def force_phase_transition(
        self,
        target: RoadmapPhase,
        actor: str,
        reason: str = "",
        now: datetime | None = None,
    ) -> RoadmapPhase:
        """强制向前流转：忽略完成度阈值，可跨越多个阶段，但不可回退

        目标即当前阶段时为空操作。
        """
        self._ensure_open("force_phase_transition")
        if target == self.current_phase:
            return target
        now = now or _utcnow()
        if self.current_phase == FINAL_PHASE:
            raise CannotAdvancePastFinalPhaseError(self.current_phase.value)
        if phase_index(target) <= phase_index(self.current_phase):
            raise InvalidPhaseTransitionError(self.current_phase.value, target.value)

        self._enter_phase(target, actor, now, forced=True, reason=reason)
        if target == FINAL_PHASE and self.all_tasks_resolved:
            self._complete_roadmap(actor, now)
        self._finish(now)
        return target

    def try_auto_advance(self, actor: str = SYSTEM_ACTOR, now: datetime | None = None) -> bool:
        """自动推进包装：关闭时或阈值未达到时为空操作

        Returns:
            True 如果发生了至少一次阶段推进或 roadmap 完成
        """
        if not self.auto_transition_enabled or self.is_closed:
            return False
        advanced = False
        while not self.is_closed and self.is_ready_for_next_phase():
            if self.current_phase == FINAL_PHASE and not self.all_tasks_resolved:
                break
            self.advance_phase(actor, now)
            advanced = True
        return advanced

    def change_status(
        self,
        new_status: RoadmapStatus,
        actor: str,
        reason: str = "",
        now: datetime | None = None,
    ) -> None:
        """手工状态切换（暂停、升级、放弃、恢复）

        COMPLETED 只能通过阶段推进到达；BLOCKED 由风险自动维护。
        """
        self._ensure_open("change_status")
        if new_status not in _MANUAL_STATUSES:
            raise ValueError(f"Status {new_status} cannot be set manually")
        if new_status == self.status:
            return
        now = now or _utcnow()
        self._set_status(new_status, actor, reason, now)
        self._finish(now)

    # ==================== 优化与分析 ====================

    def optimize(
        self,
        actor: str = SYSTEM_ACTOR,
        now: datetime | None = None,
    ) -> CriticalPathResult:
        """基于关键路径的优化

        - 关键路径上的逾期任务提升为 CRITICAL
        - 阻塞超过 BLOCKER_FANOUT_THRESHOLD 个未解决任务的任务提升为 HIGH
        - 没有截止日期的 PENDING 任务按优先级分配截止日期
        """
        self._ensure_open("optimize")
        now = now or _utcnow()
        result = _cpm.compute(self.tasks)
        fanout = self._unresolved_fanout()

        upgrades = 0
        for task in self.tasks:
            if task.is_resolved:
                continue
            if task.is_overdue and result.is_critical(task.task_id):
                if self._change_priority(
                    task, TaskPriority.CRITICAL, "overdue_on_critical_path", actor, now
                ):
                    upgrades += 1
            elif (
                fanout.get(task.task_id, 0) > BLOCKER_FANOUT_THRESHOLD
                and PRIORITY_SCORES[task.priority] < PRIORITY_SCORES[TaskPriority.HIGH]
            ):
                if self._change_priority(task, TaskPriority.HIGH, "blocks_many_tasks", actor, now):
                    upgrades += 1

        due_assigned = 0
        for task in self.tasks:
            if task.status == TaskStatus.PENDING and task.due_date is None:
                days = PRIORITY_DUE_DAYS[task.priority]
                task.update_due_date(now + timedelta(days=days), now)
                due_assigned += 1

        self.optimization_count += 1
        self._emit(
            EventType.CRITICAL_PATH_IDENTIFIED,
            actor,
            payload=CriticalPathPayload(
                task_ids=result.critical_task_ids,
                project_duration_days=result.project_duration_days,
            ),
            now=now,
        )
        self._emit(
            EventType.ROADMAP_OPTIMIZED,
            actor,
            payload=RoadmapOptimizedPayload(
                optimization_count=self.optimization_count,
                priority_upgrades=upgrades,
                due_dates_assigned=due_assigned,
            ),
            now=now,
        )
        self._touch(now)
        self._recompute_progress()
        self.refresh_analytics(now, result)

        log.info(
            "roadmap_optimized",
            roadmap_id=self.roadmap_id,
            priority_upgrades=upgrades,
            due_dates_assigned=due_assigned,
            critical_count=len(result.critical_task_ids),
        )
        return result

    def refresh_analytics(
        self,
        now: datetime | None = None,
        cpm: CriticalPathResult | None = None,
    ) -> RoadmapAnalytics:
        """重算分析快照（非权威数据，可随时丢弃重建）"""
        now = now or _utcnow()
        cpm = cpm or _cpm.compute(self.tasks)

        active = [t for t in self.tasks if t.status not in (TaskStatus.SKIPPED, TaskStatus.WAIVED)]
        categories = {t.category for t in active}
        cost = BASE_FILING_FEE_KES
        if TaskCategory.GAZETTE_PUBLICATION in categories:
            cost += GAZETTE_FEE_KES
        cost += sum(CATEGORY_COST_KES.get(c.value, 0) for c in categories)

        edge_count = sum(len(t.depends_on) for t in self.tasks)
        complexity = 1 + len(self.tasks) // 8 + edge_count // 10 + len(self.blocked_by_risk_ids)

        risk_exposure = (
            len(self.blocked_by_risk_ids) * 20 + self.overdue_tasks * 10 + self.blocked_tasks * 15
        )

        fanout = self._unresolved_fanout()
        bottlenecks = [
            tid
            for tid in cpm.critical_task_ids
            if fanout.get(tid, 0) >= BLOCKER_FANOUT_THRESHOLD
        ]
        bottlenecks.extend(
            t.task_id
            for t in self.tasks
            if t.status == TaskStatus.BLOCKED and t.task_id not in bottlenecks
        )

        accelerations: list[str] = []
        if self.overdue_tasks:
            accelerations.append("Focus on overdue critical tasks first")
        if self.days_inactive(now) > 7:
            accelerations.append("Resume activity to avoid delays")
        if _cpm.parallel_opportunities(self.tasks, cpm):
            accelerations.append("Consider parallel task execution for independent tasks")

        self.analytics = RoadmapAnalytics(
            estimated_total_days=cpm.project_duration_days,
            estimated_cost_kes=cost,
            complexity_score=min(10, max(1, complexity)),
            risk_exposure=min(100, risk_exposure),
            efficiency_score=self._efficiency_score(now, cpm.project_duration_days),
            critical_path_task_ids=cpm.critical_task_ids,
            predicted_bottlenecks=bottlenecks,
            acceleration_opportunities=accelerations,
            computed_at=now,
        )
        return self.analytics

    # ==================== 查询 ====================

    @property
    def is_closed(self) -> bool:
        return self.status == RoadmapStatus.COMPLETED

    @property
    def all_tasks_resolved(self) -> bool:
        """所有任务均为 COMPLETED/SKIPPED/WAIVED（按计数判断，不依赖取整后的百分比）"""
        return all(t.is_resolved for t in self.tasks)

    @property
    def is_blocked_by_risks(self) -> bool:
        return bool(self.blocked_by_risk_ids)

    def find_task(self, task_id: str) -> RoadmapTask | None:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    def get_task(self, task_id: str) -> RoadmapTask:
        task = self.find_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def tasks_in_phase(self, phase: RoadmapPhase) -> list[RoadmapTask]:
        return sorted(
            (t for t in self.tasks if t.phase == phase),
            key=lambda t: (t.order_index, t.task_id),
        )

    def current_phase_tasks(self) -> list[RoadmapTask]:
        return self.tasks_in_phase(self.current_phase)

    def tasks_by_status(self, status: TaskStatus) -> list[RoadmapTask]:
        return [t for t in self.tasks if t.status == status]

    def tasks_by_priority(self, priority: TaskPriority) -> list[RoadmapTask]:
        return [t for t in self.tasks if t.priority == priority]

    def overdue_task_list(self) -> list[RoadmapTask]:
        return [t for t in self.tasks if t.is_overdue]

    def available_tasks(self) -> list[RoadmapTask]:
        """可立即开始的任务（PENDING 且依赖全部解决）"""
        resolved = resolved_task_ids(self.tasks)
        return [
            t
            for t in self.tasks
            if t.status == TaskStatus.PENDING and not unresolved_dependencies(t, resolved)
        ]

    def next_recommended_task(self, now: datetime | None = None) -> RoadmapTask | None:
        """当前阶段的下一个推荐任务

        优先级：逾期的 CRITICAL 任务 > PENDING 的 CRITICAL 任务 > 依赖已满足的 PENDING 任务，
        同档按 priority_score 降序。
        """
        workable = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        candidates = self.current_phase_tasks()
        resolved = resolved_task_ids(self.tasks)

        def best(tasks: list[RoadmapTask]) -> RoadmapTask | None:
            if not tasks:
                return None
            return max(tasks, key=lambda t: (t.priority_score(now), -t.order_index))

        tiers = [
            [
                t
                for t in candidates
                if t.status in workable and t.is_overdue and t.priority == TaskPriority.CRITICAL
            ],
            [
                t
                for t in candidates
                if t.status == TaskStatus.PENDING and t.priority == TaskPriority.CRITICAL
            ],
            [
                t
                for t in candidates
                if t.status == TaskStatus.PENDING and not unresolved_dependencies(t, resolved)
            ],
        ]
        for tier in tiers:
            choice = best(tier)
            if choice is not None:
                return choice
        return None

    def critical_path(self) -> CriticalPathResult:
        return _cpm.compute(self.tasks)

    def parallel_opportunities(self) -> list[RoadmapTask]:
        ids = set(_cpm.parallel_opportunities(self.tasks))
        return [t for t in self.tasks if t.task_id in ids]

    def days_inactive(self, now: datetime | None = None) -> int:
        delta = (now or _utcnow()) - self.last_activity_at
        return max(0, int(delta.total_seconds() // _SECONDS_PER_DAY))

    def health_status(self, now: datetime | None = None) -> RoadmapHealth:
        inactive = self.days_inactive(now)
        if self.blocked_tasks > 0 or inactive > HEALTH_CRITICAL_INACTIVE_DAYS:
            return RoadmapHealth.CRITICAL
        if (
            self.overdue_tasks > HEALTH_WARNING_OVERDUE_TASKS
            or inactive > HEALTH_WARNING_INACTIVE_DAYS
        ):
            return RoadmapHealth.WARNING
        return RoadmapHealth.HEALTHY

    def verify_consistency(self) -> list[str]:
        """校验聚合不变量，返回发现的问题（空列表表示一致）"""
        issues: list[str] = []
        graph = TaskGraph(self.tasks)
        for task_id, missing in graph.dangling_dependencies().items():
            issues.append(f"task {task_id} has dangling dependencies {missing}")
        cycle = graph.find_cycle()
        if cycle:
            issues.append(f"dependency cycle {' -> '.join(cycle)}")

        ids = [t.task_id for t in self.tasks]
        if len(ids) != len(set(ids)):
            issues.append("duplicate task ids")

        for phase in PHASE_ORDER:
            phase_tasks = [t for t in self.tasks if t.phase == phase]
            resolved = sum(1 for t in phase_tasks if t.is_resolved)
            expected = PhaseProgress.compute(phase, resolved, len(phase_tasks))
            if self.phase_progress.get(phase) != expected:
                issues.append(f"phase progress for {phase} is stale")

        if self.total_tasks != len(self.tasks):
            issues.append("total_tasks counter drifted")
        if self.blocked_by_risk_ids & self.resolved_risk_ids:
            issues.append("risk both active and resolved")
        if self.phase_history and self.phase_history[-1].phase != self.current_phase:
            issues.append("phase history does not end in current phase")
        if self.is_closed and (self.current_phase != FINAL_PHASE or not self.all_tasks_resolved):
            issues.append("completed roadmap is not fully resolved in final phase")
        return issues

    def pull_events(self) -> list[RoadmapEvent]:
        """取出并清空待发布事件"""
        events, self._pending_events = self._pending_events, []
        return events

    @property
    def pending_events(self) -> list[RoadmapEvent]:
        return list(self._pending_events)

    # ==================== 内部 ====================

    def _ensure_open(self, attempted: str) -> None:
        if self.is_closed:
            raise RoadmapClosedError(self.roadmap_id, attempted)

    def _touch(self, now: datetime) -> None:
        self.updated_at = now
        self.last_activity_at = now

    def _finish(self, now: datetime) -> None:
        """每个公开命令的收尾：重算派生数据并刷新分析"""
        self._touch(now)
        self._recompute_progress()
        self.refresh_analytics(now)

    def _recompute_progress(self) -> None:
        counts = {phase: [0, 0] for phase in PHASE_ORDER}
        status_counts = dict.fromkeys(TaskStatus, 0)
        overdue = 0
        for task in self.tasks:
            bucket = counts[task.phase]
            bucket[1] += 1
            if task.is_resolved:
                bucket[0] += 1
            status_counts[task.status] += 1
            if task.is_overdue:
                overdue += 1

        self.phase_progress = {
            phase: PhaseProgress.compute(phase, resolved, total)
            for phase, (resolved, total) in counts.items()
        }
        self.total_tasks = len(self.tasks)
        self.completed_tasks = status_counts[TaskStatus.COMPLETED]
        self.skipped_tasks = status_counts[TaskStatus.SKIPPED]
        self.waived_tasks = status_counts[TaskStatus.WAIVED]
        self.blocked_tasks = status_counts[TaskStatus.BLOCKED]
        self.overdue_tasks = overdue

        resolved_total = self.completed_tasks + self.skipped_tasks + self.waived_tasks
        self.percent_complete = completion_percent(resolved_total, self.total_tasks)

    def _wire_inverse_edges(self, graph: TaskGraph) -> None:
        for task_id, dependents in graph.dependents.items():
            graph.tasks[task_id].blocks = set(dependents)

    def _unresolved_fanout(self) -> dict[str, int]:
        """task_id -> 直接依赖它且尚未解决的任务数"""
        fanout: dict[str, int] = {}
        for task in self.tasks:
            if task.is_resolved:
                continue
            for dep in task.depends_on:
                fanout[dep] = fanout.get(dep, 0) + 1
        return fanout

    def _resolve(self, actor: str, now: datetime) -> ResolutionResult:
        result = resolve_dependencies(self)
        for task_id in result.unlocked_task_ids:
            self._emit(
                EventType.TASK_UNLOCKED,
                actor,
                task_id=task_id,
                payload=TaskTransitionPayload(
                    from_status=TaskStatus.LOCKED,
                    to_status=TaskStatus.PENDING,
                ),
                now=now,
            )
        if result.unlocked_task_ids:
            log.debug(
                "tasks_unlocked",
                roadmap_id=self.roadmap_id,
                task_ids=result.unlocked_task_ids,
            )
        return result

    def _after_resolution(
        self,
        task: RoadmapTask,
        phase_complete_before: bool,
        actor: str,
        now: datetime,
    ) -> None:
        """complete/skip/waive 之后：解除任务解决的风险、传播解锁、检查阶段完成"""
        for risk_id in sorted(task.resolves_risk_ids & self.blocked_by_risk_ids):
            self._release_risk(risk_id, actor, now)
        self._drop_idle_risks()
        self._resolve(actor, now)
        self._refresh_status(actor, now)
        self._finish(now)

        progress = self.phase_progress[task.phase]
        if progress.total and progress.is_complete and not phase_complete_before:
            self._emit(
                EventType.ALL_PHASE_TASKS_COMPLETED,
                actor,
                payload=PhaseTasksCompletedPayload(phase=task.phase, task_count=progress.total),
                now=now,
            )

    def _release_risk(self, risk_id: str, actor: str, now: datetime) -> list[str]:
        self.blocked_by_risk_ids.discard(risk_id)
        self.resolved_risk_ids.add(risk_id)

        released: list[str] = []
        for task in self.tasks:
            if task.status != TaskStatus.BLOCKED or task.blocked_by_risk_id != risk_id:
                continue
            remaining = task.related_risk_ids & self.blocked_by_risk_ids
            if remaining:
                # 仍被其他活跃风险持有
                task.blocked_by_risk_id = sorted(remaining)[0]
                continue
            task.unblock(actor)
            released.append(task.task_id)
            self._emit(
                EventType.TASK_UNBLOCKED,
                actor,
                task_id=task.task_id,
                payload=TaskBlockedPayload(risk_id=risk_id),
                now=now,
            )

        self._emit(
            EventType.RISK_RESOLVED,
            actor,
            payload=RiskPayload(risk_id=risk_id, task_ids=released),
            now=now,
        )
        self._resolve(actor, now)
        self._refresh_status(actor, now)
        log.info(
            "risk_resolved",
            roadmap_id=self.roadmap_id,
            risk_id=risk_id,
            released=len(released),
        )
        return released

    def _drop_idle_risks(self) -> list[str]:
        """移除已不再持有任何任务的活跃风险

        持有指：BLOCKED 任务，或仍关联该风险的 LOCKED 任务。
        风险本身未解除，不记入 resolved_risk_ids。
        """
        held: set[str] = set()
        for task in self.tasks:
            if task.status in (TaskStatus.BLOCKED, TaskStatus.LOCKED):
                held |= task.related_risk_ids
                if task.blocked_by_risk_id:
                    held.add(task.blocked_by_risk_id)
        idle = sorted(self.blocked_by_risk_ids - held)
        if idle:
            self.blocked_by_risk_ids.difference_update(idle)
            log.info("idle_risks_dropped", roadmap_id=self.roadmap_id, risk_ids=idle)
        return idle

    def _refresh_status(self, actor: str, now: datetime) -> None:
        """活跃风险存在时 ACTIVE -> BLOCKED，全部解除后 BLOCKED -> ACTIVE"""
        if self.blocked_by_risk_ids and self.status == RoadmapStatus.ACTIVE:
            self._set_status(RoadmapStatus.BLOCKED, actor, "risk_linked", now)
        elif not self.blocked_by_risk_ids and self.status == RoadmapStatus.BLOCKED:
            self._set_status(RoadmapStatus.ACTIVE, actor, "risks_cleared", now)

    def _set_status(
        self,
        new_status: RoadmapStatus,
        actor: str,
        reason: str,
        now: datetime,
    ) -> None:
        old_status = self.status
        self.status = new_status
        self._emit(
            EventType.ROADMAP_STATUS_CHANGED,
            actor,
            payload=RoadmapStatusChangedPayload(
                from_status=old_status,
                to_status=new_status,
                reason=reason,
            ),
            now=now,
        )
        log.info(
            "roadmap_status_changed",
            roadmap_id=self.roadmap_id,
            from_status=old_status,
            to_status=new_status,
        )

    def _change_priority(
        self,
        task: RoadmapTask,
        priority: TaskPriority,
        reason: str,
        actor: str,
        now: datetime,
    ) -> bool:
        old = task.priority
        if not task.update_priority(priority):
            return False
        self._emit(
            EventType.TASK_PRIORITY_CHANGED,
            actor,
            task_id=task.task_id,
            payload=TaskPriorityChangedPayload(
                from_priority=old,
                to_priority=priority,
                reason=reason,
            ),
            now=now,
        )
        return True

    def _enter_phase(
        self,
        target: RoadmapPhase,
        actor: str,
        now: datetime,
        forced: bool = False,
        reason: str = "",
    ) -> None:
        from_phase = self.current_phase
        duration = self._close_history_entry(now)
        self.current_phase = target
        self.phase_history.append(PhaseHistoryEntry(phase=target, entered_at=now, forced=forced))
        self._emit(
            EventType.PHASE_TRANSITIONED,
            actor,
            payload=PhaseTransitionedPayload(
                from_phase=from_phase,
                to_phase=target,
                forced=forced,
                reason=reason,
                duration_days=duration,
            ),
            now=now,
        )
        log.info(
            "phase_transitioned",
            roadmap_id=self.roadmap_id,
            from_phase=from_phase,
            to_phase=target,
            forced=forced,
        )

    def _close_history_entry(self, now: datetime) -> int | None:
        if not self.phase_history or not self.phase_history[-1].is_open:
            return None
        entry = self.phase_history[-1]
        entry.exited_at = now
        entry.duration_days = _elapsed_days(entry.entered_at, now)
        return entry.duration_days

    def _complete_roadmap(self, actor: str, now: datetime) -> None:
        self._close_history_entry(now)
        self._set_status(RoadmapStatus.COMPLETED, actor, "all_tasks_resolved", now)
        self.actual_completion_date = now
        self._emit(
            EventType.ROADMAP_COMPLETED,
            actor,
            payload=RoadmapCompletedPayload(
                total_tasks=self.total_tasks,
                completed_tasks=self.completed_tasks,
                skipped_tasks=self.skipped_tasks,
                total_days=_elapsed_days(self.started_at or self.created_at, now),
            ),
            now=now,
        )
        log.info("roadmap_completed", roadmap_id=self.roadmap_id, case_id=self.case_id)

    def _efficiency_score(self, now: datetime, expected_days: int) -> int:
        elapsed = _elapsed_days(self.started_at or self.created_at, now)
        if elapsed == 0 or expected_days == 0:
            return 100
        efficiency = (self.percent_complete / 100) / (elapsed / expected_days)
        return min(100, max(0, round(efficiency * 100)))

    def _emit_transition(
        self,
        event_type: EventType,
        task: RoadmapTask,
        from_status: TaskStatus,
        actor: str,
        now: datetime,
        reason: str = "",
    ) -> None:
        self._emit(
            event_type,
            actor,
            task_id=task.task_id,
            payload=TaskTransitionPayload(
                from_status=from_status,
                to_status=task.status,
                reason=reason,
            ),
            now=now,
        )

    def _emit(
        self,
        event_type: EventType,
        actor: str,
        *,
        task_id: str | None = None,
        payload: BaseModel | None = None,
        now: datetime | None = None,
    ) -> None:
        self._pending_events.append(
            RoadmapEvent(
                event_id=str(ULID()),
                roadmap_id=self.roadmap_id,
                ts=now or _utcnow(),
                type=event_type,
                actor=ActorType.SYSTEM if actor == SYSTEM_ACTOR else ActorType.USER,
                actor_id=actor,
                task_id=task_id,
                payload=payload.model_dump(mode="json") if payload is not None else {},
            )
        )


def _check_duplicates(existing: list[RoadmapTask], new_tasks: list[RoadmapTask]) -> None:
    """任务 ID 唯一；同一阶段内 short_code 唯一"""
    seen_ids = {t.task_id for t in existing}
    seen_codes = {(t.short_code, t.phase) for t in existing}
    for task in new_tasks:
        key = (task.short_code, task.phase)
        if task.task_id in seen_ids or key in seen_codes:
            raise DuplicateTaskError(task.task_id, task.short_code, task.phase.value)
        seen_ids.add(task.task_id)
        seen_codes.add(key)
