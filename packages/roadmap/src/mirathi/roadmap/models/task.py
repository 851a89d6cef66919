"""RoadmapTask 实体 -- 可调度的最小工作单元

只持有本地不变量：状态机流转、凭证要求、截止日期与优先级语义。
不感知其他任务的状态；依赖是否满足由 DependencyResolver 与 Roadmap 判断。
任务从不物理删除，SKIPPED/WAIVED 表示移除。
"""

import math
from datetime import UTC, datetime

from pydantic import BaseModel, Field, model_validator
from ulid import ULID

from ..config import WORKDAY_MINUTES
from ..exceptions import (
    CyclicDependencyError,
    InvalidTaskTransitionError,
    ProofNotApplicableError,
    ProofRequiredError,
    TaskNotSkippableError,
)
from .enums import (
    PRIORITY_SCORES,
    RESOLVED_STATES,
    ProofType,
    RoadmapPhase,
    TaskCategory,
    TaskPriority,
    TaskStatus,
    phase_for_category,
    validate_transition,
)

_SECONDS_PER_DAY = 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ProofReference(BaseModel):
    """完成凭证引用（不透明 ID / payload，由外部校验器验证）"""

    proof_type: ProofType = Field(description="凭证类型")
    reference: str = Field(min_length=1, description="文档 ID 或凭证 payload 引用")


class RoadmapTask(BaseModel):
    """Roadmap 任务

    初始状态：depends_on 非空为 LOCKED，否则 PENDING。
    所有状态变化都通过下面的流转方法完成，非法流转抛出 InvalidTaskTransitionError。
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    short_code: str = Field(description="稳定的模板键")
    title: str = Field(description="任务标题")
    description: str = Field(default="", description="任务描述")
    category: TaskCategory = Field(description="任务分类，决定所属阶段")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    order_index: int = Field(default=0, ge=0, description="阶段内排序")

    # 图的边
    depends_on: set[str] = Field(default_factory=set, description="必须先完成的任务")
    blocks: set[str] = Field(default_factory=set, description="反向边，仅供展示")

    is_conditional: bool = Field(default=False, description="条件性任务可跳过")
    legal_basis: str | None = Field(default=None)
    instructions: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    # 时间
    estimated_duration_minutes: int = Field(default=60, ge=0)
    due_date: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    skipped_at: datetime | None = None
    waived_at: datetime | None = None
    is_overdue: bool = False

    # 完成信息
    completed_by: str | None = None
    completion_notes: str | None = None
    skip_reason: str | None = None
    waiver_reason: str | None = None

    # 凭证
    requires_proof: bool = False
    allowed_proof_types: set[ProofType] = Field(default_factory=set)
    proof_reference: ProofReference | None = None

    # 风险关联
    related_risk_ids: set[str] = Field(
        default_factory=set,
        description="持有本任务的外部风险（区分依赖锁定与风险阻塞）",
    )
    blocked_by_risk_id: str | None = None
    block_reason: str | None = None
    resolves_risk_ids: set[str] = Field(
        default_factory=set,
        description="完成本任务即视为解决的风险",
    )

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _no_self_dependency(self) -> "RoadmapTask":
        if self.task_id in self.depends_on:
            raise CyclicDependencyError([self.task_id, self.task_id])
        return self

    # ==================== 工厂 ====================

    @classmethod
    def create(
        cls,
        short_code: str,
        title: str,
        category: TaskCategory,
        depends_on: set[str] | None = None,
        **kwargs,
    ) -> "RoadmapTask":
        """创建新任务：有依赖则 LOCKED，否则 PENDING"""
        deps = set(depends_on or ())
        kwargs.setdefault("task_id", str(ULID()))
        status = TaskStatus.LOCKED if deps else TaskStatus.PENDING
        return cls(
            short_code=short_code,
            title=title,
            category=category,
            depends_on=deps,
            status=status,
            **kwargs,
        )

    # ==================== 派生属性 ====================

    @property
    def phase(self) -> RoadmapPhase:
        return phase_for_category(self.category)

    @property
    def duration_days(self) -> int:
        """以 8 小时工作日计的时长，至少 1 天"""
        return max(1, math.ceil(self.estimated_duration_minutes / WORKDAY_MINUTES))

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATES

    @property
    def can_start(self) -> bool:
        return self.status == TaskStatus.PENDING

    @property
    def can_complete(self) -> bool:
        if self.status != TaskStatus.IN_PROGRESS:
            return False
        return not self.requires_proof or self.proof_reference is not None

    @property
    def can_skip(self) -> bool:
        return self.is_conditional and self.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)

    def days_overdue(self, now: datetime | None = None) -> int:
        if self.due_date is None:
            return 0
        delta = (now or _utcnow()) - self.due_date
        return max(0, math.ceil(delta.total_seconds() / _SECONDS_PER_DAY))

    def days_remaining(self, now: datetime | None = None) -> int | None:
        if self.due_date is None:
            return None
        delta = self.due_date - (now or _utcnow())
        return max(0, math.ceil(delta.total_seconds() / _SECONDS_PER_DAY))

    def priority_score(self, now: datetime | None = None) -> int:
        """排序用分数：优先级基础分 + 逾期加成 + 临近截止加成"""
        score = PRIORITY_SCORES[self.priority]
        if self.is_overdue:
            score += 50
        remaining = self.days_remaining(now)
        if remaining is not None and remaining <= 3:
            score += (3 - remaining) * 10
        return score

    # ==================== 状态流转 ====================

    def _transition(self, to_status: TaskStatus, attempted: str) -> None:
        if not validate_transition(self.status, to_status):
            raise InvalidTaskTransitionError(self.task_id, self.status.value, attempted)
        self.status = to_status
        self.updated_at = _utcnow()

    def unlock(self) -> bool:
        """LOCKED -> PENDING

        已经是 PENDING 时为幂等空操作。

        Returns:
            True 如果发生了流转
        """
        if self.status == TaskStatus.PENDING:
            return False
        if self.status != TaskStatus.LOCKED:
            raise InvalidTaskTransitionError(self.task_id, self.status.value, "unlock")
        self._transition(TaskStatus.PENDING, "unlock")
        return True

    def start(self, actor: str) -> None:
        """PENDING -> IN_PROGRESS"""
        if self.status != TaskStatus.PENDING:
            raise InvalidTaskTransitionError(self.task_id, self.status.value, "start")
        self._transition(TaskStatus.IN_PROGRESS, "start")
        self.started_at = self.updated_at

    def complete(
        self,
        actor: str,
        notes: str | None = None,
        proof: ProofReference | None = None,
    ) -> None:
        """IN_PROGRESS -> COMPLETED

        requires_proof 时必须提供（或已附加）允许类型的凭证。
        这里只检查凭证存在且类型允许，凭证真伪由外部校验器负责。
        """
        if self.status != TaskStatus.IN_PROGRESS:
            raise InvalidTaskTransitionError(self.task_id, self.status.value, "complete")

        effective_proof = proof or self.proof_reference
        if self.requires_proof:
            self._check_proof(effective_proof)

        self._transition(TaskStatus.COMPLETED, "complete")
        self.completed_at = self.updated_at
        self.completed_by = actor
        self.completion_notes = notes
        self.proof_reference = effective_proof
        self.is_overdue = False

    def skip(self, actor: str, reason: str) -> None:
        """PENDING/IN_PROGRESS -> SKIPPED，仅限条件性任务"""
        if self.status not in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS):
            raise InvalidTaskTransitionError(self.task_id, self.status.value, "skip")
        if not self.is_conditional:
            raise TaskNotSkippableError(self.task_id, self.status.value)
        self._transition(TaskStatus.SKIPPED, "skip")
        self.skipped_at = self.updated_at
        self.skip_reason = reason
        self.completed_by = actor

    def waive(self, actor: str, reason: str) -> None:
        """任意未解决状态 -> WAIVED（行政豁免，例如法院免除）"""
        self._transition(TaskStatus.WAIVED, "waive")
        self.waived_at = self.updated_at
        self.waiver_reason = reason
        self.completed_by = actor
        self.is_overdue = False
        self.blocked_by_risk_id = None
        self.block_reason = None

    def block(self, actor: str, reason: str, risk_id: str | None = None) -> None:
        """任意未终结状态 -> BLOCKED，记录来源风险"""
        if self.status == TaskStatus.BLOCKED or self.is_resolved:
            raise InvalidTaskTransitionError(self.task_id, self.status.value, "block")
        self._transition(TaskStatus.BLOCKED, "block")
        self.block_reason = reason
        self.blocked_by_risk_id = risk_id
        if risk_id:
            self.related_risk_ids.add(risk_id)

    def unblock(self, actor: str) -> None:
        """BLOCKED -> PENDING（不会直接回到 IN_PROGRESS，需重新 start）"""
        if self.status != TaskStatus.BLOCKED:
            raise InvalidTaskTransitionError(self.task_id, self.status.value, "unblock")
        self._transition(TaskStatus.PENDING, "unblock")
        self.blocked_by_risk_id = None
        self.block_reason = None

    def reopen(self) -> None:
        """COMPLETED/SKIPPED -> PENDING，清除完成/跳过信息"""
        if self.status not in (TaskStatus.COMPLETED, TaskStatus.SKIPPED):
            raise InvalidTaskTransitionError(self.task_id, self.status.value, "reopen")
        self._transition(TaskStatus.PENDING, "reopen")
        self.completed_at = None
        self.completed_by = None
        self.completion_notes = None
        self.skipped_at = None
        self.skip_reason = None
        self.proof_reference = None

    def mark_overdue(self, now: datetime | None = None) -> bool:
        """幂等：截止日期已过且未解决时置 is_overdue，不改变状态

        Returns:
            True 如果本次调用新置了逾期标记
        """
        if self.is_overdue or self.is_resolved or self.due_date is None:
            return False
        if (now or _utcnow()) <= self.due_date:
            return False
        self.is_overdue = True
        self.updated_at = _utcnow()
        return True

    # ==================== 其他修改 ====================

    def attach_proof(self, proof: ProofReference) -> None:
        if not self.requires_proof:
            raise ProofNotApplicableError(self.task_id)
        self._check_proof(proof)
        self.proof_reference = proof
        self.updated_at = _utcnow()

    def update_due_date(self, due_date: datetime, now: datetime | None = None) -> None:
        self.due_date = due_date
        self.is_overdue = (now or _utcnow()) > due_date and not self.is_resolved
        self.updated_at = _utcnow()

    def update_priority(self, priority: TaskPriority) -> bool:
        if self.priority == priority:
            return False
        self.priority = priority
        self.updated_at = _utcnow()
        return True

    def add_dependency(self, task_id: str) -> None:
        """追加依赖边（仅在构图阶段使用；无环性由 roadmap 构图时校验）"""
        if task_id == self.task_id:
            raise CyclicDependencyError([self.task_id, self.task_id])
        self.depends_on.add(task_id)
        if self.status == TaskStatus.PENDING and self.started_at is None:
            self.status = TaskStatus.LOCKED

    def _check_proof(self, proof: ProofReference | None) -> None:
        allowed = sorted(p.value for p in self.allowed_proof_types)
        if proof is None:
            raise ProofRequiredError(self.task_id, allowed)
        if self.allowed_proof_types and proof.proof_type not in self.allowed_proof_types:
            raise ProofRequiredError(self.task_id, allowed, supplied=proof.proof_type.value)
