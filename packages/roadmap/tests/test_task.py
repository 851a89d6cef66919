"""RoadmapTask 实体单元测试

测试内容：
1. 创建时的初始状态与自依赖校验
2. 凭证要求（requires_proof）
3. 跳过、豁免、阻塞、重开
4. 逾期标记与优先级分数
"""

from datetime import timedelta

import pytest
from mirathi.roadmap.exceptions import (
    CyclicDependencyError,
    InvalidTaskTransitionError,
    ProofNotApplicableError,
    ProofRequiredError,
    TaskNotSkippableError,
)
from mirathi.roadmap.models import (
    ProofReference,
    ProofType,
    RoadmapPhase,
    RoadmapTask,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)


def _proof(proof_type: ProofType = ProofType.DOCUMENT_UPLOAD) -> ProofReference:
    return ProofReference(proof_type=proof_type, reference="doc-001")


class TestTaskCreation:
    def test_no_dependencies_is_pending(self, make_task):
        task = make_task("A")
        assert task.status == TaskStatus.PENDING
        assert task.phase == RoadmapPhase.PRE_FILING

    def test_with_dependencies_is_locked(self, make_task):
        task = make_task("B", depends_on=("A",))
        assert task.status == TaskStatus.LOCKED
        assert task.depends_on == {"T-A"}

    def test_generated_task_id_is_ulid(self):
        task = RoadmapTask.create("X", "标题", TaskCategory.FEE_PAYMENT)
        assert len(task.task_id) == 26
        assert task.phase == RoadmapPhase.FILING

    def test_self_dependency_rejected(self):
        with pytest.raises(CyclicDependencyError):
            RoadmapTask.create("A", "自依赖", TaskCategory.LODGEMENT, {"T-A"}, task_id="T-A")

    def test_add_dependency_locks_pending_task(self, make_task):
        task = make_task("B")
        task.add_dependency("T-A")
        assert task.status == TaskStatus.LOCKED

    def test_add_self_dependency_rejected(self, make_task):
        task = make_task("A")
        with pytest.raises(CyclicDependencyError):
            task.add_dependency("T-A")

    @pytest.mark.parametrize(
        "minutes,days",
        [(0, 1), (60, 1), (480, 1), (481, 2), (1440, 3)],
    )
    def test_duration_days(self, minutes: int, days: int):
        task = RoadmapTask.create(
            "D", "工期", TaskCategory.FORM_REVIEW, estimated_duration_minutes=minutes
        )
        assert task.duration_days == days


class TestProofRequirement:
    """完成凭证"""

    def _proof_task(self, make_task) -> RoadmapTask:
        task = make_task(
            "P",
            requires_proof=True,
            allowed_proof_types={ProofType.DOCUMENT_UPLOAD},
        )
        task.start("alice")
        return task

    def test_complete_without_proof_fails(self, make_task):
        """需要凭证的任务无凭证完成时抛出 ProofRequiredError，状态不变"""
        task = self._proof_task(make_task)
        with pytest.raises(ProofRequiredError) as exc_info:
            task.complete("alice")
        assert exc_info.value.details["allowed_proof_types"] == ["DOCUMENT_UPLOAD"]
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.can_complete is False

    def test_complete_with_allowed_proof(self, make_task):
        task = self._proof_task(make_task)
        task.complete("alice", proof=_proof())
        assert task.status == TaskStatus.COMPLETED
        assert task.proof_reference is not None
        assert task.completed_by == "alice"
        assert task.completed_at is not None

    def test_disallowed_proof_type_fails(self, make_task):
        task = self._proof_task(make_task)
        with pytest.raises(ProofRequiredError) as exc_info:
            task.complete("alice", proof=_proof(ProofType.SMS_VERIFICATION))
        assert exc_info.value.details["supplied"] == "SMS_VERIFICATION"

    def test_attached_proof_is_used(self, make_task):
        task = self._proof_task(make_task)
        task.attach_proof(_proof())
        assert task.can_complete is True
        task.complete("alice")
        assert task.status == TaskStatus.COMPLETED

    def test_attach_proof_not_applicable(self, make_task):
        task = make_task("N")
        with pytest.raises(ProofNotApplicableError):
            task.attach_proof(_proof())


class TestTaskTransitionsOnEntity:
    def test_start_locked_task_fails(self, make_task):
        task = make_task("B", depends_on=("A",))
        with pytest.raises(InvalidTaskTransitionError) as exc_info:
            task.start("alice")
        assert exc_info.value.details["from"] == "LOCKED"
        assert exc_info.value.details["attempted"] == "start"

    def test_complete_pending_task_fails(self, make_task):
        task = make_task("A")
        with pytest.raises(InvalidTaskTransitionError):
            task.complete("alice")

    def test_start_sets_started_at(self, make_task):
        task = make_task("A")
        task.start("alice")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.started_at is not None

    def test_unlock_is_idempotent(self, make_task):
        task = make_task("B", depends_on=("A",))
        assert task.unlock() is True
        assert task.status == TaskStatus.PENDING
        assert task.unlock() is False

    def test_unlock_in_progress_fails(self, make_task):
        task = make_task("A")
        task.start("alice")
        with pytest.raises(InvalidTaskTransitionError):
            task.unlock()

    def test_skip_mandatory_task_fails(self, make_task):
        task = make_task("A")
        with pytest.raises(TaskNotSkippableError):
            task.skip("alice", "不适用")
        assert task.status == TaskStatus.PENDING

    def test_skip_conditional_task(self, make_task):
        task = make_task("A", is_conditional=True)
        assert task.can_skip is True
        task.skip("alice", "无未成年人")
        assert task.status == TaskStatus.SKIPPED
        assert task.skip_reason == "无未成年人"
        assert task.is_resolved

    def test_skip_locked_conditional_task_fails(self, make_task):
        task = make_task("B", depends_on=("A",), is_conditional=True)
        with pytest.raises(InvalidTaskTransitionError):
            task.skip("alice", "n/a")

    def test_waive_locked_task(self, make_task):
        task = make_task("B", depends_on=("A",))
        task.waive("registrar", "法院豁免")
        assert task.status == TaskStatus.WAIVED
        assert task.waiver_reason == "法院豁免"

    def test_waive_is_terminal(self, make_task):
        task = make_task("A")
        task.waive("registrar", "豁免")
        with pytest.raises(InvalidTaskTransitionError):
            task.waive("registrar", "再次豁免")
        with pytest.raises(InvalidTaskTransitionError):
            task.reopen()

    def test_block_and_unblock(self, make_task):
        task = make_task("A")
        task.block("alice", "争议", risk_id="R1")
        assert task.status == TaskStatus.BLOCKED
        assert task.blocked_by_risk_id == "R1"
        assert "R1" in task.related_risk_ids

        with pytest.raises(InvalidTaskTransitionError):
            task.block("alice", "再次阻塞")

        task.unblock("alice")
        assert task.status == TaskStatus.PENDING
        assert task.blocked_by_risk_id is None
        assert task.block_reason is None

    def test_block_resolved_task_fails(self, make_task):
        task = make_task("A")
        task.start("alice")
        task.complete("alice")
        with pytest.raises(InvalidTaskTransitionError):
            task.block("alice", "太晚了")

    def test_reopen_clears_completion(self, make_task):
        task = make_task("A")
        task.start("alice")
        task.complete("alice", notes="done")
        task.reopen()
        assert task.status == TaskStatus.PENDING
        assert task.completed_at is None
        assert task.completed_by is None
        assert task.completion_notes is None


class TestOverdueAndPriority:
    def test_mark_overdue_is_idempotent(self, make_task, now):
        task = make_task("A", due_date=now - timedelta(days=2))
        assert task.mark_overdue(now) is True
        assert task.is_overdue is True
        assert task.mark_overdue(now) is False
        assert task.status == TaskStatus.PENDING

    def test_not_overdue_before_due_date(self, make_task, now):
        task = make_task("A", due_date=now + timedelta(hours=1))
        assert task.mark_overdue(now) is False

    def test_without_due_date_never_overdue(self, make_task, now):
        assert make_task("A").mark_overdue(now) is False

    def test_resolved_task_never_overdue(self, make_task, now):
        task = make_task("A", due_date=now - timedelta(days=1))
        task.waive("registrar", "豁免")
        assert task.mark_overdue(now) is False

    def test_days_overdue_and_remaining(self, make_task, now):
        late = make_task("A", due_date=now - timedelta(days=3))
        assert late.days_overdue(now) == 3
        assert late.days_remaining(now) == 0

        upcoming = make_task("B", due_date=now + timedelta(days=5))
        assert upcoming.days_overdue(now) == 0
        assert upcoming.days_remaining(now) == 5
        assert make_task("C").days_remaining(now) is None

    def test_priority_score(self, make_task, now):
        base = make_task("A", priority=TaskPriority.HIGH)
        assert base.priority_score(now) == 75

        soon = make_task("B", priority=TaskPriority.MEDIUM, due_date=now + timedelta(days=1))
        assert soon.priority_score(now) == 50 + 20

        overdue = make_task("C", priority=TaskPriority.LOW, due_date=now - timedelta(days=1))
        overdue.mark_overdue(now)
        assert overdue.priority_score(now) == 25 + 50 + 30

    def test_update_due_date_recomputes_overdue(self, make_task, now):
        task = make_task("A")
        task.update_due_date(now - timedelta(days=1), now)
        assert task.is_overdue is True
        task.update_due_date(now + timedelta(days=1), now)
        assert task.is_overdue is False

    def test_update_priority_reports_change(self, make_task):
        task = make_task("A")
        assert task.update_priority(TaskPriority.CRITICAL) is True
        assert task.update_priority(TaskPriority.CRITICAL) is False
