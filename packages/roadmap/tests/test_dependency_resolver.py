"""依赖解析器单元测试

测试内容：
1. 依赖解决后解锁，且单向传播（reopen 不会重新锁定下游）
2. 被活跃风险持有的任务不解锁
3. 幂等性
4. can_start_task 只读判断
"""

import pytest
from mirathi.roadmap.engine import can_start_task, resolve_dependencies, unresolved_dependencies
from mirathi.roadmap.models import TaskStatus
from mirathi.roadmap.models.roadmap import ExecutorRoadmap


@pytest.fixture
def chain(make_task, now) -> ExecutorRoadmap:
    """Y -> X（X 依赖 Y）"""
    return ExecutorRoadmap.generate(
        "case-chain",
        [make_task("Y"), make_task("X", depends_on=("Y",))],
        now=now,
    )


class TestResolveDependencies:
    def test_unlock_after_completion_is_one_way(self, chain, now):
        """Y 完成后 X 解锁；Y reopen 后 X 仍保持 PENDING"""
        assert chain.get_task("T-X").status == TaskStatus.LOCKED

        chain.start_task("T-Y", "alice", now=now)
        chain.complete_task("T-Y", "alice", now=now)
        assert chain.get_task("T-X").status == TaskStatus.PENDING

        chain.reopen_task("T-Y", "alice", reason="误操作", now=now)
        assert chain.get_task("T-Y").status == TaskStatus.PENDING
        assert chain.get_task("T-X").status == TaskStatus.PENDING

        result = resolve_dependencies(chain)
        assert result.unlocked_task_ids == []
        assert chain.get_task("T-X").status == TaskStatus.PENDING

    def test_resolution_is_idempotent(self, chain):
        chain.get_task("T-Y").start("alice")
        chain.get_task("T-Y").complete("alice")

        first = resolve_dependencies(chain)
        second = resolve_dependencies(chain)
        assert first.unlocked_task_ids == ["T-X"]
        assert second.unlocked_task_ids == []

    def test_skipped_and_waived_count_as_resolved(self, make_task, now):
        roadmap = ExecutorRoadmap.generate(
            "case-resolved",
            [
                make_task("A", is_conditional=True),
                make_task("B"),
                make_task("C", depends_on=("A", "B")),
            ],
            now=now,
        )
        roadmap.skip_task("T-A", "alice", "不适用", now=now)
        assert roadmap.get_task("T-C").status == TaskStatus.LOCKED
        roadmap.waive_task("T-B", "registrar", "法院豁免", now=now)
        assert roadmap.get_task("T-C").status == TaskStatus.PENDING

    def test_risk_held_task_not_unlocked(self, chain):
        """依赖已满足，但仍被活跃风险持有时保持 LOCKED"""
        chain.get_task("T-X").related_risk_ids.add("R")
        chain.blocked_by_risk_ids.add("R")
        chain.get_task("T-Y").start("alice")
        chain.get_task("T-Y").complete("alice")

        result = resolve_dependencies(chain)
        assert result.unlocked_task_ids == []
        assert chain.get_task("T-X").status == TaskStatus.LOCKED

        chain.blocked_by_risk_ids.discard("R")
        result = resolve_dependencies(chain)
        assert result.unlocked_task_ids == ["T-X"]

    def test_task_blocked_by_risk_stays_held(self, make_task, now):
        """block_task 带风险 R：依赖满足后 resolve_dependencies 仍不释放引用 R 的任务"""
        roadmap = ExecutorRoadmap.generate(
            "case-held",
            [
                make_task("Y"),
                make_task("X", depends_on=("Y",)),
                make_task("W", depends_on=("Y",)),
            ],
            now=now,
        )
        roadmap.block_task("T-X", "alice", "继承人异议", "R", now=now)
        roadmap.link_risk("R", ["T-W"], actor="alice", now=now)
        assert roadmap.blocked_by_risk_ids == {"R"}

        roadmap.start_task("T-Y", "alice", now=now)
        roadmap.complete_task("T-Y", "alice", now=now)

        result = resolve_dependencies(roadmap)
        assert result.unlocked_task_ids == []
        assert roadmap.get_task("T-X").status == TaskStatus.BLOCKED
        assert roadmap.get_task("T-W").status == TaskStatus.LOCKED
        assert "R" in roadmap.get_task("T-W").related_risk_ids

        roadmap.unlink_risk("R", actor="alice", now=now)
        assert roadmap.get_task("T-X").status == TaskStatus.PENDING
        assert roadmap.get_task("T-W").status == TaskStatus.PENDING

    def test_roadmap_complete_flag(self, chain):
        assert resolve_dependencies(chain).roadmap_complete is False
        for task_id in ("T-Y", "T-X"):
            chain.get_task(task_id).waive("registrar", "豁免")
        assert resolve_dependencies(chain).roadmap_complete is True

    def test_unresolved_dependencies_sorted(self, make_task):
        task = make_task("D", depends_on=("C", "A", "B"))
        assert unresolved_dependencies(task, {"T-B"}) == ["T-A", "T-C"]


class TestCanStartTask:
    def test_pending_with_resolved_dependencies(self, chain):
        assert can_start_task(chain, "T-Y") is True
        assert can_start_task(chain, "T-X") is False

    def test_unknown_task(self, chain):
        assert can_start_task(chain, "T-NOPE") is False

    def test_in_progress_task_cannot_start(self, chain):
        chain.get_task("T-Y").start("alice")
        assert can_start_task(chain, "T-Y") is False

    def test_reopened_dependency_blocks_start(self, chain, now):
        """X 已解锁但 Y 被 reopen，X 的 start 仍需重新满足依赖"""
        chain.start_task("T-Y", "alice", now=now)
        chain.complete_task("T-Y", "alice", now=now)
        chain.reopen_task("T-Y", "alice", now=now)
        assert chain.get_task("T-X").status == TaskStatus.PENDING
        assert can_start_task(chain, "T-X") is False
