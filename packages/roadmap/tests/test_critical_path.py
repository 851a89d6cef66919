"""关键路径引擎单元测试

测试内容：
1. 正向/反向遍历的调度窗口与浮动时间
2. 关键路径为最长链
3. 空集合、悬空依赖、环
4. 并行机会
"""

import pytest
from mirathi.roadmap.engine import CriticalPathEngine
from mirathi.roadmap.exceptions import CyclicDependencyError
from mirathi.roadmap.models import RoadmapTask, TaskCategory, TaskStatus


@pytest.fixture
def engine() -> CriticalPathEngine:
    return CriticalPathEngine()


@pytest.fixture
def fork_tasks(make_task) -> list[RoadmapTask]:
    """A(2 天) -> B(3 天)，A -> C(1 天)"""
    return [
        make_task("A", days=2),
        make_task("B", depends_on=("A",), days=3, order_index=1),
        make_task("C", depends_on=("A",), days=1, order_index=2),
    ]


class TestCriticalPathEngine:
    def test_forward_and_backward_pass(self, engine, fork_tasks):
        result = engine.compute(fork_tasks)
        a, b, c = (result.schedule[f"T-{code}"] for code in "ABC")

        assert (a.early_start, a.early_finish) == (0, 2)
        assert (b.early_start, b.early_finish) == (2, 5)
        assert (c.early_start, c.early_finish) == (2, 3)

        assert (b.late_start, b.late_finish) == (2, 5)
        assert (c.late_start, c.late_finish) == (4, 5)
        assert b.float_days == 0
        assert c.float_days == 2

        assert result.project_duration_days == 5
        assert result.critical_task_ids == ["T-A", "T-B"]

    def test_result_helpers(self, engine, fork_tasks):
        result = engine.compute(fork_tasks)
        assert result.is_critical("T-A")
        assert not result.is_critical("T-C")
        assert result.float_of("T-C") == 2
        assert result.float_of("T-UNKNOWN") is None
        assert not result.is_critical("T-UNKNOWN")

    def test_empty_input(self, engine):
        result = engine.compute([])
        assert result.schedule == {}
        assert result.critical_task_ids == []
        assert result.project_duration_days == 0

    def test_single_task(self, engine, make_task):
        result = engine.compute([make_task("A", days=4)])
        assert result.project_duration_days == 4
        assert result.critical_task_ids == ["T-A"]

    def test_dangling_dependency_ignored(self, engine, make_task):
        result = engine.compute([make_task("B", depends_on=("GHOST",), days=2)])
        assert result.schedule["T-B"].early_start == 0
        assert result.project_duration_days == 2

    def test_cycle_raises(self, engine, make_task):
        with pytest.raises(CyclicDependencyError):
            engine.compute([make_task("A", depends_on=("B",)), make_task("B", depends_on=("A",))])

    def test_float_never_negative(self, engine, make_task):
        tasks = [
            make_task("A", days=1),
            make_task("B", depends_on=("A",), days=4),
            make_task("C", depends_on=("A",), days=2),
            make_task("D", depends_on=("C",), days=1),
            make_task("E", depends_on=("B", "D"), days=2),
            make_task("F", days=3),
        ]
        result = engine.compute(tasks)
        assert all(entry.float_days >= 0 for entry in result.schedule.values())
        for entry in result.schedule.values():
            assert entry.late_finish - entry.late_start == entry.duration_days
            assert entry.early_finish <= result.project_duration_days

    def test_critical_path_is_longest_chain(self, engine, make_task):
        """A(1) -> B(4) -> E(2) 共 7 天，长于 A -> C(2) -> D(1) -> E"""
        tasks = [
            make_task("A", days=1),
            make_task("B", depends_on=("A",), days=4, order_index=1),
            make_task("C", depends_on=("A",), days=2, order_index=2),
            make_task("D", depends_on=("C",), days=1, order_index=3),
            make_task("E", depends_on=("B", "D"), days=2, order_index=4),
        ]
        result = engine.compute(tasks)
        assert result.project_duration_days == 7
        assert result.critical_task_ids == ["T-A", "T-B", "T-E"]
        assert result.float_of("T-C") == 1
        assert result.float_of("T-D") == 1

    def test_critical_ids_ordered_by_phase(self, engine, make_task):
        tasks = [
            make_task("FORM", category=TaskCategory.FORM_GENERATION, depends_on=("DOC",), days=2),
            make_task("DOC", category=TaskCategory.DOCUMENT_COLLECTION, days=2),
        ]
        result = engine.compute(tasks)
        assert result.critical_task_ids == ["T-DOC", "T-FORM"]

    def test_engine_does_not_mutate_tasks(self, engine, fork_tasks):
        before = [t.model_dump() for t in fork_tasks]
        engine.compute(fork_tasks)
        assert [t.model_dump() for t in fork_tasks] == before


class TestParallelOpportunities:
    def test_pending_tasks_with_float(self, engine, make_task):
        tasks = [
            make_task("A", days=3),
            make_task("B", days=1),
            make_task("C", depends_on=("A",), days=1),
        ]
        assert engine.parallel_opportunities(tasks) == ["T-B"]

    def test_non_pending_tasks_excluded(self, engine, make_task):
        slack = make_task("B", days=1)
        slack.start("alice")
        tasks = [make_task("A", days=3), slack]
        assert slack.status == TaskStatus.IN_PROGRESS
        assert engine.parallel_opportunities(tasks) == []
