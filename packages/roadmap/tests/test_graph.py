"""任务依赖图单元测试

测试内容：
1. 邻接集合构建与悬空依赖报告
2. Kahn 拓扑排序的稳定性
3. 环检测
"""

import pytest
from mirathi.roadmap.engine import TaskGraph, validate_task_graph
from mirathi.roadmap.exceptions import CyclicDependencyError, DanglingDependencyError
from mirathi.roadmap.models import TaskCategory


class TestTaskGraph:
    def test_adjacency(self, make_task):
        graph = TaskGraph(
            [
                make_task("A"),
                make_task("B", depends_on=("A",)),
                make_task("C", depends_on=("A",)),
            ]
        )
        assert len(graph) == 3
        assert "T-A" in graph
        assert graph.dependencies["T-B"] == {"T-A"}
        assert graph.dependents["T-A"] == {"T-B", "T-C"}
        assert graph.roots() == ["T-A"]
        assert sorted(graph.leaves()) == ["T-B", "T-C"]

    def test_dangling_dependency_excluded_from_edges(self, make_task):
        graph = TaskGraph([make_task("B", depends_on=("GHOST",))])
        assert graph.dependencies["T-B"] == set()
        assert graph.dangling_dependencies() == {"T-B": ["T-GHOST"]}

    def test_topological_order_respects_edges(self, make_task):
        tasks = [
            make_task("D", depends_on=("B", "C")),
            make_task("C", depends_on=("A",)),
            make_task("B", depends_on=("A",)),
            make_task("A"),
        ]
        order = TaskGraph(tasks).topological_order()
        assert order is not None
        position = {tid: i for i, tid in enumerate(order)}
        for task in tasks:
            for dep in task.depends_on:
                assert position[dep] < position[task.task_id]

    def test_topological_order_is_stable(self, make_task):
        """同层按 (phase, order_index, task_id) 排序"""
        tasks = [
            make_task("Z", category=TaskCategory.FEE_PAYMENT),
            make_task("Y", order_index=2),
            make_task("X", order_index=1),
        ]
        assert TaskGraph(tasks).topological_order() == ["T-X", "T-Y", "T-Z"]

    def test_cycle_returns_none_order(self, make_task):
        graph = TaskGraph(
            [
                make_task("A", depends_on=("C",)),
                make_task("B", depends_on=("A",)),
                make_task("C", depends_on=("B",)),
            ]
        )
        assert graph.topological_order() is None
        cycle = graph.find_cycle()
        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"T-A", "T-B", "T-C"}

    def test_acyclic_graph_has_no_cycle(self, make_task):
        graph = TaskGraph([make_task("A"), make_task("B", depends_on=("A",))])
        assert graph.find_cycle() is None


class TestValidateTaskGraph:
    def test_valid_graph(self, make_task):
        graph = validate_task_graph([make_task("A"), make_task("B", depends_on=("A",))])
        assert len(graph) == 2

    def test_dangling_rejected(self, make_task):
        with pytest.raises(DanglingDependencyError) as exc_info:
            validate_task_graph([make_task("A"), make_task("B", depends_on=("MISSING",))])
        assert exc_info.value.task_id == "T-B"
        assert exc_info.value.missing_ids == ["T-MISSING"]

    def test_cycle_rejected(self, make_task):
        with pytest.raises(CyclicDependencyError) as exc_info:
            validate_task_graph(
                [make_task("A", depends_on=("B",)), make_task("B", depends_on=("A",))]
            )
        assert set(exc_info.value.cycle) == {"T-A", "T-B"}
