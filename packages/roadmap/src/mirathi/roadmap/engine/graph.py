"""任务依赖图 -- 按 ID 索引的任务集合 + 依赖/被依赖邻接集合

边方向：dependency -> dependent（被依赖者指向依赖者）。
引用了不存在任务的依赖不进入邻接集合，只在 dangling_dependencies() 中报告。
"""

from collections import deque
from collections.abc import Iterable

from ..exceptions import CyclicDependencyError, DanglingDependencyError
from ..models.enums import phase_index
from ..models.task import RoadmapTask


class TaskGraph:
    """任务依赖图"""

    def __init__(self, tasks: Iterable[RoadmapTask]) -> None:
        self.tasks: dict[str, RoadmapTask] = {t.task_id: t for t in tasks}
        self.dependencies: dict[str, set[str]] = {}
        self.dependents: dict[str, set[str]] = {tid: set() for tid in self.tasks}
        self._dangling: dict[str, list[str]] = {}

        for task_id, task in self.tasks.items():
            known = {d for d in task.depends_on if d in self.tasks}
            missing = sorted(task.depends_on - known)
            if missing:
                self._dangling[task_id] = missing
            self.dependencies[task_id] = known
            for dep in known:
                self.dependents[dep].add(task_id)

    def __len__(self) -> int:
        return len(self.tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.tasks

    def dangling_dependencies(self) -> dict[str, list[str]]:
        """task_id -> 引用的不存在任务 ID 列表"""
        return dict(self._dangling)

    def roots(self) -> list[str]:
        return [tid for tid, deps in self.dependencies.items() if not deps]

    def leaves(self) -> list[str]:
        return [tid for tid, deps in self.dependents.items() if not deps]

    def topological_order(self) -> list[str] | None:
        """Kahn 算法拓扑排序

        同层按 (phase, order_index, task_id) 排序，保证输出稳定。

        Returns:
            拓扑序列；存在环时返回 None
        """
        in_degree = {tid: len(deps) for tid, deps in self.dependencies.items()}
        ready = deque(sorted((tid for tid, d in in_degree.items() if d == 0), key=self._sort_key))
        order: list[str] = []

        while ready:
            tid = ready.popleft()
            order.append(tid)
            released = []
            for dependent in self.dependents[tid]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    released.append(dependent)
            ready.extend(sorted(released, key=self._sort_key))

        if len(order) != len(self.tasks):
            return None
        return order

    def find_cycle(self) -> list[str] | None:
        """查找一个依赖环

        Returns:
            环上的任务 ID 序列（首尾相同），无环时返回 None
        """
        white, grey, black = 0, 1, 2
        color = dict.fromkeys(self.tasks, white)

        for start in sorted(self.tasks):
            if color[start] != white:
                continue
            # 迭代 DFS，栈元素为 (节点, 剩余依赖迭代器)
            path: list[str] = [start]
            stack = [(start, iter(sorted(self.dependencies[start])))]
            color[start] = grey
            while stack:
                node, it = stack[-1]
                nxt = next(it, None)
                if nxt is None:
                    color[node] = black
                    stack.pop()
                    path.pop()
                    continue
                if color[nxt] == grey:
                    idx = path.index(nxt)
                    return path[idx:] + [nxt]
                if color[nxt] == white:
                    color[nxt] = grey
                    path.append(nxt)
                    stack.append((nxt, iter(sorted(self.dependencies[nxt]))))
        return None

    def _sort_key(self, task_id: str) -> tuple[int, int, str]:
        task = self.tasks[task_id]
        return (phase_index(task.phase), task.order_index, task_id)


def validate_task_graph(tasks: Iterable[RoadmapTask]) -> TaskGraph:
    """构图时校验：无悬空依赖、无环

    Raises:
        DanglingDependencyError: 依赖引用了集合中不存在的任务
        CyclicDependencyError: 依赖图存在环
    """
    graph = TaskGraph(tasks)
    dangling = graph.dangling_dependencies()
    if dangling:
        task_id = sorted(dangling)[0]
        raise DanglingDependencyError(task_id, dangling[task_id])
    cycle = graph.find_cycle()
    if cycle is not None:
        raise CyclicDependencyError(cycle)
    return graph
