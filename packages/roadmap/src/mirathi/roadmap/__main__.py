"""CLI 入口模块 -- python -m mirathi.roadmap <command>

支持的命令：
  sweep-overdue               标记所有活跃 roadmap 中的逾期任务
  critical-path <roadmap_id>  打印 roadmap 的关键路径与调度窗口
"""

import asyncio
import sys

from .config import get_db_path, load_roadmap_config
from .logging_config import setup_logging

_USAGE = [
    "用法: python -m mirathi.roadmap <command>",
    "命令:",
    "  sweep-overdue               标记所有活跃 roadmap 中的逾期任务",
    "  critical-path <roadmap_id>  打印关键路径",
]


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        for line in _USAGE:
            print(line)
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]

    if command == "sweep-overdue":
        asyncio.run(sweep_overdue())
    elif command == "critical-path":
        if len(sys.argv) < 3:
            print("用法: python -m mirathi.roadmap critical-path <roadmap_id>")
            sys.exit(1)
        if not asyncio.run(print_critical_path(sys.argv[2])):
            sys.exit(1)
    else:
        print(f"未知命令: {command}")
        print("可用命令: sweep-overdue, critical-path")
        sys.exit(1)


async def sweep_overdue() -> None:
    """执行逾期扫描"""
    from .services import create_roadmap_service
    from .store import open_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    async with open_store_group(db_path) as store_group:
        service, _ = create_roadmap_service(store_group, config=load_roadmap_config())
        marked = await service.sweep_overdue()

    total = sum(len(ids) for ids in marked.values())
    print(f"扫描完成，{len(marked)} 个 roadmap 新增 {total} 个逾期任务")


async def print_critical_path(roadmap_id: str) -> bool:
    """打印关键路径与每个任务的调度窗口

    Returns:
        False 如果 roadmap 不存在
    """
    from .exceptions import RoadmapNotFoundError
    from .services import create_roadmap_service
    from .store import open_store_group

    async with open_store_group(get_db_path()) as store_group:
        service, _ = create_roadmap_service(store_group, config=load_roadmap_config())
        try:
            roadmap = await service.get_roadmap(roadmap_id)
        except RoadmapNotFoundError as e:
            print(e.message)
            return False

    result = roadmap.critical_path()
    print(f"Roadmap {roadmap_id} 预计工期: {result.project_duration_days} 天")
    print(f"{'task':<28}{'ES':>5}{'EF':>5}{'LS':>5}{'LF':>5}{'float':>7}  title")
    for task in sorted(
        roadmap.tasks,
        key=lambda t: (result.schedule[t.task_id].early_start, t.order_index),
    ):
        entry = result.schedule[task.task_id]
        marker = "*" if entry.is_critical else " "
        print(
            f"{marker}{task.short_code:<27}{entry.early_start:>5}{entry.early_finish:>5}"
            f"{entry.late_start:>5}{entry.late_finish:>5}{entry.float_days:>7}  {task.title}"
        )
    return True


if __name__ == "__main__":
    main()
