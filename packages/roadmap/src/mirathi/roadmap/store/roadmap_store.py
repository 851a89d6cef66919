"""RoadmapStore SQLite 实现

roadmap 与其完整任务集合一起写入：roadmaps 行 + roadmap_tasks 全量重写。
乐观并发：UPDATE ... WHERE version = ?，未命中即视为并发修改。
此处方法不自动提交事务，需由调用方（transaction 模块）管理。
"""

import json

import aiosqlite

from ..exceptions import ConcurrencyConflictError
from ..models.enums import RoadmapPhase, RoadmapStatus
from ..models.roadmap import ExecutorRoadmap

# roadmaps.data 不重复存储任务集合和版本号
_DATA_EXCLUDE = {"tasks", "version"}

_ACTIVE_STATUSES = (RoadmapStatus.ACTIVE.value, RoadmapStatus.BLOCKED.value)


class SqliteRoadmapStore:
    """RoadmapRepository 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def save(self, roadmap: ExecutorRoadmap) -> int:
        """写入 roadmap 及其全部任务

        version == 0 视为新建（INSERT），否则按版本号条件更新。
        不修改传入对象的 version，由调用方在提交成功后更新。

        Returns:
            写入后的版本号

        Raises:
            ConcurrencyConflictError: 版本号不匹配或重复新建
        """
        data = roadmap.model_dump_json(exclude=_DATA_EXCLUDE)
        new_version = roadmap.version + 1

        if roadmap.version == 0:
            try:
                await self._conn.execute(
                    """
                    INSERT INTO roadmaps (roadmap_id, case_id, current_phase, status,
                                          percent_complete, overdue_tasks, version,
                                          created_at, updated_at, data)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        roadmap.roadmap_id,
                        roadmap.case_id,
                        roadmap.current_phase.value,
                        roadmap.status.value,
                        roadmap.percent_complete,
                        roadmap.overdue_tasks,
                        new_version,
                        roadmap.created_at.isoformat(),
                        roadmap.updated_at.isoformat(),
                        data,
                    ),
                )
            except aiosqlite.IntegrityError as e:
                if self._is_roadmap_id_conflict(e):
                    raise ConcurrencyConflictError(roadmap.roadmap_id, roadmap.version) from e
                raise
        else:
            cursor = await self._conn.execute(
                """
                UPDATE roadmaps
                SET current_phase = ?, status = ?, percent_complete = ?,
                    overdue_tasks = ?, version = ?, updated_at = ?, data = ?
                WHERE roadmap_id = ? AND version = ?
                """,
                (
                    roadmap.current_phase.value,
                    roadmap.status.value,
                    roadmap.percent_complete,
                    roadmap.overdue_tasks,
                    new_version,
                    roadmap.updated_at.isoformat(),
                    data,
                    roadmap.roadmap_id,
                    roadmap.version,
                ),
            )
            if cursor.rowcount == 0:
                raise ConcurrencyConflictError(roadmap.roadmap_id, roadmap.version)

        await self._replace_tasks(roadmap)
        return new_version

    async def find_by_id(self, roadmap_id: str) -> ExecutorRoadmap | None:
        cursor = await self._conn.execute(
            "SELECT roadmap_id, version, data FROM roadmaps WHERE roadmap_id = ?",
            (roadmap_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return await self._hydrate(row)

    async def find_by_case_id(self, case_id: str) -> ExecutorRoadmap | None:
        cursor = await self._conn.execute(
            "SELECT roadmap_id, version, data FROM roadmaps WHERE case_id = ?",
            (case_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return await self._hydrate(row)

    async def exists_by_case_id(self, case_id: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM roadmaps WHERE case_id = ? LIMIT 1",
            (case_id,),
        )
        return await cursor.fetchone() is not None

    async def list_by_phase(self, phase: RoadmapPhase) -> list[ExecutorRoadmap]:
        cursor = await self._conn.execute(
            """
            SELECT roadmap_id, version, data FROM roadmaps
            WHERE current_phase = ? ORDER BY created_at ASC
            """,
            (phase.value,),
        )
        return [await self._hydrate(row) for row in await cursor.fetchall()]

    async def list_active(self) -> list[ExecutorRoadmap]:
        """ACTIVE 与 BLOCKED 状态的 roadmap"""
        cursor = await self._conn.execute(
            """
            SELECT roadmap_id, version, data FROM roadmaps
            WHERE status IN (?, ?) ORDER BY created_at ASC
            """,
            _ACTIVE_STATUSES,
        )
        return [await self._hydrate(row) for row in await cursor.fetchall()]

    async def find_with_overdue_tasks(self) -> list[ExecutorRoadmap]:
        cursor = await self._conn.execute(
            """
            SELECT roadmap_id, version, data FROM roadmaps
            WHERE roadmap_id IN (
                SELECT DISTINCT roadmap_id FROM roadmap_tasks WHERE is_overdue = 1
            )
            ORDER BY created_at ASC
            """
        )
        return [await self._hydrate(row) for row in await cursor.fetchall()]

    async def _replace_tasks(self, roadmap: ExecutorRoadmap) -> None:
        await self._conn.execute(
            "DELETE FROM roadmap_tasks WHERE roadmap_id = ?",
            (roadmap.roadmap_id,),
        )
        await self._conn.executemany(
            """
            INSERT INTO roadmap_tasks (task_id, roadmap_id, position, short_code,
                                       phase, status, is_overdue, data)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    task.task_id,
                    roadmap.roadmap_id,
                    position,
                    task.short_code,
                    task.phase.value,
                    task.status.value,
                    int(task.is_overdue),
                    task.model_dump_json(),
                )
                for position, task in enumerate(roadmap.tasks)
            ],
        )

    async def _hydrate(self, row: aiosqlite.Row) -> ExecutorRoadmap:
        """将数据库行及其任务行还原为 ExecutorRoadmap"""
        roadmap_id, version, data = row[0], row[1], row[2]
        cursor = await self._conn.execute(
            "SELECT data FROM roadmap_tasks WHERE roadmap_id = ? ORDER BY position ASC",
            (roadmap_id,),
        )
        task_rows = await cursor.fetchall()

        payload = json.loads(data)
        payload["tasks"] = [json.loads(task_row[0]) for task_row in task_rows]
        payload["version"] = version
        return ExecutorRoadmap.model_validate(payload)

    @staticmethod
    def _is_roadmap_id_conflict(error: Exception) -> bool:
        text = str(error)
        return "roadmaps.roadmap_id" in text
