"""RoadmapService -- Roadmap 命令处理与查询

每个命令的固定流程：
1. （可选）在锁外调用外部协作方，例如凭证校验
2. 获取 roadmap 级别锁，加载聚合
3. 在聚合上同步执行命令（流转 -> 依赖解析 -> 进度重算 -> 分析刷新）
4. 开启自动推进时尝试推进阶段
5. 单事务写入 roadmap、任务集合与事件
6. 提交成功后发布事件

版本冲突时重新加载并重放命令，超过重试次数后抛出 ConcurrencyConflictError。
"""

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TypeVar

import structlog

from ..config import RoadmapConfig, load_roadmap_config
from ..engine.critical_path import CriticalPathResult
from ..exceptions import (
    ConcurrencyConflictError,
    ProofRejectedError,
    RoadmapAlreadyExistsError,
    RoadmapNotFoundError,
)
from ..models.enums import RoadmapPhase, RoadmapStatus, TaskPriority
from ..models.event import RoadmapEvent
from ..models.roadmap import SYSTEM_ACTOR, ExecutorRoadmap
from ..models.task import ProofReference, RoadmapTask
from ..store import StoreGroup
from ..store.protocols import EventPublisher, ProofValidator
from ..store.transaction import save_roadmap_with_events

log = structlog.get_logger()

T = TypeVar("T")


class RoadmapService:
    """Roadmap 业务服务"""

    _max_conflict_retries = 3

    def __init__(
        self,
        store_group: StoreGroup,
        config: RoadmapConfig | None = None,
        proof_validator: ProofValidator | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._stores = store_group
        self._config = config or load_roadmap_config()
        self._proof_validator = proof_validator
        self._publisher = publisher
        self._roadmap_locks: dict[str, asyncio.Lock] = {}
        self._roadmap_lock_users: dict[str, int] = {}
        self._roadmap_locks_guard = asyncio.Lock()

    # ==================== 生成 ====================

    async def generate_roadmap(
        self,
        case_id: str,
        tasks: Iterable[RoadmapTask],
        actor: str = SYSTEM_ACTOR,
    ) -> ExecutorRoadmap:
        """为案件生成 roadmap（每个案件仅一个）

        Raises:
            RoadmapAlreadyExistsError: 案件已有 roadmap
        """
        async with self._roadmap_lock(f"case:{case_id}"):
            if await self._stores.roadmap_store.exists_by_case_id(case_id):
                raise RoadmapAlreadyExistsError(case_id)

            roadmap = ExecutorRoadmap.generate(
                case_id,
                tasks,
                actor=actor,
                pre_filing_threshold=self._config.pre_filing_threshold,
                auto_transition=self._config.auto_transition,
            )
            stored = await save_roadmap_with_events(
                self._stores.conn,
                self._stores.roadmap_store,
                self._stores.event_store,
                roadmap,
                roadmap.pull_events(),
            )

        await self._publish(roadmap.roadmap_id, stored)
        return roadmap

    # ==================== 任务命令 ====================

    async def start_task(self, roadmap_id: str, task_id: str, actor: str) -> ExecutorRoadmap:
        return await self._execute(roadmap_id, lambda r: r.start_task(task_id, actor))

    async def complete_task(
        self,
        roadmap_id: str,
        task_id: str,
        actor: str,
        notes: str | None = None,
        proof: ProofReference | None = None,
    ) -> ExecutorRoadmap:
        """完成任务

        提供凭证时先交给 ProofValidator 校验（锁外 I/O），被拒绝则抛出 ProofRejectedError。
        """
        if proof is not None:
            await self._validate_proof(task_id, proof)
        return await self._execute(
            roadmap_id,
            lambda r: r.complete_task(task_id, actor, notes=notes, proof=proof),
            auto_advance=True,
        )

    async def skip_task(
        self,
        roadmap_id: str,
        task_id: str,
        actor: str,
        reason: str,
    ) -> ExecutorRoadmap:
        return await self._execute(
            roadmap_id,
            lambda r: r.skip_task(task_id, actor, reason),
            auto_advance=True,
        )

    async def waive_task(
        self,
        roadmap_id: str,
        task_id: str,
        actor: str,
        reason: str,
    ) -> ExecutorRoadmap:
        return await self._execute(
            roadmap_id,
            lambda r: r.waive_task(task_id, actor, reason),
            auto_advance=True,
        )

    async def reopen_task(
        self,
        roadmap_id: str,
        task_id: str,
        actor: str,
        reason: str = "",
    ) -> ExecutorRoadmap:
        return await self._execute(roadmap_id, lambda r: r.reopen_task(task_id, actor, reason))

    async def block_task(
        self,
        roadmap_id: str,
        task_id: str,
        actor: str,
        reason: str,
        risk_id: str | None = None,
    ) -> ExecutorRoadmap:
        return await self._execute(
            roadmap_id,
            lambda r: r.block_task(task_id, actor, reason, risk_id),
        )

    async def unblock_task(self, roadmap_id: str, task_id: str, actor: str) -> ExecutorRoadmap:
        return await self._execute(roadmap_id, lambda r: r.unblock_task(task_id, actor))

    async def add_tasks(
        self,
        roadmap_id: str,
        tasks: Iterable[RoadmapTask],
        actor: str = SYSTEM_ACTOR,
    ) -> ExecutorRoadmap:
        task_list = list(tasks)
        return await self._execute(
            roadmap_id,
            lambda r: r.add_tasks([t.model_copy(deep=True) for t in task_list], actor=actor),
        )

    async def update_task_priority(
        self,
        roadmap_id: str,
        task_id: str,
        priority: TaskPriority,
        actor: str,
    ) -> ExecutorRoadmap:
        return await self._execute(
            roadmap_id,
            lambda r: r.update_task_priority(task_id, priority, actor),
        )

    # ==================== 风险 ====================

    async def link_risk(
        self,
        roadmap_id: str,
        risk_id: str,
        task_ids: Iterable[str],
        actor: str = SYSTEM_ACTOR,
        reason: str = "",
    ) -> ExecutorRoadmap:
        ids = list(task_ids)
        return await self._execute(
            roadmap_id,
            lambda r: r.link_risk(risk_id, ids, actor=actor, reason=reason),
        )

    async def unlink_risk(
        self,
        roadmap_id: str,
        risk_id: str,
        actor: str = SYSTEM_ACTOR,
    ) -> ExecutorRoadmap:
        return await self._execute(
            roadmap_id,
            lambda r: r.unlink_risk(risk_id, actor=actor),
            auto_advance=True,
        )

    # ==================== 阶段与状态 ====================

    async def advance_phase(self, roadmap_id: str, actor: str = SYSTEM_ACTOR) -> ExecutorRoadmap:
        return await self._execute(roadmap_id, lambda r: r.advance_phase(actor))

    async def force_phase_transition(
        self,
        roadmap_id: str,
        target: RoadmapPhase,
        actor: str,
        reason: str = "",
    ) -> ExecutorRoadmap:
        return await self._execute(
            roadmap_id,
            lambda r: r.force_phase_transition(target, actor, reason),
        )

    async def change_status(
        self,
        roadmap_id: str,
        status: RoadmapStatus,
        actor: str,
        reason: str = "",
    ) -> ExecutorRoadmap:
        return await self._execute(roadmap_id, lambda r: r.change_status(status, actor, reason))

    async def optimize(self, roadmap_id: str, actor: str = SYSTEM_ACTOR) -> ExecutorRoadmap:
        return await self._execute(roadmap_id, lambda r: r.optimize(actor))

    async def sweep_overdue(self, now: datetime | None = None) -> dict[str, list[str]]:
        """对所有活跃 roadmap 执行逾期扫描

        Returns:
            roadmap_id -> 新标记为逾期的任务 ID（只包含有变化的 roadmap）
        """
        marked: dict[str, list[str]] = {}
        for roadmap in await self._stores.roadmap_store.list_active():
            result: list[str] = []

            def mark(r: ExecutorRoadmap) -> None:
                result[:] = r.mark_overdue_tasks(now)

            await self._execute(roadmap.roadmap_id, mark)
            if result:
                marked[roadmap.roadmap_id] = result

        log.info(
            "overdue_sweep_finished",
            roadmaps=len(marked),
            tasks=sum(len(v) for v in marked.values()),
        )
        return marked

    # ==================== 查询 ====================

    async def get_roadmap(self, roadmap_id: str) -> ExecutorRoadmap:
        return await self._load(roadmap_id)

    async def get_roadmap_by_case(self, case_id: str) -> ExecutorRoadmap | None:
        return await self._stores.roadmap_store.find_by_case_id(case_id)

    async def critical_path(self, roadmap_id: str) -> CriticalPathResult:
        roadmap = await self._load(roadmap_id)
        return roadmap.critical_path()

    async def get_events(self, roadmap_id: str, after_seq: int = 0) -> list[RoadmapEvent]:
        return await self._stores.event_store.get_events_after(roadmap_id, after_seq)

    # ==================== 内部 ====================

    async def _execute(
        self,
        roadmap_id: str,
        command: Callable[[ExecutorRoadmap], T],
        auto_advance: bool = False,
    ) -> ExecutorRoadmap:
        """加载 -> 执行 -> 保存 -> 发布

        命令未产生任何事件时视为无变化，不写库。
        领域异常直接向上抛出，此时不会有任何持久化。
        """
        async with self._roadmap_lock(roadmap_id):
            for attempt in range(1, self._max_conflict_retries + 1):
                roadmap = await self._load(roadmap_id)
                command(roadmap)
                if auto_advance:
                    roadmap.try_auto_advance()

                events = roadmap.pull_events()
                if not events:
                    return roadmap
                try:
                    stored = await save_roadmap_with_events(
                        self._stores.conn,
                        self._stores.roadmap_store,
                        self._stores.event_store,
                        roadmap,
                        events,
                    )
                    break
                except ConcurrencyConflictError:
                    if attempt < self._max_conflict_retries:
                        log.warning(
                            "roadmap_version_conflict_retry",
                            roadmap_id=roadmap_id,
                            attempt=attempt,
                        )
                        continue
                    raise

        await self._publish(roadmap_id, stored)
        return roadmap

    async def _load(self, roadmap_id: str) -> ExecutorRoadmap:
        roadmap = await self._stores.roadmap_store.find_by_id(roadmap_id)
        if roadmap is None:
            raise RoadmapNotFoundError(roadmap_id)
        return roadmap

    async def _validate_proof(self, task_id: str, proof: ProofReference) -> None:
        if self._proof_validator is None:
            return
        reason = await self._proof_validator.validate(proof.proof_type, proof.reference)
        if reason is not None:
            log.info(
                "proof_rejected",
                task_id=task_id,
                proof_type=proof.proof_type,
                reason=reason,
            )
            raise ProofRejectedError(task_id, proof.proof_type.value, reason)

    async def _publish(self, roadmap_id: str, events: list[RoadmapEvent]) -> None:
        if self._publisher is None:
            return
        for event in events:
            await self._publisher.publish(roadmap_id, event)

    @asynccontextmanager
    async def _roadmap_lock(self, key: str) -> AsyncIterator[None]:
        """持有 roadmap 级别锁，序列化同一 roadmap（或同一案件生成）的命令"""
        lock = await self._get_roadmap_lock(key)
        try:
            async with lock:
                yield
        finally:
            await self._cleanup_roadmap_lock(key)

    async def _get_roadmap_lock(self, key: str) -> asyncio.Lock:
        async with self._roadmap_locks_guard:
            lock = self._roadmap_locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._roadmap_locks[key] = lock
            self._roadmap_lock_users[key] = self._roadmap_lock_users.get(key, 0) + 1
            return lock

    async def _cleanup_roadmap_lock(self, key: str) -> None:
        """最后一个使用者退出后移除 lock，避免字典无限增长。"""
        async with self._roadmap_locks_guard:
            users = self._roadmap_lock_users.get(key, 0) - 1
            if users > 0:
                self._roadmap_lock_users[key] = users
                return
            self._roadmap_lock_users.pop(key, None)
            self._roadmap_locks.pop(key, None)
