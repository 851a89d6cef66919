"""Store 与外部协作方 Protocol 接口定义

定义 RoadmapRepository、RoadmapEventStore、ProofValidator、EventPublisher 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Protocol

from ..models.enums import ProofType, RoadmapPhase
from ..models.event import RoadmapEvent
from ..models.roadmap import ExecutorRoadmap


class RoadmapRepository(Protocol):
    """Roadmap 持久化接口

    save 必须原子地写入 roadmap 及其完整任务集合。
    """

    async def save(self, roadmap: ExecutorRoadmap) -> int:
        """保存 roadmap，返回写入后的版本号"""
        ...

    async def find_by_id(self, roadmap_id: str) -> ExecutorRoadmap | None:
        ...

    async def find_by_case_id(self, case_id: str) -> ExecutorRoadmap | None:
        ...

    async def exists_by_case_id(self, case_id: str) -> bool:
        ...

    async def list_by_phase(self, phase: RoadmapPhase) -> list[ExecutorRoadmap]:
        ...

    async def list_active(self) -> list[ExecutorRoadmap]:
        ...

    async def find_with_overdue_tasks(self) -> list[ExecutorRoadmap]:
        ...


class RoadmapEventStore(Protocol):
    """Roadmap 事件存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append(self, event: RoadmapEvent) -> None:
        """追加事件（append-only）"""
        ...

    async def get_next_seq(self, roadmap_id: str) -> int:
        """获取指定 roadmap 的下一个 seq（MAX+1）"""
        ...

    async def get_events_for_roadmap(self, roadmap_id: str) -> list[RoadmapEvent]:
        ...

    async def get_events_after(self, roadmap_id: str, after_seq: int) -> list[RoadmapEvent]:
        ...


class ProofValidator(Protocol):
    """凭证校验器（文件核验、缴费核验等由外部实现）

    Returns:
        None 表示通过，否则为拒绝原因
    """

    async def validate(self, proof_type: ProofType, reference: str) -> str | None:
        ...


class EventPublisher(Protocol):
    """事件发布接口（事务提交后调用）"""

    async def publish(self, roadmap_id: str, event: RoadmapEvent) -> None:
        ...
