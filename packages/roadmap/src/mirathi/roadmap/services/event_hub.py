"""RoadmapEventHub -- 已提交 roadmap 事件的进程内广播

RoadmapService 在事务提交后逐条 publish，事件按 seq 递增到达。
订阅者队列写满时会被摘除，不阻塞命令处理；被摘除的订阅者记下
最后收到的 seq，重新 subscribe 后用 RoadmapService.get_events(roadmap_id, after_seq)
从事件表补齐缺口。
"""

import asyncio
from collections import defaultdict

import structlog

from ..config import RoadmapConfig
from ..models.event import RoadmapEvent

log = structlog.get_logger()


class RoadmapEventHub:
    """按 roadmap_id 分组的发布/订阅，实现 EventPublisher 协议"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        self._queues: dict[str, set[asyncio.Queue[RoadmapEvent]]] = defaultdict(set)
        self._last_seq: dict[str, int] = {}
        self._queue_maxsize = queue_maxsize

    @classmethod
    def from_config(cls, config: RoadmapConfig) -> "RoadmapEventHub":
        return cls(queue_maxsize=config.event_queue_size)

    async def subscribe(self, roadmap_id: str) -> asyncio.Queue[RoadmapEvent]:
        """订阅之后提交的事件；订阅前的事件需从事件表读取"""
        queue: asyncio.Queue[RoadmapEvent] = asyncio.Queue(maxsize=self._queue_maxsize)
        self._queues[roadmap_id].add(queue)
        return queue

    async def unsubscribe(self, roadmap_id: str, queue: asyncio.Queue[RoadmapEvent]) -> None:
        queues = self._queues.get(roadmap_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._queues[roadmap_id]

    def subscriber_count(self, roadmap_id: str) -> int:
        return len(self._queues.get(roadmap_id, ()))

    def last_published_seq(self, roadmap_id: str) -> int:
        """本进程最近广播的 seq，0 表示尚未广播过"""
        return self._last_seq.get(roadmap_id, 0)

    async def publish(self, roadmap_id: str, event: RoadmapEvent) -> None:
        self._last_seq[roadmap_id] = max(self._last_seq.get(roadmap_id, 0), event.seq)
        queues = self._queues.get(roadmap_id)
        if not queues:
            return

        overflowed = []
        for queue in queues:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                overflowed.append(queue)

        if overflowed:
            queues.difference_update(overflowed)
            if not queues:
                del self._queues[roadmap_id]
            log.warning(
                "event_subscriber_dropped",
                roadmap_id=roadmap_id,
                dropped=len(overflowed),
                resume_after_seq=event.seq - 1,
            )
