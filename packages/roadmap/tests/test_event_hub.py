"""RoadmapEventHub 单元测试

测试内容：
1. 订阅者按 roadmap 隔离
2. 取消订阅
3. 队列满的订阅者被移除
4. 按配置组装服务与广播器
"""

from datetime import UTC, datetime

from mirathi.roadmap.config import RoadmapConfig
from mirathi.roadmap.models import EventType, RoadmapEvent
from mirathi.roadmap.services import RoadmapEventHub, create_roadmap_service


def _event(roadmap_id: str, seq: int) -> RoadmapEvent:
    return RoadmapEvent(
        event_id=f"evt-{roadmap_id}-{seq}",
        roadmap_id=roadmap_id,
        seq=seq,
        ts=datetime.now(UTC),
        type=EventType.TASK_STARTED,
    )


class TestRoadmapEventHub:
    async def test_publish_to_subscribers_of_roadmap(self):
        hub = RoadmapEventHub()
        q1 = await hub.subscribe("rm-1")
        q2 = await hub.subscribe("rm-1")
        other = await hub.subscribe("rm-2")

        await hub.publish("rm-1", _event("rm-1", 1))

        assert q1.get_nowait().seq == 1
        assert q2.get_nowait().seq == 1
        assert other.empty()
        assert hub.subscriber_count("rm-1") == 2

    async def test_unsubscribe(self):
        hub = RoadmapEventHub()
        queue = await hub.subscribe("rm-1")
        await hub.unsubscribe("rm-1", queue)

        assert hub.subscriber_count("rm-1") == 0
        await hub.publish("rm-1", _event("rm-1", 1))
        assert queue.empty()

    async def test_full_queue_is_dropped(self):
        hub = RoadmapEventHub(queue_maxsize=1)
        slow = await hub.subscribe("rm-1")

        await hub.publish("rm-1", _event("rm-1", 1))
        await hub.publish("rm-1", _event("rm-1", 2))

        assert hub.subscriber_count("rm-1") == 0
        assert slow.qsize() == 1
        assert slow.get_nowait().seq == 1

    async def test_publish_without_subscribers(self):
        hub = RoadmapEventHub()
        await hub.publish("rm-1", _event("rm-1", 1))
        assert hub.subscriber_count("rm-1") == 0

    async def test_tracks_last_published_seq(self):
        hub = RoadmapEventHub()
        assert hub.last_published_seq("rm-1") == 0

        await hub.publish("rm-1", _event("rm-1", 3))
        await hub.publish("rm-1", _event("rm-1", 4))
        assert hub.last_published_seq("rm-1") == 4
        assert hub.last_published_seq("rm-2") == 0


class TestCreateRoadmapService:
    async def test_queue_size_comes_from_environment(self, monkeypatch, store_group, make_task):
        """MIRATHI_EVENT_QUEUE_SIZE 决定订阅队列容量，服务提交的事件经 hub 广播"""
        monkeypatch.setenv("MIRATHI_EVENT_QUEUE_SIZE", "7")
        service, hub = create_roadmap_service(store_group)

        queue = await hub.subscribe("placeholder")
        assert queue.maxsize == 7
        await hub.unsubscribe("placeholder", queue)

        roadmap = await service.generate_roadmap("case-hub", [make_task("A")])
        assert hub.last_published_seq(roadmap.roadmap_id) == 1

    async def test_explicit_config(self, store_group):
        _, hub = create_roadmap_service(store_group, config=RoadmapConfig(event_queue_size=2))
        queue = await hub.subscribe("rm-1")
        assert queue.maxsize == 2

    def test_from_config(self):
        hub = RoadmapEventHub.from_config(RoadmapConfig(event_queue_size=5))
        assert hub._queue_maxsize == 5
