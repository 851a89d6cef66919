"""RoadmapEvent 领域事件

事件表 append-only，不允许更新或删除。
event_id 使用 ULID 格式，时间有序。
seq 同一 roadmap 内严格单调递增，由持久化事务分配。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ActorType, EventType


class RoadmapEvent(BaseModel):
    """Roadmap 事件

    聚合在状态变化时生成（seq=0），写入事件表时才分配正式 seq。
    """

    event_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    roadmap_id: str = Field(description="关联的 Roadmap ID")
    seq: int = Field(default=0, description="roadmap 内序号，严格单调递增")
    ts: datetime = Field(description="事件时间戳")
    type: EventType = Field(description="事件类型")
    actor: ActorType = Field(default=ActorType.SYSTEM, description="操作者类型")
    actor_id: str = Field(default="", description="操作者标识")
    task_id: str | None = Field(default=None, description="关联的任务 ID")
    payload: dict[str, Any] = Field(default_factory=dict, description="结构化 payload")
