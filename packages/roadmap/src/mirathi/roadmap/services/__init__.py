"""Roadmap 应用服务层 -- 命令处理与事件广播"""

from ..config import RoadmapConfig, load_roadmap_config
from ..store import StoreGroup
from ..store.protocols import ProofValidator
from .event_hub import RoadmapEventHub
from .roadmap_service import RoadmapService


def create_roadmap_service(
    store_group: StoreGroup,
    config: RoadmapConfig | None = None,
    proof_validator: ProofValidator | None = None,
) -> tuple[RoadmapService, RoadmapEventHub]:
    """按配置组装 RoadmapService 与其事件广播器

    Returns:
        (service, hub)，hub 的订阅队列容量取自 config.event_queue_size
    """
    config = config or load_roadmap_config()
    hub = RoadmapEventHub.from_config(config)
    service = RoadmapService(
        store_group,
        config=config,
        proof_validator=proof_validator,
        publisher=hub,
    )
    return service, hub


__all__ = [
    "RoadmapEventHub",
    "RoadmapService",
    "create_roadmap_service",
]
