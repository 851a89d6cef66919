"""枚举定义 -- Roadmap 与 Task 的状态机、阶段与分类

包含 TaskStatus 状态机、RoadmapPhase 阶段顺序、TaskCategory -> RoadmapPhase 映射表，
以及 VALID_TRANSITIONS 合法流转映射和 RESOLVED_STATES 已解决状态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    LOCKED = "LOCKED"
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"

    # 已解决（依赖计算视为完成）
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    WAIVED = "WAIVED"


# 合法状态流转
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.LOCKED: {TaskStatus.PENDING, TaskStatus.BLOCKED, TaskStatus.WAIVED},
    TaskStatus.PENDING: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.SKIPPED,
        TaskStatus.BLOCKED,
        TaskStatus.WAIVED,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.COMPLETED,
        TaskStatus.SKIPPED,
        TaskStatus.BLOCKED,
        TaskStatus.WAIVED,
    },
    TaskStatus.BLOCKED: {TaskStatus.PENDING, TaskStatus.WAIVED},
    # reopen 用于纠正错误完成
    TaskStatus.COMPLETED: {TaskStatus.PENDING},
    TaskStatus.SKIPPED: {TaskStatus.PENDING},
    TaskStatus.WAIVED: set(),
}

RESOLVED_STATES: frozenset[TaskStatus] = frozenset(
    {
        TaskStatus.COMPLETED,
        TaskStatus.SKIPPED,
        TaskStatus.WAIVED,
    }
)


class TaskPriority(StrEnum):
    """任务优先级"""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


PRIORITY_SCORES: dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 100,
    TaskPriority.HIGH: 75,
    TaskPriority.MEDIUM: 50,
    TaskPriority.LOW: 25,
}

# optimize 时为无截止日期的 PENDING 任务分配的天数
PRIORITY_DUE_DAYS: dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 3,
    TaskPriority.HIGH: 7,
    TaskPriority.MEDIUM: 14,
    TaskPriority.LOW: 30,
}


class ProofType(StrEnum):
    """完成凭证类型"""

    DOCUMENT_UPLOAD = "DOCUMENT_UPLOAD"
    DIGITAL_SIGNATURE = "DIGITAL_SIGNATURE"
    SMS_VERIFICATION = "SMS_VERIFICATION"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    COURT_RECEIPT = "COURT_RECEIPT"
    BANK_SLIP = "BANK_SLIP"
    WITNESS_SIGNATURE = "WITNESS_SIGNATURE"
    AFFIDAVIT = "AFFIDAVIT"


class RoadmapPhase(StrEnum):
    """Roadmap 阶段 -- 严格线性，不可跳过，不可回退"""

    PRE_FILING = "PRE_FILING"
    FILING = "FILING"
    CONFIRMATION = "CONFIRMATION"
    DISTRIBUTION = "DISTRIBUTION"
    CLOSURE = "CLOSURE"


PHASE_ORDER: tuple[RoadmapPhase, ...] = (
    RoadmapPhase.PRE_FILING,
    RoadmapPhase.FILING,
    RoadmapPhase.CONFIRMATION,
    RoadmapPhase.DISTRIBUTION,
    RoadmapPhase.CLOSURE,
)

FINAL_PHASE: RoadmapPhase = PHASE_ORDER[-1]


class RoadmapStatus(StrEnum):
    """Roadmap 粗粒度状态（独立于阶段）"""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    BLOCKED = "BLOCKED"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"
    ESCALATED = "ESCALATED"


class RoadmapHealth(StrEnum):
    """Roadmap 健康状态（由阻塞、逾期、停滞天数推导）"""

    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class TaskCategory(StrEnum):
    """任务分类 -- 阶段由分类经 CATEGORY_PHASE_MAP 推导"""

    # 申请前
    IDENTITY_VERIFICATION = "IDENTITY_VERIFICATION"
    FAMILY_STRUCTURE = "FAMILY_STRUCTURE"
    GUARDIANSHIP = "GUARDIANSHIP"
    ASSET_DISCOVERY = "ASSET_DISCOVERY"
    DEBT_SETTLEMENT = "DEBT_SETTLEMENT"
    DOCUMENT_COLLECTION = "DOCUMENT_COLLECTION"
    DOCUMENT_VALIDATION = "DOCUMENT_VALIDATION"
    CUSTOMARY_DOCUMENTS = "CUSTOMARY_DOCUMENTS"
    WILL_SPECIFIC = "WILL_SPECIFIC"
    ISLAMIC_SPECIFIC = "ISLAMIC_SPECIFIC"
    POLYGAMOUS_SPECIFIC = "POLYGAMOUS_SPECIFIC"
    MINOR_SPECIFIC = "MINOR_SPECIFIC"

    # 申请
    FORM_GENERATION = "FORM_GENERATION"
    FORM_REVIEW = "FORM_REVIEW"
    SIGNATURE_COLLECTION = "SIGNATURE_COLLECTION"
    COURT_SELECTION = "COURT_SELECTION"
    FEE_PAYMENT = "FEE_PAYMENT"
    LODGEMENT = "LODGEMENT"
    GAZETTE_PUBLICATION = "GAZETTE_PUBLICATION"

    # 确认
    COURT_ATTENDANCE = "COURT_ATTENDANCE"
    GRANT_ISSUANCE = "GRANT_ISSUANCE"
    GRANT_CONFIRMATION = "GRANT_CONFIRMATION"
    DISPUTE_RESOLUTION = "DISPUTE_RESOLUTION"

    # 分配
    ASSET_TRANSFER = "ASSET_TRANSFER"
    DEBT_PAYMENT = "DEBT_PAYMENT"
    TAX_CLEARANCE = "TAX_CLEARANCE"

    # 结案
    FINAL_ACCOUNTS = "FINAL_ACCOUNTS"
    BENEFICIARY_NOTIFICATION = "BENEFICIARY_NOTIFICATION"
    ESTATE_CLOSURE = "ESTATE_CLOSURE"


CATEGORY_PHASE_MAP: dict[TaskCategory, RoadmapPhase] = {
    TaskCategory.IDENTITY_VERIFICATION: RoadmapPhase.PRE_FILING,
    TaskCategory.FAMILY_STRUCTURE: RoadmapPhase.PRE_FILING,
    TaskCategory.GUARDIANSHIP: RoadmapPhase.PRE_FILING,
    TaskCategory.ASSET_DISCOVERY: RoadmapPhase.PRE_FILING,
    TaskCategory.DEBT_SETTLEMENT: RoadmapPhase.PRE_FILING,
    TaskCategory.DOCUMENT_COLLECTION: RoadmapPhase.PRE_FILING,
    TaskCategory.DOCUMENT_VALIDATION: RoadmapPhase.PRE_FILING,
    TaskCategory.CUSTOMARY_DOCUMENTS: RoadmapPhase.PRE_FILING,
    TaskCategory.WILL_SPECIFIC: RoadmapPhase.PRE_FILING,
    TaskCategory.ISLAMIC_SPECIFIC: RoadmapPhase.PRE_FILING,
    TaskCategory.POLYGAMOUS_SPECIFIC: RoadmapPhase.PRE_FILING,
    TaskCategory.MINOR_SPECIFIC: RoadmapPhase.PRE_FILING,
    TaskCategory.FORM_GENERATION: RoadmapPhase.FILING,
    TaskCategory.FORM_REVIEW: RoadmapPhase.FILING,
    TaskCategory.SIGNATURE_COLLECTION: RoadmapPhase.FILING,
    TaskCategory.COURT_SELECTION: RoadmapPhase.FILING,
    TaskCategory.FEE_PAYMENT: RoadmapPhase.FILING,
    TaskCategory.LODGEMENT: RoadmapPhase.FILING,
    TaskCategory.GAZETTE_PUBLICATION: RoadmapPhase.FILING,
    TaskCategory.COURT_ATTENDANCE: RoadmapPhase.CONFIRMATION,
    TaskCategory.GRANT_ISSUANCE: RoadmapPhase.CONFIRMATION,
    TaskCategory.GRANT_CONFIRMATION: RoadmapPhase.CONFIRMATION,
    TaskCategory.DISPUTE_RESOLUTION: RoadmapPhase.CONFIRMATION,
    TaskCategory.ASSET_TRANSFER: RoadmapPhase.DISTRIBUTION,
    TaskCategory.DEBT_PAYMENT: RoadmapPhase.DISTRIBUTION,
    TaskCategory.TAX_CLEARANCE: RoadmapPhase.DISTRIBUTION,
    TaskCategory.FINAL_ACCOUNTS: RoadmapPhase.CLOSURE,
    TaskCategory.BENEFICIARY_NOTIFICATION: RoadmapPhase.CLOSURE,
    TaskCategory.ESTATE_CLOSURE: RoadmapPhase.CLOSURE,
}


class EventType(StrEnum):
    """Roadmap 领域事件类型"""

    ROADMAP_CREATED = "ROADMAP_CREATED"
    TASK_ADDED = "TASK_ADDED"
    TASK_STARTED = "TASK_STARTED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_SKIPPED = "TASK_SKIPPED"
    TASK_WAIVED = "TASK_WAIVED"
    TASK_REOPENED = "TASK_REOPENED"
    TASK_UNLOCKED = "TASK_UNLOCKED"
    TASK_BLOCKED = "TASK_BLOCKED"
    TASK_UNBLOCKED = "TASK_UNBLOCKED"
    TASK_OVERDUE = "TASK_OVERDUE"
    TASK_PRIORITY_CHANGED = "TASK_PRIORITY_CHANGED"
    RISK_LINKED = "RISK_LINKED"
    RISK_RESOLVED = "RISK_RESOLVED"
    PHASE_TRANSITIONED = "PHASE_TRANSITIONED"
    ALL_PHASE_TASKS_COMPLETED = "ALL_PHASE_TASKS_COMPLETED"
    CRITICAL_PATH_IDENTIFIED = "CRITICAL_PATH_IDENTIFIED"
    ROADMAP_OPTIMIZED = "ROADMAP_OPTIMIZED"
    ROADMAP_STATUS_CHANGED = "ROADMAP_STATUS_CHANGED"
    ROADMAP_COMPLETED = "ROADMAP_COMPLETED"


class ActorType(StrEnum):
    """操作者类型"""

    USER = "user"
    SYSTEM = "system"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed


def phase_for_category(category: TaskCategory) -> RoadmapPhase:
    """分类 -> 阶段（固定映射表）"""
    return CATEGORY_PHASE_MAP[category]


def phase_index(phase: RoadmapPhase) -> int:
    """阶段在 PHASE_ORDER 中的位置"""
    return PHASE_ORDER.index(phase)
