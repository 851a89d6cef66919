"""Roadmap 异常体系

所有异常都是本地校验失败，同步抛给调用方，引擎内部不重试、不吞掉。
details 携带结构化信息（当前状态、尝试的流转、所需阈值），
展示层无需重新推导即可解释原因。
"""

from typing import Any


class RoadmapError(Exception):
    """Roadmap 包基础异常"""

    code: str = "ROADMAP_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """
        Args:
            message: 错误描述
            details: 结构化上下文
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidTaskTransitionError(RoadmapError):
    """当前状态不允许该操作（例如完成一个 LOCKED 任务）"""

    code = "INVALID_TASK_TRANSITION"

    def __init__(
        self,
        task_id: str,
        from_status: str,
        attempted: str,
        reason: str = "",
    ) -> None:
        message = f"Task {task_id}: cannot {attempted} from {from_status}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            {"task_id": task_id, "from": from_status, "attempted": attempted, "reason": reason},
        )
        self.task_id = task_id
        self.from_status = from_status
        self.attempted = attempted


class TaskNotSkippableError(InvalidTaskTransitionError):
    """非条件性（必需）任务不可跳过"""

    code = "TASK_NOT_SKIPPABLE"

    def __init__(self, task_id: str, from_status: str) -> None:
        super().__init__(task_id, from_status, "skip", reason="task is mandatory")


class ProofRequiredError(RoadmapError):
    """完成任务需要提供允许类型的凭证"""

    code = "PROOF_REQUIRED"

    def __init__(
        self,
        task_id: str,
        allowed_proof_types: list[str],
        supplied: str | None = None,
    ) -> None:
        if supplied is None:
            message = f"Task {task_id} requires proof of completion"
        else:
            message = f"Task {task_id} does not accept proof type {supplied}"
        super().__init__(
            message,
            {
                "task_id": task_id,
                "allowed_proof_types": allowed_proof_types,
                "supplied": supplied,
            },
        )
        self.task_id = task_id


class ProofNotApplicableError(RoadmapError):
    """任务不需要凭证却尝试附加"""

    code = "PROOF_NOT_APPLICABLE"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} does not require proof", {"task_id": task_id})


class ProofRejectedError(RoadmapError):
    """凭证校验器拒绝了提交的凭证"""

    code = "PROOF_REJECTED"

    def __init__(self, task_id: str, proof_type: str, reason: str) -> None:
        super().__init__(
            f"Proof for task {task_id} rejected: {reason}",
            {"task_id": task_id, "proof_type": proof_type, "reason": reason},
        )


class PhaseNotReadyError(RoadmapError):
    """当前阶段完成度低于推进阈值"""

    code = "PHASE_NOT_READY"

    def __init__(self, phase: str, current_percent: int, required_percent: int) -> None:
        super().__init__(
            f"Cannot advance from {phase}: {current_percent}% complete "
            f"(requires {required_percent}%)",
            {
                "phase": phase,
                "current_percent": current_percent,
                "required_percent": required_percent,
            },
        )
        self.phase = phase
        self.current_percent = current_percent
        self.required_percent = required_percent


class CannotAdvancePastFinalPhaseError(RoadmapError):
    code = "CANNOT_ADVANCE_PAST_FINAL_PHASE"

    def __init__(self, phase: str) -> None:
        super().__init__(f"Cannot advance past final phase {phase}", {"phase": phase})


class InvalidPhaseTransitionError(RoadmapError):
    """阶段只能向前"""

    code = "INVALID_PHASE_TRANSITION"

    def __init__(self, from_phase: str, to_phase: str) -> None:
        super().__init__(
            f"Cannot transition backwards from {from_phase} to {to_phase}",
            {"from": from_phase, "to": to_phase},
        )


class DanglingDependencyError(RoadmapError):
    """依赖引用了 roadmap 中不存在的任务，整批拒绝"""

    code = "DANGLING_DEPENDENCY"

    def __init__(self, task_id: str, missing_ids: list[str]) -> None:
        super().__init__(
            f"Task {task_id} depends on unknown task(s): {', '.join(missing_ids)}",
            {"task_id": task_id, "missing_ids": missing_ids},
        )
        self.task_id = task_id
        self.missing_ids = missing_ids


class CyclicDependencyError(RoadmapError):
    code = "CYCLIC_DEPENDENCY"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            {"cycle": cycle},
        )
        self.cycle = cycle


class DuplicateTaskError(RoadmapError):
    code = "DUPLICATE_TASK"

    def __init__(self, task_id: str, short_code: str, phase: str) -> None:
        super().__init__(
            f"Task {short_code} already exists in phase {phase}",
            {"task_id": task_id, "short_code": short_code, "phase": phase},
        )


class DependenciesNotMetError(RoadmapError):
    code = "DEPENDENCIES_NOT_MET"

    def __init__(self, task_id: str, unresolved_ids: list[str]) -> None:
        super().__init__(
            f"Cannot start task {task_id}: dependencies not met",
            {"task_id": task_id, "unresolved_ids": unresolved_ids},
        )


class TaskNotFoundError(RoadmapError):
    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found", {"task_id": task_id})


class RoadmapNotFoundError(RoadmapError):
    code = "ROADMAP_NOT_FOUND"

    def __init__(self, roadmap_id: str) -> None:
        super().__init__(f"Roadmap {roadmap_id} not found", {"roadmap_id": roadmap_id})


class RoadmapClosedError(RoadmapError):
    """已完成的 roadmap 只接受只读查询"""

    code = "ROADMAP_CLOSED"

    def __init__(self, roadmap_id: str, attempted: str) -> None:
        super().__init__(
            f"Roadmap {roadmap_id} is completed; cannot {attempted}",
            {"roadmap_id": roadmap_id, "attempted": attempted},
        )


class ConcurrencyConflictError(RoadmapError):
    """乐观并发版本校验失败，调用方需重新加载后重试"""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, roadmap_id: str, expected_version: int) -> None:
        super().__init__(
            f"Roadmap {roadmap_id} was modified concurrently (expected version "
            f"{expected_version})",
            {"roadmap_id": roadmap_id, "expected_version": expected_version},
        )


class RoadmapAlreadyExistsError(RoadmapError):
    """每个案件只能有一个 roadmap"""

    code = "ROADMAP_ALREADY_EXISTS"

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Roadmap already exists for case {case_id}", {"case_id": case_id})
