"""Update sessions and their append-only step log.

An UpdateSession is created once per orchestration run and owned by the
orchestrator. Steps and remediation attempts are only ever appended; once an
outcome is set the session is frozen and later mutation raises
``SessionFrozenError``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from genswap.errors import SessionFrozenError
from genswap.models.generation import Revision


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StepStatus(Enum):
    OK = "ok"
    FAILED = "failed"


class FailureClass(Enum):
    """Which part of the pipeline a failed step belongs to."""

    FETCH_ERROR = "fetch_error"
    RISK_ABORT = "risk_abort"
    BUILD_ERROR = "build_error"
    REMEDIATION_EXHAUSTED = "remediation_exhausted"
    VALIDATION_ERROR = "validation_error"
    SWITCH_ERROR = "switch_error"
    CANCELLED = "cancelled"


class SessionOutcome(Enum):
    SUCCESS = "success"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"


@dataclass(frozen=True)
class StepResult:
    """One entry of the session audit trail."""

    step_name: str
    started_at: str
    ended_at: str
    status: StepStatus
    failure_class: FailureClass | None = None
    detail: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == StepStatus.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "status": self.status.value,
            "failure_class": self.failure_class.value if self.failure_class else None,
            "detail": self.detail,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepResult:
        failure = data.get("failure_class")
        return cls(
            step_name=data["step_name"],
            started_at=data.get("started_at", ""),
            ended_at=data.get("ended_at", ""),
            status=StepStatus(data.get("status", "ok")),
            failure_class=FailureClass(failure) if failure else None,
            detail=data.get("detail", ""),
            duration_ms=data.get("duration_ms", 0),
        )


@dataclass(frozen=True)
class RemediationAttempt:
    """A single pass through the remediation engine.

    ``matched_rule`` and ``transform_applied`` are empty when no rule matched.
    """

    attempt_number: int
    matched_rule: str
    transform_applied: str
    resulting_step_result: StepResult

    @property
    def matched(self) -> bool:
        return bool(self.matched_rule)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "matched_rule": self.matched_rule,
            "transform_applied": self.transform_applied,
            "resulting_step_result": self.resulting_step_result.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemediationAttempt:
        return cls(
            attempt_number=data["attempt_number"],
            matched_rule=data.get("matched_rule", ""),
            transform_applied=data.get("transform_applied", ""),
            resulting_step_result=StepResult.from_dict(data["resulting_step_result"]),
        )


@dataclass
class UpdateSession:
    """State of one orchestration run against one target."""

    target_id: str
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    started_at: str = field(default_factory=utc_now)
    revision: Revision | None = None
    baseline_generation_id: int | None = None
    activated_generation_id: int | None = None
    steps: list[StepResult] = field(default_factory=list)
    remediations: list[RemediationAttempt] = field(default_factory=list)
    remediation_attempts: int = 0
    notices: list[str] = field(default_factory=list)
    outcome: SessionOutcome | None = None
    failure_class: FailureClass | None = None
    finished_at: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None

    @property
    def manual_action_required(self) -> bool:
        return any(s.failure_class == FailureClass.SWITCH_ERROR for s in self.steps)

    def _ensure_open(self) -> None:
        if self.is_terminal:
            raise SessionFrozenError(
                f"session {self.session_id} already finished ({self.outcome.value})"
            )

    def set_revision(self, revision: Revision) -> None:
        self._ensure_open()
        self.revision = revision

    def add_step(self, step: StepResult) -> StepResult:
        self._ensure_open()
        self.steps.append(step)
        return step

    def add_remediation(self, attempt: RemediationAttempt) -> None:
        self._ensure_open()
        self.remediations.append(attempt)
        if attempt.matched:
            self.remediation_attempts += 1

    def add_notice(self, notice: str) -> None:
        self._ensure_open()
        self.notices.append(notice)

    def mark_activated(self, generation_id: int) -> None:
        self._ensure_open()
        self.activated_generation_id = generation_id

    def finish(
        self, outcome: SessionOutcome, failure_class: FailureClass | None = None
    ) -> None:
        """Set the terminal outcome. The session is frozen afterwards."""
        self._ensure_open()
        self.outcome = outcome
        self.failure_class = failure_class
        self.finished_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "target_id": self.target_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "revision": self.revision.to_dict() if self.revision else None,
            "baseline_generation_id": self.baseline_generation_id,
            "activated_generation_id": self.activated_generation_id,
            "steps": [s.to_dict() for s in self.steps],
            "remediations": [r.to_dict() for r in self.remediations],
            "remediation_attempts": self.remediation_attempts,
            "notices": list(self.notices),
            "outcome": self.outcome.value if self.outcome else None,
            "failure_class": self.failure_class.value if self.failure_class else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpdateSession:
        revision = data.get("revision")
        outcome = data.get("outcome")
        failure = data.get("failure_class")
        return cls(
            target_id=data["target_id"],
            session_id=data["session_id"],
            started_at=data.get("started_at", ""),
            finished_at=data.get("finished_at", ""),
            revision=Revision.from_dict(revision) if revision else None,
            baseline_generation_id=data.get("baseline_generation_id"),
            activated_generation_id=data.get("activated_generation_id"),
            steps=[StepResult.from_dict(s) for s in data.get("steps", [])],
            remediations=[
                RemediationAttempt.from_dict(r) for r in data.get("remediations", [])
            ],
            remediation_attempts=data.get("remediation_attempts", 0),
            notices=list(data.get("notices", [])),
            outcome=SessionOutcome(outcome) if outcome else None,
            failure_class=FailureClass(failure) if failure else None,
        )
