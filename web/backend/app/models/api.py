"""Pydantic models for API request/response serialization.

These models mirror the genswap dataclasses and provide proper JSON
serialization for the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Generation models
# ---------------------------------------------------------------------------


class RevisionResponse(BaseModel):
    """Mirrors genswap.models.generation.Revision."""

    id: str
    components: list[str] = Field(default_factory=list)
    source_ref: str = ""
    base_id: str = ""
    patches: list[str] = Field(default_factory=list)


class GenerationResponse(BaseModel):
    """Mirrors genswap.models.generation.Generation."""

    id: int
    status: str
    artifact_ref: str
    created_at: str = ""
    revision: RevisionResponse


class TargetResponse(BaseModel):
    name: str
    current_generation: Optional[GenerationResponse] = None


class RollbackResponse(BaseModel):
    target: str
    active_generation: Optional[GenerationResponse] = None


# ---------------------------------------------------------------------------
# Session models
# ---------------------------------------------------------------------------


class StepResultResponse(BaseModel):
    """Mirrors genswap.models.session.StepResult."""

    step_name: str
    started_at: str
    ended_at: str
    status: str
    failure_class: Optional[str] = None
    detail: str = ""
    duration_ms: int = 0


class RemediationAttemptResponse(BaseModel):
    """Mirrors genswap.models.session.RemediationAttempt."""

    attempt_number: int
    matched_rule: str = ""
    transform_applied: str = ""
    resulting_step_result: StepResultResponse


class SessionResponse(BaseModel):
    """Mirrors genswap.models.session.UpdateSession."""

    session_id: str
    target_id: str
    started_at: str
    finished_at: str = ""
    outcome: Optional[str] = None
    failure_class: Optional[str] = None
    revision: Optional[RevisionResponse] = None
    baseline_generation_id: Optional[int] = None
    activated_generation_id: Optional[int] = None
    remediation_attempts: int = 0
    notices: list[str] = Field(default_factory=list)
    steps: list[StepResultResponse] = Field(default_factory=list)
    remediations: list[RemediationAttemptResponse] = Field(default_factory=list)
    manual_action_required: bool = False
    report: str = ""


class UpdateRequest(BaseModel):
    """Optional policy overrides for a triggered update."""

    max_remediation_attempts: Optional[int] = None
    auto_proceed_on_critical: Optional[bool] = None
    timeout_seconds: Optional[float] = None
