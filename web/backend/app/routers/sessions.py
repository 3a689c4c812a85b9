"""Sessions router -- update history and triggering updates."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from genswap.config import GenswapConfig
from genswap.update.reporter import format_report

from web.backend.app.deps import get_config, require_target
from web.backend.app.models.api import (
    RemediationAttemptResponse,
    RevisionResponse,
    SessionResponse,
    StepResultResponse,
    UpdateRequest,
)

router = APIRouter(prefix="/api/targets", tags=["sessions"])


def _session_to_response(session) -> SessionResponse:
    """Convert an UpdateSession dataclass to a Pydantic response."""
    data = session.to_dict()
    rev = session.revision
    return SessionResponse(
        session_id=session.session_id,
        target_id=session.target_id,
        started_at=session.started_at,
        finished_at=session.finished_at,
        outcome=data["outcome"],
        failure_class=data["failure_class"],
        revision=RevisionResponse(
            id=rev.id,
            components=list(rev.components),
            source_ref=rev.source_ref,
            base_id=rev.base_id,
            patches=list(rev.patches),
        ) if rev else None,
        baseline_generation_id=session.baseline_generation_id,
        activated_generation_id=session.activated_generation_id,
        remediation_attempts=session.remediation_attempts,
        notices=session.notices,
        steps=[StepResultResponse(**s) for s in data["steps"]],
        remediations=[
            RemediationAttemptResponse(
                attempt_number=r["attempt_number"],
                matched_rule=r["matched_rule"],
                transform_applied=r["transform_applied"],
                resulting_step_result=StepResultResponse(**r["resulting_step_result"]),
            )
            for r in data["remediations"]
        ],
        manual_action_required=session.manual_action_required,
        report=format_report(session),
    )


@router.get(
    "/{target}/sessions",
    response_model=list[SessionResponse],
    summary="List recent update sessions",
)
def list_sessions(
    target: str,
    limit: int = Query(10, ge=1, le=200),
    config: GenswapConfig = Depends(get_config),
):
    """Return the most recent sessions for a target, newest first."""
    require_target(config, target)
    sessions = config.session_archive(target).list_recent(limit=limit)
    return [_session_to_response(s) for s in sessions]


@router.get(
    "/{target}/sessions/{session_id}",
    response_model=SessionResponse,
    summary="Get one archived session",
)
def get_session(target: str, session_id: str, config: GenswapConfig = Depends(get_config)):
    require_target(config, target)
    session = config.session_archive(target).get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return _session_to_response(session)


@router.post(
    "/{target}/update",
    response_model=SessionResponse,
    summary="Run an update session for a target",
)
def trigger_update(
    target: str,
    request: UpdateRequest | None = None,
    config: GenswapConfig = Depends(get_config),
):
    """Run an update synchronously and return the finished session."""
    from genswap.runner import run_update

    require_target(config, target)
    overrides = request or UpdateRequest()
    try:
        policy = config.policy.merged(
            max_remediation_attempts=overrides.max_remediation_attempts,
            auto_proceed_on_critical=overrides.auto_proceed_on_critical,
            timeout_seconds=overrides.timeout_seconds,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    session = run_update(target, policy, config=config)
    return _session_to_response(session)
