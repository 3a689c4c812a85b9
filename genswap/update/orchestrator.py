"""Update orchestrator: the state machine behind ``run_update``.

States::

    Fetching -> RiskCheck -> Building -> [Remediating <-> Building]*
             -> Staging -> Activating -> [Verifying] -> Done

with side exits to RollingBack (ends RolledBack) and Aborted. Fetch and
risk-check failures abort without touching the generation store. Once a
target has an active generation, later failures roll back so that the
generation active before the session is active again afterwards.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum

from genswap.adapters.base import Builder, ConfigurationSource, HealthCheck
from genswap.errors import (
    BuildError,
    Cancelled,
    FetchError,
    RemediationExhausted,
    RiskAbortError,
    SwitchError,
    ValidationFailed,
)
from genswap.models.generation import Generation, Revision
from genswap.models.session import (
    FailureClass,
    RemediationAttempt,
    SessionOutcome,
    StepResult,
    StepStatus,
    UpdateSession,
    utc_now,
)
from genswap.store.generations import GenerationStore
from genswap.store.sessions import SessionArchive
from genswap.update.cancel import CancelToken
from genswap.update.issues import IssueDetector, enforce_policy
from genswap.update.policy import UpdatePolicy
from genswap.update.remediation import RemediationEngine, RemediationRule
from genswap.update.reporter import Reporter

logger = logging.getLogger(__name__)


class State(Enum):
    FETCHING = "fetching"
    RISK_CHECK = "risk_check"
    BUILDING = "building"
    REMEDIATING = "remediating"
    STAGING = "staging"
    ACTIVATING = "activating"
    VERIFYING = "verifying"
    ROLLING_BACK = "rolling_back"
    DONE = "done"
    ABORTED = "aborted"
    ROLLED_BACK = "rolled_back"


TERMINAL_STATES = {State.DONE, State.ABORTED, State.ROLLED_BACK}

_OUTCOMES = {
    State.DONE: SessionOutcome.SUCCESS,
    State.ABORTED: SessionOutcome.ABORTED,
    State.ROLLED_BACK: SessionOutcome.ROLLED_BACK,
}

# Failure class recorded when a collaborator raises something unexpected.
_UNEXPECTED_FAILURE = {
    State.FETCHING: FailureClass.FETCH_ERROR,
    State.RISK_CHECK: FailureClass.RISK_ABORT,
    State.BUILDING: FailureClass.BUILD_ERROR,
    State.REMEDIATING: FailureClass.REMEDIATION_EXHAUSTED,
    State.STAGING: FailureClass.SWITCH_ERROR,
    State.ACTIVATING: FailureClass.SWITCH_ERROR,
    State.VERIFYING: FailureClass.VALIDATION_ERROR,
    State.ROLLING_BACK: FailureClass.SWITCH_ERROR,
}

_STEP_NAMES = {
    State.FETCHING: "fetch",
    State.RISK_CHECK: "risk-check",
    State.BUILDING: "build",
    State.REMEDIATING: "remediate",
    State.STAGING: "stage",
    State.ACTIVATING: "activate",
    State.VERIFYING: "verify",
    State.ROLLING_BACK: "rollback",
}


class _Timer:
    """Times one step and turns it into a StepResult."""

    def __init__(self) -> None:
        self.started_at = utc_now()
        self._start = time.monotonic()

    def result(
        self,
        step_name: str,
        status: StepStatus = StepStatus.OK,
        failure_class: FailureClass | None = None,
        detail: str = "",
    ) -> StepResult:
        return StepResult(
            step_name=step_name,
            started_at=self.started_at,
            ended_at=utc_now(),
            status=status,
            failure_class=failure_class,
            detail=detail,
            duration_ms=int((time.monotonic() - self._start) * 1000),
        )


@dataclass
class _Run:
    """Private, mutable state of one session while it is being driven."""

    session: UpdateSession
    policy: UpdatePolicy
    cancel: CancelToken
    engine: RemediationEngine
    revision: Revision | None = None
    baseline: Generation | None = None
    artifact_ref: str = ""
    candidate: Generation | None = None
    activated: Generation | None = None
    activation_started: bool = False
    last_failure: BuildError | None = None
    failure_class: FailureClass | None = None

    def fail(self, step: StepResult) -> None:
        self.session.add_step(step)
        self.failure_class = step.failure_class


class UpdateOrchestrator:
    """Drives one target from its current generation to a new one.

    One orchestrator may run many sessions one after another; each ``run``
    creates a fresh UpdateSession that nothing else mutates.
    """

    def __init__(
        self,
        target_id: str,
        source: ConfigurationSource,
        builder: Builder,
        store: GenerationStore,
        issue_detector: IssueDetector | None = None,
        remediation_rules: list[RemediationRule] | None = None,
        reporter: Reporter | None = None,
        archive: SessionArchive | None = None,
        health_check: HealthCheck | None = None,
    ):
        self.target_id = target_id
        self.source = source
        self.builder = builder
        self.store = store
        self.issue_detector = issue_detector or IssueDetector()
        self.remediation_rules = remediation_rules
        self.reporter = reporter or Reporter()
        self.archive = archive
        self.health_check = health_check

        self._handlers = {
            State.FETCHING: self._fetch,
            State.RISK_CHECK: self._risk_check,
            State.BUILDING: self._build,
            State.REMEDIATING: self._remediate,
            State.STAGING: self._stage,
            State.ACTIVATING: self._activate,
            State.VERIFYING: self._verify,
            State.ROLLING_BACK: self._roll_back,
        }

    def run(
        self, policy: UpdatePolicy | None = None, cancel: CancelToken | None = None
    ) -> UpdateSession:
        """Run one update session to a terminal state and return it."""
        policy = policy or UpdatePolicy()
        cancel = cancel or CancelToken(policy.timeout_seconds)
        session = UpdateSession(target_id=self.target_id)
        run = _Run(
            session=session,
            policy=policy,
            cancel=cancel,
            engine=RemediationEngine(
                rules=self.remediation_rules,
                max_attempts=policy.max_remediation_attempts,
            ),
        )
        logger.info("%s: session %s started", self.target_id, session.session_id)

        state = State.FETCHING
        while state not in TERMINAL_STATES:
            if state != State.ROLLING_BACK and cancel.cancelled:
                state = self._on_cancel(run, _Timer(), cancel.reason)
                continue
            try:
                next_state = self._handlers[state](run)
            except Exception as exc:
                logger.exception(
                    "%s: unexpected error while %s", self.target_id, state.value
                )
                next_state = self._on_unexpected(run, state, exc)
            logger.info("%s: %s -> %s", self.target_id, state.value, next_state.value)
            state = next_state

        session.finish(_OUTCOMES[state], run.failure_class)
        logger.info(
            "%s: session %s finished: %s",
            self.target_id,
            session.session_id,
            session.outcome.value,
        )

        if self.archive is not None:
            try:
                self.archive.record(session)
            except OSError as exc:
                logger.error("%s: could not archive session: %s", self.target_id, exc)
        self.reporter.report(session)
        return session

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    def _fetch(self, run: _Run) -> State:
        timer = _Timer()
        try:
            run.baseline = self.store.current()
        except SwitchError as exc:
            run.fail(timer.result("fetch", StepStatus.FAILED, FailureClass.SWITCH_ERROR,
                                  f"generation store unreadable: {exc}"))
            return State.ABORTED
        if run.baseline is not None:
            run.session.baseline_generation_id = run.baseline.id

        try:
            revision = self.source.fetch_latest()
        except FetchError as exc:
            run.fail(timer.result("fetch", StepStatus.FAILED, FailureClass.FETCH_ERROR, str(exc)))
            return State.ABORTED

        run.revision = revision
        run.session.set_revision(revision)

        baseline = run.baseline
        if baseline is not None and revision.id in (
            baseline.revision.id,
            baseline.revision.origin_id,
        ):
            run.session.add_step(timer.result(
                "fetch",
                detail=f"revision {revision.id} is already active as generation {baseline.id}",
            ))
            return State.DONE

        run.session.add_step(timer.result("fetch", detail=f"revision {revision.id}"))
        return State.RISK_CHECK

    def _risk_check(self, run: _Run) -> State:
        timer = _Timer()
        verdict = self.issue_detector.evaluate(run.revision, run.cancel)

        if verdict.skipped:
            run.session.add_notice(verdict.notice)
        for report in verdict.advisories:
            run.session.add_notice(
                f"{report.recommendation.value}: {report.component} "
                f"({report.severity.value}) {report.summary}"
            )

        blocking = verdict.blocking_reports
        try:
            enforce_policy(verdict, run.policy)
        except RiskAbortError as exc:
            run.fail(timer.result(
                "risk-check", StepStatus.FAILED, FailureClass.RISK_ABORT, str(exc),
            ))
            return State.ABORTED
        if blocking:
            run.session.add_notice(
                f"proceeding despite {len(blocking)} critical issue(s): "
                "auto_proceed_on_critical is enabled"
            )

        run.session.add_step(timer.result("risk-check", detail=verdict.summary()))
        return State.BUILDING

    def _build(self, run: _Run) -> State:
        timer = _Timer()
        try:
            run.artifact_ref = self.builder.build(run.revision, run.cancel)
        except Cancelled as exc:
            return self._on_cancel(run, timer, str(exc))
        except BuildError as exc:
            run.last_failure = exc
            detail = str(exc)
            if exc.hints:
                detail += f" [{', '.join(exc.hints)}]"
            run.fail(timer.result("build", StepStatus.FAILED, FailureClass.BUILD_ERROR, detail))
            if run.session.remediation_attempts < run.policy.max_remediation_attempts:
                return State.REMEDIATING
            run.fail(_Timer().result(
                "remediate", StepStatus.FAILED, FailureClass.REMEDIATION_EXHAUSTED,
                f"attempt cap of {run.policy.max_remediation_attempts} reached",
            ))
            return self._after_failure(run)

        run.session.add_step(timer.result("build", detail=run.artifact_ref))
        return State.STAGING

    def _remediate(self, run: _Run) -> State:
        timer = _Timer()
        attempt_number = run.session.remediation_attempts + 1
        try:
            remedy = run.engine.remediate(run.last_failure, attempt_number, run.revision)
        except RemediationExhausted as exc:
            step = timer.result(
                "remediate", StepStatus.FAILED, FailureClass.REMEDIATION_EXHAUSTED, str(exc)
            )
            run.fail(step)
            run.session.add_remediation(RemediationAttempt(attempt_number, "", "", step))
            return self._after_failure(run)

        step = timer.result(
            "remediate", detail=f"{remedy.rule}: {remedy.change} -> {remedy.revision.id}"
        )
        run.session.add_step(step)
        run.session.add_remediation(
            RemediationAttempt(attempt_number, remedy.rule, remedy.change, step)
        )
        run.revision = remedy.revision
        run.session.set_revision(remedy.revision)
        return State.BUILDING

    def _stage(self, run: _Run) -> State:
        timer = _Timer()
        try:
            run.candidate = self.store.stage(run.revision, run.artifact_ref)
        except (SwitchError, OSError) as exc:
            run.fail(timer.result("stage", StepStatus.FAILED, FailureClass.SWITCH_ERROR, str(exc)))
            return self._after_failure(run)
        run.session.add_step(timer.result("stage", detail=f"generation {run.candidate.id}"))
        return State.ACTIVATING

    def _activate(self, run: _Run) -> State:
        timer = _Timer()
        run.activation_started = True
        expected = run.baseline.id if run.baseline is not None else None
        try:
            run.activated = self.store.activate(run.candidate, expected_active=expected)
        except SwitchError as exc:
            logger.error("%s: activation failed: %s", self.target_id, exc)
            run.fail(timer.result(
                "activate", StepStatus.FAILED, FailureClass.SWITCH_ERROR, str(exc)
            ))
            return State.ROLLING_BACK

        run.session.mark_activated(run.activated.id)
        run.session.add_step(timer.result("activate", detail=f"generation {run.activated.id}"))
        return State.VERIFYING if self.health_check is not None else State.DONE

    def _verify(self, run: _Run) -> State:
        timer = _Timer()
        try:
            self.health_check.verify(run.activated, run.cancel)
        except Cancelled as exc:
            return self._on_cancel(run, timer, str(exc))
        except ValidationFailed as exc:
            run.fail(timer.result(
                "verify", StepStatus.FAILED, FailureClass.VALIDATION_ERROR, str(exc)
            ))
            return State.ROLLING_BACK
        run.session.add_step(timer.result("verify", detail="health check passed"))
        return State.DONE

    def _roll_back(self, run: _Run) -> State:
        timer = _Timer()
        if run.candidate is None:
            if run.baseline is not None:
                detail = f"nothing was activated, generation {run.baseline.id} remains active"
            else:
                detail = "nothing was activated"
            run.session.add_step(timer.result("rollback", detail=detail))
            return State.ROLLED_BACK

        try:
            restored = self.store.rollback(failed=run.candidate)
        except SwitchError as exc:
            logger.error("%s: rollback failed: %s", self.target_id, exc)
            run.session.add_step(timer.result(
                "rollback", StepStatus.FAILED, FailureClass.SWITCH_ERROR,
                f"rollback failed: {exc}",
            ))
            return State.ROLLED_BACK

        if restored is not None:
            detail = f"generation {restored.id} active"
        else:
            detail = f"generation {run.candidate.id} discarded, no generation active"
        run.session.add_step(timer.result("rollback", detail=detail))
        return State.ROLLED_BACK

    # ------------------------------------------------------------------
    # Failure routing
    # ------------------------------------------------------------------

    def _after_failure(self, run: _Run) -> State:
        """Where a failure after the risk check leads."""
        if run.baseline is None and not run.activation_started:
            return State.ABORTED
        return State.ROLLING_BACK

    def _on_cancel(self, run: _Run, timer: _Timer, reason: str) -> State:
        run.fail(timer.result("cancel", StepStatus.FAILED, FailureClass.CANCELLED, reason))
        logger.warning("%s: session cancelled: %s", self.target_id, reason)
        if run.activation_started:
            return State.ROLLING_BACK
        if run.candidate is not None:
            self._discard_candidate(run)
        return State.ABORTED

    def _discard_candidate(self, run: _Run) -> None:
        """Mark a staged but never activated candidate RolledBack."""
        timer = _Timer()
        try:
            self.store.rollback(failed=run.candidate)
        except SwitchError as exc:
            logger.error("%s: could not discard generation %d: %s",
                         self.target_id, run.candidate.id, exc)
            run.session.add_step(timer.result(
                "discard", StepStatus.FAILED, FailureClass.SWITCH_ERROR,
                f"could not discard generation {run.candidate.id}: {exc}",
            ))
            return
        run.session.add_step(timer.result(
            "discard", detail=f"generation {run.candidate.id} discarded"
        ))

    def _on_unexpected(self, run: _Run, state: State, exc: Exception) -> State:
        failure_class = _UNEXPECTED_FAILURE[state]
        step = _Timer().result(
            _STEP_NAMES[state], StepStatus.FAILED, failure_class,
            f"unexpected {type(exc).__name__}: {exc}",
        )
        if state == State.ROLLING_BACK:
            run.session.add_step(step)
            return State.ROLLED_BACK
        run.fail(step)
        if state in (State.FETCHING, State.RISK_CHECK):
            return State.ABORTED
        if state in (State.ACTIVATING, State.VERIFYING):
            return State.ROLLING_BACK
        return self._after_failure(run)
