"""Human-readable session reports, one per finished session."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from genswap.adapters.base import NotificationChannel
from genswap.models.session import FailureClass, UpdateSession

logger = logging.getLogger(__name__)

MANUAL_ACTION = "MANUAL ACTION REQUIRED"

# Session ids remembered for duplicate suppression; oldest are forgotten first.
REPORTED_HISTORY = 1024


def format_report(session: UpdateSession) -> str:
    """Render the full step trail and remediation history as plain text."""
    outcome = session.outcome.value.upper() if session.outcome else "RUNNING"
    if session.failure_class:
        outcome += f" ({session.failure_class.value})"

    lines = [
        f"Target:   {session.target_id}",
        f"Session:  {session.session_id}",
        f"Outcome:  {outcome}",
        f"Started:  {session.started_at}",
        f"Finished: {session.finished_at or '-'}",
    ]

    rev = session.revision
    if rev is not None:
        line = f"Revision: {rev.id}"
        if rev.base_id:
            line += f" (from {rev.base_id}, patches: {', '.join(rev.patches)})"
        lines.append(line)

    if session.baseline_generation_id is not None:
        lines.append(f"Baseline generation:  {session.baseline_generation_id}")
    if session.activated_generation_id is not None:
        lines.append(f"Activated generation: {session.activated_generation_id}")
    lines.append(f"Remediation attempts: {session.remediation_attempts}")

    if session.notices:
        lines.append("")
        lines.append("Notices:")
        for notice in session.notices:
            lines.append(f"  - {notice}")

    lines.append("")
    lines.append("Steps:")
    for step in session.steps:
        status = "ok" if step.ok else "FAILED"
        label = f"  [{status:>6}] {step.step_name:<10} {step.duration_ms:>6}ms"
        if step.failure_class:
            label += f" ({step.failure_class.value})"
        if step.detail:
            label += f" {step.detail}"
        lines.append(label)

    if session.remediations:
        lines.append("")
        lines.append("Remediation history:")
        for attempt in session.remediations:
            if attempt.matched:
                lines.append(
                    f"  #{attempt.attempt_number} {attempt.matched_rule}: "
                    f"{attempt.transform_applied}"
                )
            else:
                lines.append(
                    f"  #{attempt.attempt_number} no match: "
                    f"{attempt.resulting_step_result.detail}"
                )

    switch_failures = [
        s for s in session.steps if s.failure_class == FailureClass.SWITCH_ERROR
    ]
    if switch_failures:
        lines.append("")
        lines.append(f"{MANUAL_ACTION}:")
        for step in switch_failures:
            lines.append(f"  {step.step_name}: {step.detail}")

    return "\n".join(lines)


class Reporter:
    """Dispatches each finished session's report to every channel, exactly once.

    Channel failures are logged and never change the session.
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        history: int = REPORTED_HISTORY,
    ):
        self.channels = list(channels or [])
        self.history = history
        self._reported: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def report(self, session: UpdateSession) -> bool:
        """Send the report. Returns False if the session was already reported."""
        if not session.is_terminal:
            raise ValueError(f"session {session.session_id} has not finished")
        with self._lock:
            if session.session_id in self._reported:
                logger.warning("session %s already reported", session.session_id)
                return False
            self._reported[session.session_id] = None
            while len(self._reported) > self.history:
                self._reported.popitem(last=False)

        message = format_report(session)
        payload = session.to_dict()
        for channel in self.channels:
            try:
                channel.send(message, payload)
            except Exception as exc:
                logger.warning(
                    "notification via %s failed for session %s: %s",
                    type(channel).__name__,
                    session.session_id,
                    exc,
                )
        return True
