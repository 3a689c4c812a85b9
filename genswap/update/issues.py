"""Issue detection: the risk check run before building a revision.

The check fails open: when the issue registry cannot be reached the session
proceeds with an empty verdict and the report says the assessment was
skipped.
"""

from __future__ import annotations

import logging

from genswap.adapters.base import IssueRegistry
from genswap.errors import RegistryUnreachable, RiskAbortError
from genswap.models.generation import Revision
from genswap.models.issue import IssueVerdict
from genswap.update.cancel import CancelToken
from genswap.update.policy import UpdatePolicy

logger = logging.getLogger(__name__)

SKIPPED_NOTICE = "risk assessment skipped"


class IssueDetector:
    """Aggregates known-issue reports for the components of a revision."""

    def __init__(self, registry: IssueRegistry | None = None):
        self.registry = registry

    def evaluate(
        self, revision: Revision, cancel: CancelToken | None = None
    ) -> IssueVerdict:
        if self.registry is None:
            return IssueVerdict(
                skipped=True, notice=f"{SKIPPED_NOTICE}: no issue registry configured"
            )
        if not revision.components:
            return IssueVerdict()

        timeout = cancel.remaining() if cancel is not None else None
        try:
            reports = self.registry.query_issues(list(revision.components), timeout=timeout)
        except (RegistryUnreachable, OSError) as exc:
            logger.warning("issue registry unavailable for %s: %s", revision.id, exc)
            return IssueVerdict(skipped=True, notice=f"{SKIPPED_NOTICE}: {exc}")

        wanted = set(revision.components)
        verdict = IssueVerdict(reports=[r for r in reports if r.component in wanted])
        logger.info("risk check for %s: %s", revision.id, verdict.summary())
        return verdict


def should_abort(verdict: IssueVerdict, policy: UpdatePolicy) -> bool:
    """True when the verdict blocks the build under *policy*."""
    return bool(verdict.blocking_reports) and not policy.auto_proceed_on_critical


def enforce_policy(verdict: IssueVerdict, policy: UpdatePolicy) -> None:
    """Raise RiskAbortError if *verdict* blocks the build under *policy*."""
    if should_abort(verdict, policy):
        detail = "; ".join(f"{r.component}: {r.summary}" for r in verdict.blocking_reports)
        raise RiskAbortError(f"critical issue(s) recommend abort: {detail}")
