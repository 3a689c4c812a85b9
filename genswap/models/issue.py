"""Known-issue reports and the aggregated risk verdict for a revision."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(Enum):
    """Issue severity, ordered from least to most severe by ``rank``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class Recommendation(Enum):
    """What the issue registry recommends doing about a known issue."""

    PROCEED = "proceed"
    CAUTION = "caution"
    DELAY = "delay"
    ABORT = "abort"


@dataclass(frozen=True)
class IssueReport:
    """A known defect affecting one component of a revision."""

    component: str
    severity: Severity
    summary: str
    recommendation: Recommendation = Recommendation.PROCEED

    @property
    def is_blocking(self) -> bool:
        return (
            self.severity == Severity.CRITICAL
            and self.recommendation == Recommendation.ABORT
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "severity": self.severity.value,
            "summary": self.summary,
            "recommendation": self.recommendation.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IssueReport:
        return cls(
            component=data["component"],
            severity=Severity(str(data.get("severity", "low")).lower()),
            summary=data.get("summary", ""),
            recommendation=Recommendation(
                str(data.get("recommendation", "proceed")).lower()
            ),
        )


@dataclass
class IssueVerdict:
    """All issue reports for a revision, aggregated worst-case-wins."""

    reports: list[IssueReport] = field(default_factory=list)
    skipped: bool = False
    notice: str = ""

    @property
    def worst_severity(self) -> Severity | None:
        if not self.reports:
            return None
        return max((r.severity for r in self.reports), key=lambda s: s.rank)

    @property
    def blocking_reports(self) -> list[IssueReport]:
        return [r for r in self.reports if r.is_blocking]

    @property
    def advisories(self) -> list[IssueReport]:
        """Reports surfaced to the operator that do not block on their own."""
        return [
            r
            for r in self.reports
            if not r.is_blocking
            and r.recommendation in (Recommendation.CAUTION, Recommendation.DELAY)
        ]

    def summary(self) -> str:
        if self.skipped:
            return self.notice or "risk assessment skipped"
        if not self.reports:
            return "no known issues"
        worst = self.worst_severity
        return f"{len(self.reports)} known issue(s), worst severity {worst.value}"
