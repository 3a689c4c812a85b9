"""Tests for the risk check and update policy."""

import tempfile
from pathlib import Path

import pytest
import yaml

from genswap.adapters.registry import FileIssueRegistry
from genswap.errors import RegistryUnreachable, RiskAbortError
from genswap.models.generation import Revision
from genswap.models.issue import IssueReport, Recommendation, Severity
from genswap.update.cancel import CancelToken
from genswap.update.issues import IssueDetector, enforce_policy, should_abort
from genswap.update.policy import UpdatePolicy, load_policy

REV = Revision(id="R1", components=("nginx", "openssl"))


class StaticRegistry:
    def __init__(self, reports=None, error=None):
        self.reports = reports or []
        self.error = error
        self.timeouts = []

    def query_issues(self, components, timeout=None):
        self.timeouts.append(timeout)
        if self.error:
            raise self.error
        return self.reports


# --- IssueDetector ---


def test_no_registry_skips_assessment():
    verdict = IssueDetector().evaluate(REV)
    assert verdict.skipped
    assert "no issue registry configured" in verdict.notice


def test_unreachable_registry_fails_open():
    detector = IssueDetector(StaticRegistry(error=RegistryUnreachable("connection refused")))
    verdict = detector.evaluate(REV)
    assert verdict.skipped
    assert verdict.reports == []
    assert verdict.notice == "risk assessment skipped: connection refused"
    assert not should_abort(verdict, UpdatePolicy())


def test_reports_for_other_components_are_ignored():
    registry = StaticRegistry([
        IssueReport("openssl", Severity.HIGH, "slow", Recommendation.CAUTION),
        IssueReport("postgresql", Severity.CRITICAL, "data loss", Recommendation.ABORT),
    ])
    verdict = IssueDetector(registry).evaluate(REV)
    assert [r.component for r in verdict.reports] == ["openssl"]
    assert not should_abort(verdict, UpdatePolicy())


def test_no_components_means_nothing_to_check():
    registry = StaticRegistry(error=RegistryUnreachable("should not be called"))
    verdict = IssueDetector(registry).evaluate(Revision(id="R2"))
    assert not verdict.skipped
    assert verdict.reports == []
    assert registry.timeouts == []


def test_remaining_session_time_bounds_query():
    registry = StaticRegistry()
    IssueDetector(registry).evaluate(REV, CancelToken(timeout_seconds=30))
    assert 0 < registry.timeouts[0] <= 30


def test_should_abort_respects_auto_proceed():
    registry = StaticRegistry([
        IssueReport("nginx", Severity.CRITICAL, "remote crash", Recommendation.ABORT),
    ])
    verdict = IssueDetector(registry).evaluate(REV)
    assert should_abort(verdict, UpdatePolicy())
    assert not should_abort(verdict, UpdatePolicy(auto_proceed_on_critical=True))
    with pytest.raises(RiskAbortError, match="nginx: remote crash"):
        enforce_policy(verdict, UpdatePolicy())
    enforce_policy(verdict, UpdatePolicy(auto_proceed_on_critical=True))


def test_file_registry_filters_by_component():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "issues.yaml"
        path.write_text(yaml.dump({"issues": [
            {"component": "openssl", "severity": "critical", "summary": "CVE", "recommendation": "abort"},
            {"component": "redis", "severity": "low", "summary": "typo"},
        ]}))
        reports = FileIssueRegistry(path).query_issues(["openssl", "nginx"])

    assert len(reports) == 1
    assert reports[0].is_blocking


def test_file_registry_missing_file_is_unreachable():
    with pytest.raises(RegistryUnreachable):
        FileIssueRegistry("/nonexistent/issues.yaml").query_issues(["nginx"])


# --- UpdatePolicy ---


def test_policy_defaults():
    policy = UpdatePolicy()
    assert policy.max_remediation_attempts == 3
    assert policy.auto_proceed_on_critical is False
    assert policy.timeout_seconds is None


def test_policy_validation():
    with pytest.raises(ValueError):
        UpdatePolicy(max_remediation_attempts=-1)
    with pytest.raises(ValueError):
        UpdatePolicy(max_remediation_attempts=11)
    with pytest.raises(ValueError):
        UpdatePolicy(timeout_seconds=0)


def test_policy_merged_ignores_none():
    policy = UpdatePolicy(max_remediation_attempts=5).merged(
        max_remediation_attempts=None, auto_proceed_on_critical=True
    )
    assert policy.max_remediation_attempts == 5
    assert policy.auto_proceed_on_critical is True


def test_load_policy_from_yaml():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "policy.yaml"
        path.write_text("policy:\n  max_remediation_attempts: 1\n  timeout_seconds: 600\n")
        policy = load_policy(path)

    assert policy.max_remediation_attempts == 1
    assert policy.timeout_seconds == 600.0
    assert UpdatePolicy.from_dict(policy.to_dict()) == policy
