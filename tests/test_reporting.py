"""Tests for session reports, notification channels and the session archive."""

import json
import tempfile
from pathlib import Path

import httpx
import pytest

from genswap.adapters.notify import FileChannel, WebhookChannel
from genswap.errors import NotificationError
from genswap.models.generation import Revision
from genswap.models.session import (
    FailureClass,
    RemediationAttempt,
    SessionOutcome,
    StepResult,
    StepStatus,
    UpdateSession,
)
from genswap.store.sessions import SessionArchive
from genswap.update.reporter import MANUAL_ACTION, Reporter, format_report


def _step(name, status=StepStatus.OK, failure=None, detail=""):
    return StepResult(name, "t0", "t1", status, failure, detail, duration_ms=12)


def _finished(outcome=SessionOutcome.SUCCESS, failure=None, steps=None):
    session = UpdateSession(target_id="web-01")
    for step in steps or [_step("fetch")]:
        session.add_step(step)
    session.finish(outcome, failure)
    return session


class Recorder:
    def __init__(self):
        self.sent = []

    def send(self, message, payload=None):
        self.sent.append(message)


class Broken:
    def send(self, message, payload=None):
        raise NotificationError("smtp down")


# --- format_report ---


def test_report_lists_steps_and_remediations():
    session = UpdateSession(target_id="web-01", baseline_generation_id=1)
    base = Revision(id="R1", components=("nginx",))
    session.set_revision(base.derive({"dependencies": ["openssl"]}, "missing-dependency"))
    session.add_step(_step("build", StepStatus.FAILED, FailureClass.BUILD_ERROR, "exit 1"))
    remediate = _step("remediate")
    session.add_step(remediate)
    session.add_remediation(RemediationAttempt(1, "missing-dependency", "added dependency 'openssl'", remediate))
    session.add_notice("risk assessment skipped: offline")
    session.mark_activated(2)
    session.finish(SessionOutcome.SUCCESS)

    report = format_report(session)

    assert "Outcome:  SUCCESS" in report
    assert "(from R1, patches: missing-dependency)" in report
    assert "Activated generation: 2" in report
    assert "#1 missing-dependency: added dependency 'openssl'" in report
    assert "risk assessment skipped: offline" in report
    assert "(build_error) exit 1" in report
    assert MANUAL_ACTION not in report


def test_report_flags_switch_errors():
    session = _finished(
        SessionOutcome.ROLLED_BACK,
        FailureClass.SWITCH_ERROR,
        [_step("activate", StepStatus.FAILED, FailureClass.SWITCH_ERROR, "bootloader failed")],
    )
    report = format_report(session)
    assert "ROLLED_BACK (switch_error)" in report
    assert f"{MANUAL_ACTION}:" in report
    assert "activate: bootloader failed" in report


# --- Reporter ---


def test_reporter_sends_once_per_session():
    recorder = Recorder()
    reporter = Reporter([recorder])
    session = _finished()

    assert reporter.report(session) is True
    assert reporter.report(session) is False
    assert len(recorder.sent) == 1


def test_reporter_forgets_oldest_sessions_beyond_history():
    reporter = Reporter([Recorder()], history=2)
    sessions = [_finished() for _ in range(3)]
    for s in sessions:
        assert reporter.report(s)

    assert list(reporter._reported) == [sessions[1].session_id, sessions[2].session_id]
    assert reporter.report(sessions[2]) is False


def test_reporter_refuses_unfinished_session():
    with pytest.raises(ValueError):
        Reporter([Recorder()]).report(UpdateSession(target_id="web-01"))


def test_channel_failure_does_not_stop_other_channels():
    recorder = Recorder()
    session = _finished()
    assert Reporter([Broken(), recorder]).report(session)
    assert len(recorder.sent) == 1
    assert session.outcome == SessionOutcome.SUCCESS


# --- Channels ---


def test_file_channel_appends():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "reports" / "genswap.log"
        channel = FileChannel(path)
        channel.send("first")
        channel.send("second")
        text = path.read_text()

    assert "first" in text
    assert "second" in text
    assert text.count("===") == 4


def test_webhook_signature_and_body(monkeypatch):
    captured = {}

    def fake_post(url, content, headers, timeout):
        captured.update(url=url, content=content, headers=headers)
        return httpx.Response(200, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", fake_post)
    WebhookChannel("https://hooks.example.com/x", secret="s3cret").send("hello", {"outcome": "success"})

    body = json.loads(captured["content"])
    assert body["event"] == "genswap.session.finished"
    assert body["text"] == "hello"
    assert body["session"] == {"outcome": "success"}
    assert captured["headers"]["X-Genswap-Signature"] == WebhookChannel.compute_signature(
        captured["content"], "s3cret"
    )
    assert captured["headers"]["X-Genswap-Signature"].startswith("sha256=")


def test_webhook_http_error_raises_notification_error(monkeypatch):
    def fake_post(url, content, headers, timeout):
        return httpx.Response(500, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", fake_post)
    with pytest.raises(NotificationError):
        WebhookChannel("https://hooks.example.com/x").send("hello")


# --- SessionArchive ---


def test_archive_lists_recent_first():
    with tempfile.TemporaryDirectory() as tmpdir:
        archive = SessionArchive(tmpdir)
        sessions = [_finished() for _ in range(3)]
        for s in sessions:
            archive.record(s)

        recent = archive.list_recent(limit=2)
        assert [s.session_id for s in recent] == [sessions[2].session_id, sessions[1].session_id]
        assert len(archive.get_history()) == 3
        assert archive.get(sessions[0].session_id).outcome == SessionOutcome.SUCCESS
        assert archive.get("missing") is None


def test_archive_rejects_unfinished_and_skips_garbage():
    with tempfile.TemporaryDirectory() as tmpdir:
        archive = SessionArchive(tmpdir)
        with pytest.raises(ValueError):
            archive.record(UpdateSession(target_id="web-01"))

        archive.record(_finished())
        with open(archive.archive_path, "a") as f:
            f.write("{not json\n")
            f.write("[]\n1\n\"text\"\n")
        assert len(archive.get_history()) == 1
        assert len(archive.list_recent()) == 1
