"""Tests for the genswap command-line interface."""

import json
import tempfile
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from genswap.cli import main


def _workspace(tmpdir, build_command="echo /artifacts/$GENSWAP_REVISION"):
    root = Path(tmpdir)
    (root / "revision.yaml").write_text(yaml.dump({"id": "R1", "components": ["nginx"]}))
    config = {
        "home": str(root / "state"),
        "targets": {
            "web-01": {
                "source": {"type": "file", "path": "revision.yaml"},
                "builder": {"type": "command", "command": build_command},
            },
        },
    }
    path = root / "genswap.yaml"
    path.write_text(yaml.dump(config))
    return str(path)


def _set_revision(config_path, revision_id):
    path = Path(config_path).parent / "revision.yaml"
    path.write_text(yaml.dump({"id": revision_id, "components": ["nginx"]}))


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("GENSWAP_HOME", "GENSWAP_MAX_REMEDIATION_ATTEMPTS", "GENSWAP_TIMEOUT_SECONDS"):
        monkeypatch.delenv(name, raising=False)


def test_update_and_status():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir)

        result = runner.invoke(main, ["--config", config, "update", "web-01"])
        assert result.exit_code == 0, result.output
        assert "success" in result.output

        result = runner.invoke(main, ["--config", config, "status", "web-01"])
        assert result.exit_code == 0
        assert "generation 1" in result.output
        assert "/artifacts/R1" in result.output


def test_failed_update_exits_nonzero():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir, build_command="echo boom; exit 1")
        result = runner.invoke(main, ["--config", config, "update", "web-01"])

    assert result.exit_code == 1
    assert "aborted" in result.output


def test_invalid_policy_override():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir)
        result = runner.invoke(main, ["--config", config, "update", "web-01", "--max-attempts", "99"])

    assert result.exit_code == 2


def test_unknown_target_and_missing_config():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir)
        result = runner.invoke(main, ["--config", config, "update", "db-01"])
        assert result.exit_code == 2
        assert "unknown target" in result.output

    result = runner.invoke(main, ["--config", "/nonexistent/genswap.yaml", "status", "web-01"])
    assert result.exit_code == 2
    assert "Configuration error" in result.output


def test_generations_and_rollback():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir)
        runner.invoke(main, ["--config", config, "update", "web-01"])
        _set_revision(config, "R2")
        result = runner.invoke(main, ["--config", config, "update", "web-01"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["--config", config, "generations", "web-01"])
        assert "superseded" in result.output
        assert "active" in result.output

        result = runner.invoke(main, ["--config", config, "rollback", "web-01"])
        assert result.exit_code == 0
        assert "generation 1 is active" in result.output

        result = runner.invoke(main, ["--config", config, "rollback", "web-01"])
        assert result.exit_code == 0
        assert "generation 1 is active" in result.output


def test_rollback_without_prior_generation():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir)
        runner.invoke(main, ["--config", config, "update", "web-01"])
        result = runner.invoke(main, ["--config", config, "rollback", "web-01"])

    assert result.exit_code == 1
    assert "MANUAL ACTION REQUIRED" in result.output


def test_sessions_listing_and_show():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir)
        runner.invoke(main, ["--config", config, "update", "web-01"])
        runner.invoke(main, ["--config", config, "update", "web-01"])

        result = runner.invoke(main, ["--config", config, "sessions", "web-01"])
        assert result.exit_code == 0
        assert result.output.count("success") == 2

        session_dir = Path(tmpdir) / "state" / "targets" / "web-01"
        first_line = (session_dir / "sessions.jsonl").read_text().splitlines()[0]
        session_id = json.loads(first_line)["session_id"]

        result = runner.invoke(main, ["--config", config, "sessions", "web-01", "--show", session_id])
        assert result.exit_code == 0
        assert f"Session:  {session_id}" in result.output

        result = runner.invoke(main, ["--config", config, "sessions", "web-01", "--show", "nope"])
        assert result.exit_code == 1


def test_bootstrap_adopts_running_system():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir)
        result = runner.invoke(main, ["--config", config, "bootstrap", "web-01", "-a", "/run/current-system"])
        assert result.exit_code == 0, result.output
        assert "generation 1 active" in result.output

        result = runner.invoke(main, ["--config", config, "bootstrap", "web-01", "-a", "/run/current-system"])
        assert result.exit_code == 1
        assert "Bootstrap failed" in result.output


def test_status_without_generation():
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _workspace(tmpdir)
        result = runner.invoke(main, ["--config", config, "status", "web-01"])

    assert result.exit_code == 0
    assert "no active generation" in result.output
