"""Tests for configuration loading, environment settings and the runner."""

import tempfile
from pathlib import Path

import pytest
import yaml

from genswap.adapters.builder import CommandBuilder
from genswap.adapters.notify import FileChannel
from genswap.adapters.registry import FileIssueRegistry
from genswap.adapters.source import FileConfigurationSource
from genswap.config import load_config, parse_config
from genswap.errors import ConfigError
from genswap.models.session import SessionOutcome
from genswap.runner import run_update, run_updates
from genswap.settings import RuntimeSettings
from genswap.update.policy import UpdatePolicy

_ENV_VARS = [
    "GENSWAP_HOME",
    "GENSWAP_CONFIG",
    "GENSWAP_MAX_REMEDIATION_ATTEMPTS",
    "GENSWAP_AUTO_PROCEED_ON_CRITICAL",
    "AUTO_PROCEED_ON_CRITICAL",
    "GENSWAP_TIMEOUT_SECONDS",
]


def _workspace(tmpdir, build_command="echo /artifacts/$GENSWAP_REVISION"):
    root = Path(tmpdir)
    (root / "revision.yaml").write_text(
        yaml.dump({"id": "R1", "components": ["nginx"], "payload": {}})
    )
    (root / "issues.yaml").write_text(yaml.dump({"issues": []}))
    target = {
        "source": {"type": "file", "path": "revision.yaml"},
        "builder": {"type": "command", "command": build_command},
        "registry": {"type": "file", "path": "issues.yaml"},
        "notify": [{"type": "file", "path": "reports.log"}],
    }
    config = {
        "home": str(root / "state"),
        "policy": {"max_remediation_attempts": 2},
        "targets": {"web-01": target, "web-02": dict(target)},
    }
    path = root / "genswap.yaml"
    path.write_text(yaml.dump(config))
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# --- RuntimeSettings ---


def test_settings_defaults():
    settings = RuntimeSettings.from_env()
    assert settings.config_path == "genswap.yaml"
    assert settings.home_path == Path.home() / ".genswap"
    assert settings.policy_overrides() == {}


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("GENSWAP_HOME", "/tmp/genswap-home")
    monkeypatch.setenv("GENSWAP_MAX_REMEDIATION_ATTEMPTS", "5")
    monkeypatch.setenv("AUTO_PROCEED_ON_CRITICAL", "yes")
    monkeypatch.setenv("GENSWAP_TIMEOUT_SECONDS", "90")

    settings = RuntimeSettings.from_env()

    assert settings.home_path == Path("/tmp/genswap-home")
    assert settings.policy_overrides() == {
        "max_remediation_attempts": 5,
        "auto_proceed_on_critical": True,
        "timeout_seconds": 90.0,
    }


def test_prefixed_auto_proceed_wins(monkeypatch):
    monkeypatch.setenv("AUTO_PROCEED_ON_CRITICAL", "true")
    monkeypatch.setenv("GENSWAP_AUTO_PROCEED_ON_CRITICAL", "false")
    assert RuntimeSettings.from_env().auto_proceed_on_critical is False


@pytest.mark.parametrize(
    "name,value",
    [
        ("GENSWAP_MAX_REMEDIATION_ATTEMPTS", "eleven"),
        ("GENSWAP_MAX_REMEDIATION_ATTEMPTS", "11"),
        ("GENSWAP_AUTO_PROCEED_ON_CRITICAL", "maybe"),
        ("GENSWAP_TIMEOUT_SECONDS", "0"),
    ],
)
def test_invalid_env_fails_fast(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        RuntimeSettings.from_env()


def test_invalid_env_is_a_config_error(monkeypatch):
    monkeypatch.setenv("GENSWAP_MAX_REMEDIATION_ATTEMPTS", "-1")
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError):
            load_config(_workspace(tmpdir))


# --- load_config ---


def test_load_config_wires_adapters():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _workspace(tmpdir)
        config = load_config(path)
        orchestrator = config.build_orchestrator("web-01")

        assert config.home == Path(tmpdir) / "state"
        assert config.policy == UpdatePolicy(max_remediation_attempts=2)
        assert sorted(config.targets) == ["web-01", "web-02"]
        assert isinstance(orchestrator.source, FileConfigurationSource)
        assert orchestrator.source.path == Path(tmpdir).resolve() / "revision.yaml"
        assert isinstance(orchestrator.builder, CommandBuilder)
        assert isinstance(orchestrator.issue_detector.registry, FileIssueRegistry)
        assert isinstance(orchestrator.reporter.channels[0], FileChannel)
        assert orchestrator.health_check is None
        assert orchestrator.store.store_dir == Path(tmpdir) / "state" / "targets" / "web-01"


def test_env_overrides_file(monkeypatch):
    monkeypatch.setenv("GENSWAP_MAX_REMEDIATION_ATTEMPTS", "7")
    monkeypatch.setenv("GENSWAP_HOME", "/srv/genswap")
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(_workspace(tmpdir))

    assert config.policy.max_remediation_attempts == 7
    assert config.home == Path("/srv/genswap")


def test_missing_config_file():
    with pytest.raises(ConfigError, match="could not read"):
        load_config("/nonexistent/genswap.yaml")


def _parse(tmpdir, **section):
    target = {
        "source": {"type": "file", "path": "r.yaml"},
        "builder": {"command": "true"},
        **section,
    }
    return parse_config({"home": tmpdir, "targets": {"web": target}})


def test_unknown_target():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _parse(tmpdir)
        with pytest.raises(ConfigError, match="unknown target"):
            config.build_orchestrator("db-01")


def test_invalid_sections():
    with pytest.raises(ConfigError, match="builder"):
        parse_config({"targets": {"web": {"source": {"type": "file", "path": "r.yaml"}}}})
    with pytest.raises(ConfigError, match="invalid policy"):
        parse_config({"policy": {"max_remediation_attempts": 99}})

    with tempfile.TemporaryDirectory() as tmpdir:
        config = _parse(tmpdir, source={"type": "svn", "path": "x"})
        with pytest.raises(ConfigError, match="unknown source type"):
            config.build_orchestrator("web")


def test_disabled_remediation_rules():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _parse(tmpdir, remediation={"disabled": ["disk-full", "network-fetch"]})
        names = [r.name for r in config.build_orchestrator("web").remediation_rules]
        assert names == ["missing-dependency", "hash-mismatch", "renamed-option"]

        bad = _parse(tmpdir, remediation={"disabled": ["reboot"]})
        with pytest.raises(ConfigError, match="reboot"):
            bad.build_orchestrator("web")


def test_secrets_from_env(monkeypatch):
    monkeypatch.setenv("ISSUES_TOKEN", "t0ken")
    with tempfile.TemporaryDirectory() as tmpdir:
        config = _parse(tmpdir, registry={
            "type": "http",
            "url": "https://issues.example.com/",
            "token_env": "ISSUES_TOKEN",
        })
        registry = config.build_orchestrator("web").issue_detector.registry

    assert registry.token == "t0ken"
    assert registry.url == "https://issues.example.com"


# --- Runner ---


def test_run_update_activates_then_noops():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(_workspace(tmpdir))

        first = run_update("web-01", config=config)
        second = run_update("web-01", config=config)

        store = config.generation_store("web-01")
        assert first.outcome == SessionOutcome.SUCCESS
        assert store.current().revision.id == "R1"
        assert store.current().artifact_ref == "/artifacts/R1"
        assert second.outcome == SessionOutcome.SUCCESS
        assert len(store.list_generations()) == 1
        assert len(config.session_archive("web-01").list_recent()) == 2
        assert "Outcome:  SUCCESS" in (Path(tmpdir) / "reports.log").read_text()


def test_run_updates_in_parallel():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(_workspace(tmpdir))

        results = run_updates(["web-01", "web-02"], config=config, max_workers=2)

        assert set(results) == {"web-01", "web-02"}
        assert all(s.outcome == SessionOutcome.SUCCESS for s in results.values())
        assert results["web-01"].session_id != results["web-02"].session_id
        assert config.generation_store("web-02").current().id == 1


def test_run_updates_rejects_duplicates_and_unknown_targets():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(_workspace(tmpdir))
        with pytest.raises(ValueError):
            run_updates(["web-01", "web-01"], config=config)
        with pytest.raises(ConfigError):
            run_updates(["web-01", "db-01"], config=config)
        assert config.generation_store("web-01").current() is None
