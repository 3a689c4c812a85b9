"""Loading of ``genswap.yaml`` and wiring of each target's adapters.

Example::

    home: /var/lib/genswap
    policy:
      max_remediation_attempts: 3
      auto_proceed_on_critical: false
      timeout_seconds: 3600
    targets:
      web-01:
        source: {type: git, path: /etc/system-config, branch: main, pull: true}
        builder: {type: command, command: ./build.sh, timeout_seconds: 1800}
        registry: {type: http, url: https://issues.example.com, token_env: ISSUES_TOKEN}
        health_check: {command: systemctl is-system-running}
        notify:
          - {type: console}
          - {type: webhook, url: https://hooks.example.com/genswap, secret_env: HOOK_SECRET}
        remediation: {disabled: [disk-full]}
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

from genswap.adapters.builder import CommandBuilder
from genswap.adapters.health import CommandHealthCheck
from genswap.adapters.notify import ConsoleChannel, FileChannel, WebhookChannel
from genswap.adapters.registry import FileIssueRegistry, HttpIssueRegistry
from genswap.adapters.source import FileConfigurationSource, GitConfigurationSource
from genswap.errors import ConfigError
from genswap.settings import RuntimeSettings
from genswap.store._files import safe_name
from genswap.store.generations import GenerationStore
from genswap.store.sessions import SessionArchive
from genswap.update.issues import IssueDetector
from genswap.update.orchestrator import UpdateOrchestrator
from genswap.update.policy import UpdatePolicy
from genswap.update.remediation import RemediationRule, default_rules
from genswap.update.reporter import Reporter


@dataclass
class TargetConfig:
    """Adapter sections for one target system."""

    name: str
    source: dict[str, Any]
    builder: dict[str, Any]
    registry: dict[str, Any] | None = None
    health_check: dict[str, Any] | None = None
    notify: list[dict[str, Any]] = field(default_factory=list)
    remediation: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenswapConfig:
    """Loaded configuration: state home, default policy and targets."""

    home: Path
    policy: UpdatePolicy = field(default_factory=UpdatePolicy)
    targets: dict[str, TargetConfig] = field(default_factory=dict)
    base_dir: Path = field(default_factory=Path.cwd)

    def target(self, target_id: str) -> TargetConfig:
        try:
            return self.targets[target_id]
        except KeyError:
            known = ", ".join(sorted(self.targets)) or "none"
            raise ConfigError(f"unknown target {target_id!r} (configured: {known})") from None

    def store_dir(self, target_id: str) -> Path:
        return self.home / "targets" / safe_name(target_id)

    def generation_store(self, target_id: str) -> GenerationStore:
        return GenerationStore(self.store_dir(target_id), target_id)

    def session_archive(self, target_id: str) -> SessionArchive:
        return SessionArchive(self.store_dir(target_id))

    def build_orchestrator(
        self, target_id: str, console: Console | None = None
    ) -> UpdateOrchestrator:
        """Wire the configured adapters for *target_id* into an orchestrator."""
        target = self.target(target_id)
        registry = _build_registry(target.registry, self.base_dir)
        health = _build_health_check(target.health_check, self.base_dir)
        return UpdateOrchestrator(
            target_id=target_id,
            source=_build_source(target.source, self.base_dir),
            builder=_build_builder(target.builder, self.base_dir),
            store=self.generation_store(target_id),
            issue_detector=IssueDetector(registry),
            remediation_rules=_remediation_rules(target.remediation),
            reporter=Reporter(_build_channels(target.notify, self.base_dir, console)),
            archive=self.session_archive(target_id),
            health_check=health,
        )


def load_config(
    path: str | Path | None = None, settings: RuntimeSettings | None = None
) -> GenswapConfig:
    """Load a YAML configuration file and apply environment overrides."""
    if settings is None:
        try:
            settings = RuntimeSettings.from_env()
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    config_path = Path(path or settings.config_path)
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"could not read config {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    return parse_config(data, settings, base_dir=config_path.resolve().parent)


def parse_config(
    data: dict[str, Any],
    settings: RuntimeSettings | None = None,
    base_dir: Path | None = None,
) -> GenswapConfig:
    """Build a GenswapConfig from already-parsed YAML data."""
    settings = settings or RuntimeSettings()
    if settings.home:
        home = settings.home_path
    elif data.get("home"):
        home = Path(str(data["home"])).expanduser()
    else:
        home = settings.home_path

    try:
        policy = UpdatePolicy.from_dict(data.get("policy")).merged(
            **settings.policy_overrides()
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid policy: {exc}") from exc

    targets = {}
    for name, section in (data.get("targets") or {}).items():
        targets[str(name)] = _parse_target(str(name), section)

    return GenswapConfig(
        home=home,
        policy=policy,
        targets=targets,
        base_dir=base_dir or Path.cwd(),
    )


def _parse_target(name: str, section: Any) -> TargetConfig:
    if not isinstance(section, dict):
        raise ConfigError(f"target {name!r} must be a mapping")
    for required in ("source", "builder"):
        if not isinstance(section.get(required), dict):
            raise ConfigError(f"target {name!r} needs a {required!r} section")
    notify = section.get("notify") or []
    if not isinstance(notify, list):
        raise ConfigError(f"target {name!r}: 'notify' must be a list")
    return TargetConfig(
        name=name,
        source=section["source"],
        builder=section["builder"],
        registry=section.get("registry"),
        health_check=section.get("health_check"),
        notify=notify,
        remediation=section.get("remediation") or {},
    )


# ---------------------------------------------------------------------------
# Adapter factories
# ---------------------------------------------------------------------------


def _resolve(base_dir: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def _secret(spec: dict[str, Any], key: str) -> str:
    """Read ``key`` directly or from the variable named by ``key_env``."""
    env_name = spec.get(f"{key}_env")
    if env_name:
        return os.getenv(env_name, "")
    return str(spec.get(key, ""))


def _require(spec: dict[str, Any], key: str, kind: str) -> Any:
    if not spec.get(key):
        raise ConfigError(f"{kind} needs a {key!r} setting")
    return spec[key]


def _build_source(spec: dict[str, Any], base_dir: Path):
    kind = spec.get("type", "git")
    if kind == "git":
        return GitConfigurationSource(
            _resolve(base_dir, _require(spec, "path", "git source")),
            branch=spec.get("branch", ""),
            remote=spec.get("remote", "origin"),
            pull=bool(spec.get("pull", False)),
            components_file=spec.get("components_file", "components.yaml"),
        )
    if kind == "file":
        return FileConfigurationSource(_resolve(base_dir, _require(spec, "path", "file source")))
    raise ConfigError(f"unknown source type: {kind!r}")


def _build_builder(spec: dict[str, Any], base_dir: Path):
    kind = spec.get("type", "command")
    if kind != "command":
        raise ConfigError(f"unknown builder type: {kind!r}")
    working_dir = spec.get("working_dir")
    return CommandBuilder(
        command=_require(spec, "command", "command builder"),
        working_dir=_resolve(base_dir, working_dir) if working_dir else base_dir,
        timeout_seconds=float(spec.get("timeout_seconds", 3600)),
        env={str(k): str(v) for k, v in (spec.get("env") or {}).items()},
    )


def _build_registry(spec: dict[str, Any] | None, base_dir: Path):
    if not spec:
        return None
    kind = spec.get("type", "http")
    if kind == "http":
        return HttpIssueRegistry(
            url=_require(spec, "url", "http registry"),
            token=_secret(spec, "token"),
            timeout=float(spec.get("timeout_seconds", 10)),
        )
    if kind == "file":
        return FileIssueRegistry(_resolve(base_dir, _require(spec, "path", "file registry")))
    raise ConfigError(f"unknown registry type: {kind!r}")


def _build_health_check(spec: dict[str, Any] | None, base_dir: Path):
    if not spec:
        return None
    working_dir = spec.get("working_dir")
    return CommandHealthCheck(
        command=_require(spec, "command", "health check"),
        timeout_seconds=float(spec.get("timeout_seconds", 60)),
        working_dir=_resolve(base_dir, working_dir) if working_dir else base_dir,
    )


def _build_channels(
    specs: list[dict[str, Any]], base_dir: Path, console: Console | None
) -> list:
    channels = []
    for spec in specs:
        kind = spec.get("type", "console")
        if kind == "console":
            channels.append(ConsoleChannel(console))
        elif kind == "webhook":
            channels.append(
                WebhookChannel(
                    url=_require(spec, "url", "webhook channel"),
                    secret=_secret(spec, "secret"),
                    timeout=float(spec.get("timeout_seconds", 10)),
                )
            )
        elif kind == "file":
            channels.append(FileChannel(_resolve(base_dir, _require(spec, "path", "file channel"))))
        else:
            raise ConfigError(f"unknown notification channel type: {kind!r}")
    return channels


def _remediation_rules(spec: dict[str, Any]) -> list[RemediationRule]:
    rules = default_rules()
    disabled = set(spec.get("disabled") or [])
    unknown = disabled - {r.name for r in rules}
    if unknown:
        raise ConfigError(f"unknown remediation rule(s): {', '.join(sorted(unknown))}")
    return [r for r in rules if r.name not in disabled]
