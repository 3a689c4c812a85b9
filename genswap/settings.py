from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation.

    Policy fields are None unless the corresponding variable is set, so they
    only override values from the configuration file when present.
    """

    home: str = ""
    config_path: str = "genswap.yaml"
    max_remediation_attempts: int | None = None
    auto_proceed_on_critical: bool | None = None
    timeout_seconds: float | None = None

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        auto_proceed = _get_env_bool("GENSWAP_AUTO_PROCEED_ON_CRITICAL")
        if auto_proceed is None:
            auto_proceed = _get_env_bool("AUTO_PROCEED_ON_CRITICAL")
        return cls(
            home=os.getenv("GENSWAP_HOME", ""),
            config_path=os.getenv("GENSWAP_CONFIG", "genswap.yaml"),
            max_remediation_attempts=_get_env_int(
                "GENSWAP_MAX_REMEDIATION_ATTEMPTS", minimum=0, maximum=10
            ),
            auto_proceed_on_critical=auto_proceed,
            timeout_seconds=_get_env_float("GENSWAP_TIMEOUT_SECONDS", minimum=1.0),
        )

    @property
    def home_path(self) -> Path:
        """State directory, defaulting to ``~/.genswap``."""
        return Path(self.home).expanduser() if self.home else Path.home() / ".genswap"

    def policy_overrides(self) -> dict:
        overrides = {
            "max_remediation_attempts": self.max_remediation_attempts,
            "auto_proceed_on_critical": self.auto_proceed_on_critical,
            "timeout_seconds": self.timeout_seconds,
        }
        return {k: v for k, v in overrides.items() if v is not None}


def _get_env_int(name: str, minimum: int, maximum: int) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_float(name: str, minimum: float) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    return parsed


def _get_env_bool(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return None
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got: {raw!r}")
