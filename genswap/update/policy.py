"""Update policy: the knobs a caller passes to ``run_update``."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

MAX_REMEDIATION_ATTEMPTS_LIMIT = 10


@dataclass(frozen=True)
class UpdatePolicy:
    """Per-run policy.

    ``auto_proceed_on_critical`` lets a build go ahead despite a Critical
    issue with an Abort recommendation. Caution and Delay recommendations
    never block.
    """

    max_remediation_attempts: int = 3
    auto_proceed_on_critical: bool = False
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.max_remediation_attempts <= MAX_REMEDIATION_ATTEMPTS_LIMIT:
            raise ValueError(
                "max_remediation_attempts must be between 0 and "
                f"{MAX_REMEDIATION_ATTEMPTS_LIMIT}, got: {self.max_remediation_attempts}"
            )
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got: {self.timeout_seconds}")

    def merged(self, **overrides: Any) -> UpdatePolicy:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> UpdatePolicy:
        data = data or {}
        timeout = data.get("timeout_seconds")
        return cls(
            max_remediation_attempts=int(data.get("max_remediation_attempts", 3)),
            auto_proceed_on_critical=bool(data.get("auto_proceed_on_critical", False)),
            timeout_seconds=float(timeout) if timeout is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_remediation_attempts": self.max_remediation_attempts,
            "auto_proceed_on_critical": self.auto_proceed_on_critical,
            "timeout_seconds": self.timeout_seconds,
        }


def load_policy(path: str | Path) -> UpdatePolicy:
    """Load an update policy from a YAML file (top-level or under ``policy:``)."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return UpdatePolicy.from_dict(data.get("policy", data))
