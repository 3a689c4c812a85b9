"""Remediation engine: bounded, pattern-matched fixes for failed builds.

Each rule pairs a predicate over a BuildError with a transform of the
revision payload. Rules are tried in order and the first one that matches
*and* changes the payload wins. A transform that would leave the payload
unchanged (the fix is already in place) does not count as a match, so the
engine never re-applies a fix that did not help.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from genswap.adapters.builder import classify_build_log
from genswap.errors import BuildError, RemediationExhausted
from genswap.models.generation import Revision

logger = logging.getLogger(__name__)

Payload = dict[str, Any]


@dataclass(frozen=True)
class RemediationRule:
    """One known failure signature and its corrective payload rewrite.

    ``transform`` returns the rewritten payload plus a short description of
    what it changed, or None when it cannot fix this particular failure.
    """

    name: str
    description: str
    matches: Callable[[BuildError], bool]
    transform: Callable[[Payload, BuildError], tuple[Payload, str] | None]


@dataclass(frozen=True)
class Remedy:
    """A successful remediation: the rule used and the rewritten revision."""

    rule: str
    change: str
    revision: Revision


class RemediationEngine:
    """Applies the first matching rule, up to ``max_attempts`` times per session."""

    def __init__(
        self,
        rules: list[RemediationRule] | None = None,
        max_attempts: int = 3,
    ):
        self.rules = list(rules) if rules is not None else default_rules()
        self.max_attempts = max_attempts

    @property
    def rule_names(self) -> list[str]:
        return [r.name for r in self.rules]

    def remediate(
        self, failure: BuildError, attempt_number: int, revision: Revision
    ) -> Remedy:
        """Return a rewritten revision for *failure*.

        Raises RemediationExhausted when *attempt_number* is above the cap
        or no rule matches.
        """
        if attempt_number > self.max_attempts:
            raise RemediationExhausted(
                f"attempt {attempt_number} exceeds the cap of {self.max_attempts}"
            )

        for rule in self.rules:
            if not rule.matches(failure):
                continue
            result = rule.transform(copy.deepcopy(revision.payload), failure)
            if result is None:
                logger.info("rule %s matched but has nothing to change", rule.name)
                continue
            payload, change = result
            if payload == revision.payload:
                continue
            new_revision = revision.derive(payload, rule.name)
            logger.warning(
                "remediation attempt %d: %s (%s), revision %s -> %s",
                attempt_number,
                rule.name,
                change,
                revision.id,
                new_revision.id,
            )
            return Remedy(rule=rule.name, change=change, revision=new_revision)

        hints = ", ".join(failure.hints) or "none"
        raise RemediationExhausted(f"no remediation rule matches (hints: {hints})")


# ---------------------------------------------------------------------------
# Default rules
# ---------------------------------------------------------------------------


def _signature(name: str) -> Callable[[BuildError], bool]:
    def matches(failure: BuildError) -> bool:
        hints = failure.hints or classify_build_log(failure.log)
        return name in hints

    return matches


_DEPENDENCY_PATTERNS = [
    re.compile(r"missing dependency:?\s*['\"`]?([\w.+-]+)", re.IGNORECASE),
    re.compile(r"undefined variable ['\"`]([\w.+-]+)['\"`]"),
    re.compile(r"No module named ['\"]([\w.]+)['\"]"),
    re.compile(r"cannot find -l([\w+-]+)"),
    re.compile(r"dependency ['\"`]?([\w.+-]+)['\"`]? not found", re.IGNORECASE),
]


def _add_dependency(payload: Payload, failure: BuildError) -> tuple[Payload, str] | None:
    for pattern in _DEPENDENCY_PATTERNS:
        match = pattern.search(failure.log)
        if match:
            name = match.group(1)
            break
    else:
        return None
    deps = list(payload.get("dependencies", []))
    if name in deps:
        return None
    payload["dependencies"] = sorted(deps + [name])
    return payload, f"added dependency '{name}'"


_HASH_DRV = re.compile(r"hash mismatch in fixed-output derivation '([^']+)'")
_HASH_GOT = re.compile(r"got:\s*(\S+)")


def _update_hash(payload: Payload, failure: BuildError) -> tuple[Payload, str] | None:
    got = _HASH_GOT.search(failure.log)
    if not got:
        return None
    drv = _HASH_DRV.search(failure.log)
    name = _derivation_name(drv.group(1)) if drv else "source"
    hashes = dict(payload.get("hashes", {}))
    if hashes.get(name) == got.group(1):
        return None
    hashes[name] = got.group(1)
    payload["hashes"] = hashes
    return payload, f"pinned hash of '{name}' to {got.group(1)}"


def _derivation_name(path: str) -> str:
    # /nix/store/<hash>-name-1.0.drv -> name-1.0
    base = path.rsplit("/", 1)[-1]
    if base.endswith(".drv"):
        base = base[: -len(".drv")]
    head, sep, tail = base.partition("-")
    return tail if sep and len(head) >= 32 else base


_RENAMED = re.compile(
    r"option [`'\"]([\w.<>-]+)['\"]?.*?(?:has been|was) renamed to [`'\"]([\w.<>-]+)"
)


def _rename_option(payload: Payload, failure: BuildError) -> tuple[Payload, str] | None:
    match = _RENAMED.search(failure.log)
    if not match:
        return None
    old, new = match.group(1), match.group(2)
    options = dict(payload.get("options", {}))
    if old not in options:
        return None
    options[new] = options.pop(old)
    payload["options"] = options
    return payload, f"renamed option '{old}' to '{new}'"


def _build_flag(flag: str) -> Callable[[Payload, BuildError], tuple[Payload, str] | None]:
    def transform(payload: Payload, failure: BuildError) -> tuple[Payload, str] | None:
        build = dict(payload.get("build", {}))
        if build.get(flag):
            return None
        build[flag] = True
        payload["build"] = build
        return payload, f"enabled build.{flag}"

    return transform


def default_rules() -> list[RemediationRule]:
    """The built-in rule set, most specific first."""
    return [
        RemediationRule(
            name="missing-dependency",
            description="Add a dependency the build reported as missing",
            matches=_signature("missing-dependency"),
            transform=_add_dependency,
        ),
        RemediationRule(
            name="hash-mismatch",
            description="Pin the hash a fixed-output fetch actually produced",
            matches=_signature("hash-mismatch"),
            transform=_update_hash,
        ),
        RemediationRule(
            name="renamed-option",
            description="Move a configuration option to its new name",
            matches=_signature("renamed-option"),
            transform=_rename_option,
        ),
        RemediationRule(
            name="disk-full",
            description="Collect garbage before building",
            matches=_signature("disk-full"),
            transform=_build_flag("collect_garbage"),
        ),
        RemediationRule(
            name="network-fetch",
            description="Fall back to building from source when downloads fail",
            matches=_signature("network-fetch"),
            transform=_build_flag("fallback"),
        ),
    ]
