"""Error taxonomy for genswap.

Adapters raise these; the orchestrator turns them into step results so that
no collaborator exception escapes ``run_update``.
"""

from __future__ import annotations


class GenswapError(Exception):
    """Base class for all genswap errors."""


class ConfigError(GenswapError):
    """Configuration file or environment is invalid."""


class FetchError(GenswapError):
    """The configuration source is unreachable or returned an invalid revision."""


class RiskAbortError(GenswapError):
    """A critical known issue with an Abort recommendation blocks the update."""


class BuildError(GenswapError):
    """A candidate revision failed to build.

    Carries the raw build log and classification hints so remediation rules
    can pattern-match against it.
    """

    def __init__(
        self,
        message: str,
        log: str = "",
        exit_signal: int | None = None,
        hints: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.log = log
        self.exit_signal = exit_signal
        self.hints = list(hints or [])


class RemediationExhausted(GenswapError):
    """No remediation rule matched, or the attempt cap was reached."""


class SwitchError(GenswapError):
    """Activation or rollback failed. Requires manual action; never retried."""


class StoreCorruptionError(SwitchError):
    """The generation store's on-disk state cannot be read."""


class RegistryUnreachable(GenswapError):
    """The issue registry could not be queried."""


class ValidationFailed(GenswapError):
    """The post-activation health check rejected the new generation."""


class NotificationError(GenswapError):
    """A notification channel failed to deliver a report."""


class Cancelled(GenswapError):
    """The session was cancelled or timed out."""


class SessionFrozenError(GenswapError):
    """An attempt was made to mutate a session that already has an outcome."""
