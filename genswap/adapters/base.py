"""Protocols the orchestrator expects from its collaborators."""

from __future__ import annotations

from typing import Any, Protocol

from genswap.models.generation import Generation, Revision
from genswap.models.issue import IssueReport
from genswap.update.cancel import CancelToken


class ConfigurationSource(Protocol):
    def fetch_latest(self) -> Revision:
        """Return the newest revision. Raises FetchError."""
        ...


class Builder(Protocol):
    def build(self, revision: Revision, cancel: CancelToken | None = None) -> str:
        """Build *revision* and return an artifact reference.

        Raises BuildError on failure and Cancelled when *cancel* fires.
        Never retries internally.
        """
        ...


class IssueRegistry(Protocol):
    def query_issues(
        self, components: list[str], timeout: float | None = None
    ) -> list[IssueReport]:
        """Return known issues for *components*. Raises RegistryUnreachable."""
        ...


class NotificationChannel(Protocol):
    def send(self, message: str, payload: dict[str, Any] | None = None) -> None:
        """Deliver *message*. Raises NotificationError; delivery is best-effort."""
        ...


class HealthCheck(Protocol):
    def verify(self, generation: Generation, cancel: CancelToken | None = None) -> None:
        """Validate an activated generation. Raises ValidationFailed."""
        ...
