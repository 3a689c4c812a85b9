"""Known-issue registries keyed by component."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx
import yaml

from genswap.errors import RegistryUnreachable
from genswap.models.issue import IssueReport

logger = logging.getLogger(__name__)


class HttpIssueRegistry:
    """Queries a remote issue registry over HTTP.

    ``POST {url}/issues/query`` with ``{"components": [...]}``; the response
    is ``{"issues": [{component, severity, summary, recommendation}, ...]}``.
    Any transport, status or payload problem is reported as unreachable.
    """

    def __init__(self, url: str, token: str = "", timeout: float = 10.0):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def query_issues(
        self, components: list[str], timeout: float | None = None
    ) -> list[IssueReport]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        effective_timeout = self.timeout if timeout is None else min(self.timeout, timeout)

        try:
            with httpx.Client(timeout=effective_timeout) as client:
                resp = client.post(
                    f"{self.url}/issues/query",
                    json={"components": components},
                    headers=headers,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise RegistryUnreachable(
                f"issue registry returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise RegistryUnreachable(f"issue registry unreachable: {exc}") from exc
        except ValueError as exc:
            raise RegistryUnreachable(f"issue registry sent invalid JSON: {exc}") from exc

        try:
            return [IssueReport.from_dict(item) for item in data.get("issues", [])]
        except (AttributeError, KeyError, ValueError) as exc:
            raise RegistryUnreachable(f"malformed issue registry response: {exc}") from exc


class FileIssueRegistry:
    """Known issues maintained in a local YAML file.

    ::

        issues:
          - component: openssl
            severity: critical
            summary: CVE-2024-0001 remote crash
            recommendation: abort
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def query_issues(
        self, components: list[str], timeout: float | None = None
    ) -> list[IssueReport]:
        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise RegistryUnreachable(f"could not read {self.path}: {exc}") from exc

        wanted = set(components)
        reports = []
        try:
            for item in data.get("issues", []):
                if item.get("component") in wanted:
                    reports.append(IssueReport.from_dict(item))
        except (AttributeError, KeyError, ValueError) as exc:
            raise RegistryUnreachable(f"malformed issue file {self.path}: {exc}") from exc
        return reports
