"""Notification channels for session reports.

Delivery is best-effort: channels raise NotificationError and the reporter
logs it without affecting the session outcome.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from pathlib import Path
from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from genswap.errors import NotificationError
from genswap.models.session import utc_now


class ConsoleChannel:
    """Prints reports to the terminal."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def send(self, message: str, payload: dict[str, Any] | None = None) -> None:
        outcome = (payload or {}).get("outcome") or "report"
        style = {"success": "green", "rolled_back": "yellow", "aborted": "red"}.get(
            outcome, "blue"
        )
        self.console.print(
            Panel(Text(message), title=f"genswap: {outcome}", border_style=style)
        )


class WebhookChannel:
    """POSTs reports as JSON to a webhook URL.

    When a secret is configured the body is signed with HMAC-SHA256 in the
    ``X-Genswap-Signature`` header.
    """

    def __init__(self, url: str, secret: str = "", timeout: float = 10.0):
        self.url = url
        self.secret = secret
        self.timeout = timeout

    @staticmethod
    def compute_signature(body: bytes, secret: str) -> str:
        mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256)
        return f"sha256={mac.hexdigest()}"

    def send(self, message: str, payload: dict[str, Any] | None = None) -> None:
        body = json.dumps(
            {"event": "genswap.session.finished", "text": message, "session": payload},
            default=str,
        ).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Genswap-Signature"] = self.compute_signature(body, self.secret)

        try:
            resp = httpx.post(self.url, content=body, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"webhook delivery to {self.url} failed: {exc}") from exc


class FileChannel:
    """Appends reports to a plain-text log file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def send(self, message: str, payload: dict[str, Any] | None = None) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(f"=== {utc_now()} ===\n{message}\n\n")
        except OSError as exc:
            raise NotificationError(f"could not write report to {self.path}: {exc}") from exc
