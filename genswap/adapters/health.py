"""Post-activation health checks."""

from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path

from genswap.adapters.builder import kill_process_group
from genswap.errors import Cancelled, ValidationFailed
from genswap.models.generation import Generation
from genswap.update.cancel import CancelToken


class CommandHealthCheck:
    """Runs a command against the newly activated generation.

    Exit code 0 means healthy. The generation id and artifact reference are
    passed as ``GENSWAP_GENERATION`` and ``GENSWAP_ARTIFACT``.
    """

    def __init__(
        self,
        command: str,
        timeout_seconds: float = 60,
        working_dir: str | Path | None = None,
        poll_interval: float = 0.2,
    ):
        self.command = command
        self.timeout_seconds = timeout_seconds
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.poll_interval = poll_interval

    def verify(self, generation: Generation, cancel: CancelToken | None = None) -> None:
        if cancel is not None and cancel.cancelled:
            raise Cancelled(f"health check cancelled: {cancel.reason}")

        timeout = self.timeout_seconds
        if cancel is not None and cancel.remaining() is not None:
            timeout = min(timeout, cancel.remaining())

        env = {
            **os.environ,
            "GENSWAP_GENERATION": str(generation.id),
            "GENSWAP_ARTIFACT": generation.artifact_ref,
        }
        start = time.monotonic()
        proc = subprocess.Popen(
            self.command,
            shell=True,
            cwd=self.working_dir,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            start_new_session=True,
        )
        while True:
            try:
                output, _ = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.cancelled:
                    kill_process_group(proc)
                    raise Cancelled(f"health check cancelled: {cancel.reason}")
                if time.monotonic() - start > timeout:
                    kill_process_group(proc)
                    raise ValidationFailed(f"health check timed out after {timeout}s")

        if proc.returncode != 0:
            output = (output or "").strip()[-2000:]
            raise ValidationFailed(
                f"health check exited with code {proc.returncode}: {output}"
            )
