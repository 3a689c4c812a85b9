"""Runs the external build step for a revision.

The build command receives the revision payload as JSON on stdin plus a few
``GENSWAP_*`` environment variables, and prints the artifact reference
(e.g. a store path) as the last line of its output.
"""

from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
import time
from pathlib import Path

from genswap.errors import BuildError, Cancelled
from genswap.models.generation import Revision
from genswap.update.cancel import CancelToken

logger = logging.getLogger(__name__)

# Known build-log signatures, in priority order. Hint names match the
# remediation rules that know how to fix them.
FAILURE_SIGNATURES: list[tuple[str, re.Pattern[str]]] = [
    (
        "missing-dependency",
        re.compile(
            r"(missing dependency|undefined variable|No module named|"
            r"cannot find -l|dependency .* not found)",
            re.IGNORECASE,
        ),
    ),
    ("hash-mismatch", re.compile(r"hash mismatch", re.IGNORECASE)),
    (
        "renamed-option",
        re.compile(r"option .* (has been renamed|was renamed) to", re.IGNORECASE),
    ),
    ("disk-full", re.compile(r"No space left on device", re.IGNORECASE)),
    (
        "network-fetch",
        re.compile(
            r"(Could not resolve host|Connection timed out|unable to download|"
            r"Temporary failure in name resolution)",
            re.IGNORECASE,
        ),
    ),
]

_LOG_LIMIT = 20_000


def classify_build_log(log: str) -> list[str]:
    """Return the failure signatures found in a build log, in priority order."""
    return [name for name, pattern in FAILURE_SIGNATURES if pattern.search(log)]


class CommandBuilder:
    """Builds revisions by running a shell command."""

    def __init__(
        self,
        command: str,
        working_dir: str | Path | None = None,
        timeout_seconds: float = 3600,
        env: dict[str, str] | None = None,
        poll_interval: float = 0.2,
    ):
        if not command:
            raise ValueError("build command must be non-empty")
        self.command = command
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.timeout_seconds = timeout_seconds
        self.env = env or {}
        self.poll_interval = poll_interval

    def build(self, revision: Revision, cancel: CancelToken | None = None) -> str:
        env = {
            **os.environ,
            **self.env,
            "GENSWAP_REVISION": revision.id,
            "GENSWAP_COMPONENTS": ",".join(revision.components),
        }
        logger.info("building revision %s: %s", revision.id, self.command)
        start = time.monotonic()
        proc = subprocess.Popen(
            self.command,
            shell=True,
            cwd=self.working_dir,
            env=env,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            start_new_session=True,
        )
        stdin_data: str | None = json.dumps(revision.payload, default=str)
        while True:
            try:
                output, _ = proc.communicate(input=stdin_data, timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                stdin_data = None
                if cancel is not None and cancel.cancelled:
                    kill_process_group(proc)
                    raise Cancelled(f"build cancelled: {cancel.reason}")
                if time.monotonic() - start > self.timeout_seconds:
                    partial = kill_process_group(proc)
                    raise BuildError(
                        f"build timed out after {self.timeout_seconds}s",
                        log=partial[-_LOG_LIMIT:],
                        hints=["timeout"],
                    )

        output = output or ""
        duration_ms = int((time.monotonic() - start) * 1000)
        if proc.returncode != 0:
            log = output[-_LOG_LIMIT:]
            hints = classify_build_log(log)
            logger.warning(
                "build of %s failed with exit code %s after %dms (hints: %s)",
                revision.id,
                proc.returncode,
                duration_ms,
                ", ".join(hints) or "none",
            )
            raise BuildError(
                f"build exited with code {proc.returncode}",
                log=log,
                exit_signal=proc.returncode,
                hints=hints,
            )

        lines = [line.strip() for line in output.splitlines() if line.strip()]
        if not lines:
            raise BuildError("build produced no artifact reference", log=output)
        logger.info("built revision %s in %dms: %s", revision.id, duration_ms, lines[-1])
        return lines[-1]


def kill_process_group(proc: subprocess.Popen) -> str:
    """Kill *proc* and everything it forked, then collect its remaining output.

    The process must have been started with ``start_new_session=True``.
    """
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    output, _ = proc.communicate()
    return output or ""
