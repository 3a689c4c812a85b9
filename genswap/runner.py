"""Public entry points for running updates."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from genswap.config import GenswapConfig, load_config
from genswap.models.session import UpdateSession
from genswap.update.cancel import CancelToken
from genswap.update.policy import UpdatePolicy

logger = logging.getLogger(__name__)


def run_update(
    target_id: str,
    policy: UpdatePolicy | None = None,
    *,
    config: GenswapConfig | None = None,
    cancel: CancelToken | None = None,
) -> UpdateSession:
    """Update one target and return its finished session.

    Blocks until the session reaches a terminal state or the policy
    timeout / *cancel* token ends it early.
    """
    config = config or load_config()
    orchestrator = config.build_orchestrator(target_id)
    return orchestrator.run(policy or config.policy, cancel)


def run_updates(
    target_ids: list[str],
    policy: UpdatePolicy | None = None,
    *,
    config: GenswapConfig | None = None,
    max_workers: int = 4,
) -> dict[str, UpdateSession]:
    """Update several targets concurrently, one independent session each."""
    if len(set(target_ids)) != len(target_ids):
        raise ValueError("each target may only be updated once per call")
    config = config or load_config()
    # Resolve every target up front so a typo fails before anything runs.
    orchestrators = {t: config.build_orchestrator(t) for t in target_ids}
    effective = policy or config.policy

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = {t: pool.submit(o.run, effective) for t, o in orchestrators.items()}
        results = {t: f.result() for t, f in futures.items()}

    logger.info(
        "updated %d target(s): %s",
        len(results),
        ", ".join(f"{t}={s.outcome.value}" for t, s in results.items()),
    )
    return results
