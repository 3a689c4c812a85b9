"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import HTTPException

from genswap.config import GenswapConfig, load_config
from genswap.errors import ConfigError


def get_config() -> GenswapConfig:
    """Load the genswap configuration named by ``GENSWAP_CONFIG``."""
    try:
        return load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


def require_target(config: GenswapConfig, target: str) -> None:
    if target not in config.targets:
        raise HTTPException(status_code=404, detail=f"Unknown target: {target}")
