"""Targets router -- generations, the active pointer and manual rollback."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from genswap.config import GenswapConfig
from genswap.errors import StoreCorruptionError, SwitchError

from web.backend.app.deps import get_config, require_target
from web.backend.app.models.api import (
    GenerationResponse,
    RevisionResponse,
    RollbackResponse,
    TargetResponse,
)

router = APIRouter(prefix="/api/targets", tags=["targets"])


def _generation_to_response(gen) -> GenerationResponse:
    """Convert a Generation dataclass to a Pydantic response."""
    rev = gen.revision
    return GenerationResponse(
        id=gen.id,
        status=gen.status.value,
        artifact_ref=gen.artifact_ref,
        created_at=gen.created_at,
        revision=RevisionResponse(
            id=rev.id,
            components=list(rev.components),
            source_ref=rev.source_ref,
            base_id=rev.base_id,
            patches=list(rev.patches),
        ),
    )


@router.get("", response_model=list[TargetResponse], summary="List configured targets")
def list_targets(config: GenswapConfig = Depends(get_config)):
    """List every configured target with its active generation."""
    results = []
    for name in sorted(config.targets):
        try:
            current = config.generation_store(name).current()
        except StoreCorruptionError:
            current = None
        results.append(
            TargetResponse(
                name=name,
                current_generation=_generation_to_response(current) if current else None,
            )
        )
    return results


@router.get(
    "/{target}/generations",
    response_model=list[GenerationResponse],
    summary="List all generations of a target",
)
def list_generations(target: str, config: GenswapConfig = Depends(get_config)):
    require_target(config, target)
    try:
        entries = config.generation_store(target).list_generations()
    except StoreCorruptionError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return [_generation_to_response(g) for g in entries]


@router.get(
    "/{target}/current",
    response_model=GenerationResponse,
    summary="Get the active generation of a target",
)
def get_current(target: str, config: GenswapConfig = Depends(get_config)):
    require_target(config, target)
    try:
        current = config.generation_store(target).current()
    except StoreCorruptionError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    if current is None:
        raise HTTPException(status_code=404, detail=f"{target} has no active generation")
    return _generation_to_response(current)


@router.post(
    "/{target}/rollback",
    response_model=RollbackResponse,
    summary="Restore the previously active generation",
)
def rollback(target: str, config: GenswapConfig = Depends(get_config)):
    """Roll the target back. Rolling back twice in a row is a no-op."""
    require_target(config, target)
    try:
        restored = config.generation_store(target).rollback()
    except SwitchError as exc:
        raise HTTPException(status_code=409, detail=f"Manual action required: {exc}")
    return RollbackResponse(
        target=target,
        active_generation=_generation_to_response(restored) if restored else None,
    )
