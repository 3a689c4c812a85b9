"""Revisions and generations.

A Revision is the desired-state input fetched from a configuration source.
A Generation is an immutable built system state recorded by the
GenerationStore; its status is tracked by the store's pointer record.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


def content_hash(payload: dict[str, Any], components: tuple[str, ...] = ()) -> str:
    """Return a short stable hash of a revision payload and component set."""
    blob = json.dumps(
        {"components": sorted(components), "payload": payload},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class Revision:
    """An identified desired-state configuration input. Immutable once fetched."""

    id: str
    components: tuple[str, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict, compare=False)
    source_ref: str = ""  # e.g. commit sha or file path the revision came from
    base_id: str = ""  # fetched revision a remediated revision derives from
    patches: tuple[str, ...] = ()

    @property
    def origin_id(self) -> str:
        """The id of the revision as fetched, before any remediation."""
        return self.base_id or self.id

    def derive(self, payload: dict[str, Any], patch_name: str) -> Revision:
        """Return a new revision with *payload* and *patch_name* recorded."""
        return Revision(
            id=content_hash(payload, self.components),
            components=self.components,
            payload=payload,
            source_ref=self.source_ref,
            base_id=self.origin_id,
            patches=self.patches + (patch_name,),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "components": list(self.components),
            "payload": self.payload,
            "source_ref": self.source_ref,
            "base_id": self.base_id,
            "patches": list(self.patches),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Revision:
        return cls(
            id=data["id"],
            components=tuple(data.get("components", [])),
            payload=data.get("payload", {}),
            source_ref=data.get("source_ref", ""),
            base_id=data.get("base_id", ""),
            patches=tuple(data.get("patches", [])),
        )


class GenerationStatus(Enum):
    """Lifecycle status of a generation."""

    PENDING = "pending"
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class Generation:
    """One immutable, fully built candidate or active system state."""

    id: int
    revision: Revision
    artifact_ref: str
    status: GenerationStatus = GenerationStatus.PENDING
    created_at: str = ""  # ISO 8601

    def with_status(self, status: GenerationStatus) -> Generation:
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "revision": self.revision.to_dict(),
            "artifact_ref": self.artifact_ref,
            "status": self.status.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Generation:
        return cls(
            id=int(data["id"]),
            revision=Revision.from_dict(data["revision"]),
            artifact_ref=data.get("artifact_ref", ""),
            status=GenerationStatus(data.get("status", "pending")),
            created_at=data.get("created_at", ""),
        )
