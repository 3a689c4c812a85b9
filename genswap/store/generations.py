"""Generation store: immutable generations and the single active pointer.

Storage layout (one directory per target)::

    generations.jsonl   append-only generation records (never rewritten)
    state.json          pointer record: active id, status map, activation
                        history, rolled-back marker

Statuses live only in the pointer record, so a generation record is never
mutated after it is appended. Every pointer change is a single atomic
``os.replace`` of ``state.json`` under an exclusive target lock: a crash or
error during ``activate``/``rollback`` leaves the previous pointer in place.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from genswap.errors import StoreCorruptionError, SwitchError
from genswap.models.generation import Generation, GenerationStatus, Revision
from genswap.models.session import utc_now
from genswap.store._files import append_line, atomic_write_text, exclusive

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class _PointerState:
    active: int | None = None
    statuses: dict[int, GenerationStatus] = field(default_factory=dict)
    history: list[int] = field(default_factory=list)  # activation order
    rolled_back: bool = False  # last pointer change was a rollback

    def to_json(self) -> str:
        return json.dumps(
            {
                "active": self.active,
                "statuses": {str(k): v.value for k, v in self.statuses.items()},
                "history": self.history,
                "rolled_back": self.rolled_back,
            },
            indent=2,
        )

    def copy(self) -> _PointerState:
        return _PointerState(
            active=self.active,
            statuses=dict(self.statuses),
            history=list(self.history),
            rolled_back=self.rolled_back,
        )


class GenerationStore:
    """File-backed generation store for a single target system.

    ``stage``, ``activate``, ``rollback`` and ``bootstrap`` are serialised per
    target by a thread lock plus an ``fcntl`` file lock, so concurrent
    sessions cannot race on the active pointer.
    """

    LOG_FILE = "generations.jsonl"
    STATE_FILE = "state.json"

    def __init__(self, store_dir: str | Path, target_id: str = ""):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.target_id = target_id or self.store_dir.name
        self.log_path = self.store_dir / self.LOG_FILE
        self.state_path = self.store_dir / self.STATE_FILE

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current(self) -> Generation | None:
        """Return the active generation, or None if nothing was ever activated.

        Raises StoreCorruptionError if the on-disk state cannot be read.
        """
        state = self._read_state()
        if state.active is None:
            return None
        records = self._read_log()
        if state.active not in records:
            raise StoreCorruptionError(
                f"{self.target_id}: active generation {state.active} missing from log"
            )
        return self._materialise(records[state.active], state)

    def get(self, generation_id: int) -> Generation | None:
        records = self._read_log()
        if generation_id not in records:
            return None
        return self._materialise(records[generation_id], self._read_state())

    def list_generations(self) -> list[Generation]:
        """All generations in creation order."""
        state = self._read_state()
        records = self._read_log()
        return [self._materialise(records[k], state) for k in sorted(records)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def stage(self, revision: Revision, artifact_ref: str) -> Generation:
        """Record a new Pending generation. Does not affect ``current()``."""
        with exclusive(self.state_path):
            records = self._read_log()
            generation = Generation(
                id=max(records, default=0) + 1,
                revision=revision,
                artifact_ref=artifact_ref,
                status=GenerationStatus.PENDING,
                created_at=utc_now(),
            )
            record = generation.to_dict()
            del record["status"]
            append_line(self.log_path, json.dumps(record))
        logger.info(
            "%s: staged generation %d (revision %s)",
            self.target_id,
            generation.id,
            revision.id,
        )
        return generation

    def activate(
        self, generation: Generation, expected_active: int | None = _UNSET
    ) -> Generation:
        """Atomically make *generation* the active one.

        The prior active generation becomes Superseded. When
        *expected_active* is given the swap only happens if the pointer
        still refers to it (compare-and-swap).

        Raises SwitchError; the pointer is unchanged whenever it raises.
        """
        with exclusive(self.state_path):
            state = self._read_state()
            records = self._read_log()
            if generation.id not in records:
                raise SwitchError(f"generation {generation.id} was never staged")
            status = state.statuses.get(generation.id, GenerationStatus.PENDING)
            if status != GenerationStatus.PENDING:
                raise SwitchError(
                    f"generation {generation.id} is {status.value}, only pending "
                    "generations can be activated"
                )
            if expected_active is not _UNSET and state.active != expected_active:
                raise SwitchError(
                    f"active pointer moved: expected {expected_active}, "
                    f"found {state.active}"
                )

            new_state = state.copy()
            if state.active is not None:
                new_state.statuses[state.active] = GenerationStatus.SUPERSEDED
            new_state.statuses[generation.id] = GenerationStatus.ACTIVE
            new_state.history.append(generation.id)
            new_state.active = generation.id
            new_state.rolled_back = False
            self._write_state(new_state)

        logger.info(
            "%s: activated generation %d (previous: %s)",
            self.target_id,
            generation.id,
            state.active,
        )
        return generation.with_status(GenerationStatus.ACTIVE)

    def rollback(self, failed: Generation | None = None) -> Generation | None:
        """Atomically restore the most recent Superseded generation.

        If *failed* is given but never became active, it is marked
        RolledBack and the pointer is left alone. Calling ``rollback()``
        again with no activation in between is a no-op.

        Returns the generation that is active afterwards. Raises SwitchError
        if there is no prior generation to restore.
        """
        with exclusive(self.state_path):
            state = self._read_state()
            records = self._read_log()

            if failed is not None and failed.id != state.active:
                if failed.id not in records:
                    raise SwitchError(f"generation {failed.id} was never staged")
                status = state.statuses.get(failed.id, GenerationStatus.PENDING)
                if status == GenerationStatus.PENDING:
                    new_state = state.copy()
                    new_state.statuses[failed.id] = GenerationStatus.ROLLED_BACK
                    self._write_state(new_state)
                    state = new_state
                    logger.info(
                        "%s: discarded pending generation %d",
                        self.target_id,
                        failed.id,
                    )
                return self._active_of(state, records)

            if state.rolled_back:
                logger.info("%s: already rolled back, nothing to do", self.target_id)
                return self._active_of(state, records)

            if state.active is None:
                raise SwitchError(f"{self.target_id}: no active generation to roll back")

            previous = self._previous_superseded(state)
            if previous is None:
                raise SwitchError(
                    f"{self.target_id}: no prior generation to roll back to "
                    f"from generation {state.active}"
                )

            new_state = state.copy()
            new_state.statuses[state.active] = GenerationStatus.ROLLED_BACK
            new_state.statuses[previous] = GenerationStatus.ACTIVE
            new_state.history.remove(state.active)
            new_state.active = previous
            new_state.rolled_back = True
            self._write_state(new_state)

        logger.warning(
            "%s: rolled back generation %d, generation %d is active again",
            self.target_id,
            state.active,
            previous,
        )
        return self._active_of(new_state, records)

    def bootstrap(self, revision: Revision, artifact_ref: str) -> Generation:
        """Stage and activate the first-ever generation of a target."""
        if self.current() is not None:
            raise SwitchError(f"{self.target_id}: already has an active generation")
        generation = self.stage(revision, artifact_ref)
        return self.activate(generation, expected_active=None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _previous_superseded(self, state: _PointerState) -> int | None:
        for gen_id in reversed(state.history):
            if gen_id == state.active:
                continue
            if state.statuses.get(gen_id) == GenerationStatus.SUPERSEDED:
                return gen_id
        return None

    def _active_of(
        self, state: _PointerState, records: dict[int, dict]
    ) -> Generation | None:
        if state.active is None:
            return None
        return self._materialise(records[state.active], state)

    def _materialise(self, record: dict, state: _PointerState) -> Generation:
        gen_id = int(record["id"])
        status = state.statuses.get(gen_id, GenerationStatus.PENDING)
        return Generation.from_dict({**record, "status": status.value})

    def _read_log(self) -> dict[int, dict]:
        if not self.log_path.exists():
            return {}
        records: dict[int, dict] = {}
        try:
            with open(self.log_path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    data = json.loads(line)
                    records[int(data["id"])] = data
        except (OSError, ValueError, KeyError) as exc:
            raise StoreCorruptionError(
                f"{self.target_id}: unreadable generation log {self.log_path}: {exc}"
            ) from exc
        return records

    def _read_state(self) -> _PointerState:
        if not self.state_path.exists():
            return _PointerState()
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
            return _PointerState(
                active=data.get("active"),
                statuses={
                    int(k): GenerationStatus(v)
                    for k, v in data.get("statuses", {}).items()
                },
                history=[int(i) for i in data.get("history", [])],
                rolled_back=bool(data.get("rolled_back", False)),
            )
        except (OSError, ValueError, AttributeError) as exc:
            raise StoreCorruptionError(
                f"{self.target_id}: unreadable pointer record {self.state_path}: {exc}"
            ) from exc

    def _write_state(self, state: _PointerState) -> None:
        try:
            atomic_write_text(self.state_path, state.to_json())
        except OSError as exc:
            raise SwitchError(
                f"{self.target_id}: could not write pointer record: {exc}"
            ) from exc
