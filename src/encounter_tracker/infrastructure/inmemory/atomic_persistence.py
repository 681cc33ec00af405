from __future__ import annotations

import copy
from collections.abc import Callable, Sequence

from encounter_tracker.domain.models.combat import CombatLogEntry
from encounter_tracker.domain.models.encounter import Encounter


def create_inmemory_atomic_persistor(encounter_repo, log_repo) -> Callable[..., None]:
    def _persist(
        encounter: Encounter,
        log_entries: Sequence[CombatLogEntry] = (),
        *,
        reset_log: bool = False,
        operations: Sequence[Callable[[object], None]] | None = None,
    ) -> None:
        snapshot = {
            "encounters": copy.deepcopy(getattr(encounter_repo, "_encounters", {})),
            "entries": copy.deepcopy(getattr(log_repo, "_entries", {})),
        }
        try:
            encounter_repo.save(encounter)
            if reset_log:
                log_repo.clear(encounter.id)
            if log_entries:
                log_repo.append(encounter.id, log_entries)
            for operation in operations or ():
                operation(None)
        except Exception:
            if hasattr(encounter_repo, "_encounters"):
                encounter_repo._encounters = snapshot["encounters"]
            if hasattr(log_repo, "_entries"):
                log_repo._entries = snapshot["entries"]
            raise

    return _persist
