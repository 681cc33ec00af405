from __future__ import annotations

from collections.abc import Callable, Sequence

from encounter_tracker.domain.models.combat import CombatLogEntry
from encounter_tracker.domain.models.encounter import Encounter
from encounter_tracker.infrastructure.db.sql.repos import append_log_rows, clear_log_rows, save_encounter_row


def create_sql_atomic_persistor(session_factory=None) -> Callable[..., None]:
    def _persist(
        encounter: Encounter,
        log_entries: Sequence[CombatLogEntry] = (),
        *,
        reset_log: bool = False,
        operations: Sequence[Callable[[object], None]] | None = None,
    ) -> None:
        """Persist the encounter and its new log entries in one DB transaction."""
        factory = session_factory
        if factory is None:
            from encounter_tracker.infrastructure.db.connection import SessionLocal

            factory = SessionLocal
        with factory.begin() as session:
            save_encounter_row(session, encounter)
            if reset_log:
                clear_log_rows(session, encounter.id)
            if log_entries:
                append_log_rows(session, encounter.id, log_entries)
            for operation in operations or ():
                operation(session)

    return _persist
