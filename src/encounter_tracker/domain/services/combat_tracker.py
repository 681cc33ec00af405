"""Turn-based combat state machine for a single encounter.

The tracker mutates ``encounter.combat_state`` and the encounter's
participants in place. Operations that cannot apply return ``False`` and
leave the encounter untouched; every applied operation appends a
``CombatLogEntry`` to ``tracker.log`` for the caller to persist.
"""

from __future__ import annotations

import copy
import random
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from encounter_tracker.domain.models.combat import (
    DEFAULT_LAIR_ACTION_INITIATIVE,
    LAIR_ACTION_ID,
    CombatActionType,
    CombatLogEntry,
    CombatPhase,
    CombatState,
    InitiativeEntry,
)
from encounter_tracker.domain.models.encounter import Encounter, EncounterStatus
from encounter_tracker.domain.services.initiative import (
    InitiativePreferences,
    roll_d20,
    sort_initiative_order,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


def combat_phase(encounter: Encounter) -> CombatPhase:
    state = encounter.combat_state
    if state.ended_at is not None or encounter.status == EncounterStatus.COMPLETED:
        return CombatPhase.ENDED
    if state.paused_at is not None and not state.is_active:
        return CombatPhase.PAUSED
    if state.is_active:
        return CombatPhase.ACTIVE
    return CombatPhase.INACTIVE


def validate_combat_state(state: CombatState) -> List[str]:
    errors: List[str] = []
    order = state.initiative_order

    if state.current_round < 0:
        errors.append("Current round cannot be negative")
    if state.current_turn < 0:
        errors.append("Current turn cannot be negative")
    if order and state.current_turn >= len(order):
        errors.append("Current turn index is out of bounds")

    active = [entry for entry in order if entry.is_active]
    if len(active) > 1:
        errors.append("Multiple participants marked as active")
    if state.is_active and order and not active:
        errors.append("No participant marked as active during active combat")

    if state.started_at and state.ended_at and state.started_at > state.ended_at:
        errors.append("Start time cannot be after end time")
    if state.started_at and state.paused_at and state.started_at > state.paused_at:
        errors.append("Start time cannot be after pause time")

    for entry in order:
        if entry.initiative < 0 and not entry.is_lair:
            errors.append(f"Participant {entry.participant_id} has negative initiative")
        if entry.dexterity < 0:
            errors.append(f"Participant {entry.participant_id} has negative dexterity")

    ids = [entry.participant_id for entry in order]
    if len(ids) != len(set(ids)):
        errors.append("Duplicate participants found in initiative order")
    return errors


class CombatTracker:
    def __init__(
        self,
        encounter: Encounter,
        *,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        preferences: Optional[InitiativePreferences] = None,
    ) -> None:
        self.encounter = encounter
        self.rng = rng or random.Random()
        self._clock = clock or utcnow
        self.preferences = preferences or InitiativePreferences()
        self.log: List[CombatLogEntry] = []

    @property
    def state(self) -> CombatState:
        return self.encounter.combat_state

    @property
    def phase(self) -> CombatPhase:
        return combat_phase(self.encounter)

    @property
    def current_entry(self) -> Optional[InitiativeEntry]:
        return self.state.current_entry

    @property
    def is_lair_turn(self) -> bool:
        entry = self.current_entry
        return bool(self.state.is_active and entry is not None and entry.is_lair)

    def _record(self, action: CombatActionType, participant_id: Optional[str] = None, **details: Any) -> None:
        self.log.append(
            CombatLogEntry(
                action=action,
                timestamp=self._clock(),
                round=self.state.current_round,
                turn=self.state.current_turn,
                participant_id=participant_id,
                details=details,
            )
        )

    def _record_turn_start(self) -> None:
        entry = self.current_entry
        if entry is None:
            return
        action = CombatActionType.LAIR_ACTION if entry.is_lair else CombatActionType.TURN_START
        self._record(action, entry.participant_id)

    def _sort(self, entries: List[InitiativeEntry]) -> List[InitiativeEntry]:
        return sort_initiative_order(entries, tiebreak_by_dexterity=self.preferences.tiebreak_by_dexterity)

    # -- lifecycle -----------------------------------------------------

    def start_combat(self, *, auto_roll: Optional[bool] = None) -> bool:
        encounter = self.encounter
        if self.state.is_active or not encounter.participants:
            return False

        if auto_roll is None:
            auto_roll = encounter.settings.auto_roll_initiative or self.preferences.auto_roll_on_combat_start
        now = self._clock()

        entries: List[InitiativeEntry] = []
        for participant in encounter.participants:
            if auto_roll:
                initiative = roll_d20(self.rng)
            else:
                initiative = max(0, int(participant.initiative or 0))
            entries.append(
                InitiativeEntry(
                    participant_id=participant.character_id,
                    initiative=initiative,
                    dexterity=participant.dexterity,
                )
            )
        if encounter.settings.enable_lair_actions:
            lair_initiative = encounter.settings.lair_action_initiative
            entries.append(
                InitiativeEntry(
                    participant_id=LAIR_ACTION_ID,
                    initiative=DEFAULT_LAIR_ACTION_INITIATIVE if lair_initiative is None else int(lair_initiative),
                    dexterity=0,
                )
            )

        order = self._sort(entries)
        order[0].is_active = True
        encounter.combat_state = CombatState(
            is_active=True,
            current_round=1,
            current_turn=0,
            initiative_order=order,
            started_at=now,
            turn_started_at=now,
        )
        encounter.status = EncounterStatus.ACTIVE

        self.log = []
        self._record(
            CombatActionType.COMBAT_STARTED,
            auto_roll_initiative=bool(auto_roll),
            participant_count=len(encounter.participants),
        )
        self._record(CombatActionType.ROUND_START)
        self._record_turn_start()
        return True

    def end_combat(self) -> bool:
        state = self.state
        if state.started_at is None or state.ended_at is not None:
            return False

        now = self._clock()
        # A pending pause discounts everything from start to the pause.
        paused_ms = _elapsed_ms(state.started_at, state.paused_at) if state.paused_at is not None else 0
        state.is_active = False
        state.ended_at = now
        state.paused_at = None
        state.total_duration = max(0, _elapsed_ms(state.started_at, now) - paused_ms)
        for entry in state.initiative_order:
            entry.is_active = False
            entry.has_acted = False
        self.encounter.status = EncounterStatus.COMPLETED

        self._record(
            CombatActionType.COMBAT_ENDED,
            total_rounds=state.current_round,
            total_duration=state.total_duration,
        )
        return True

    def pause_combat(self) -> bool:
        state = self.state
        if not state.is_active:
            return False
        state.is_active = False
        state.paused_at = self._clock()
        self._record(CombatActionType.COMBAT_PAUSED)
        return True

    def resume_combat(self) -> bool:
        state = self.state
        if state.is_active or state.paused_at is None or state.ended_at is not None:
            return False
        now = self._clock()
        paused_for = _elapsed_ms(state.paused_at, now)
        state.paused_duration += max(0, paused_for)
        if state.turn_started_at is not None:
            # The turn timer does not run while paused.
            state.turn_started_at = state.turn_started_at + (now - state.paused_at)
        state.is_active = True
        state.paused_at = None
        self._record(CombatActionType.COMBAT_RESUMED, paused_for_ms=paused_for)
        return True

    # -- turn order ----------------------------------------------------

    def next_turn(self) -> bool:
        state = self.state
        order = state.initiative_order
        if not state.is_active or not order:
            return False

        current = state.current_entry
        if current is not None:
            if not current.is_delayed:
                current.has_acted = True
            current.is_active = False
            self._record(CombatActionType.TURN_END, current.participant_id)

        state.current_turn += 1
        if state.current_turn >= len(order):
            self._record(CombatActionType.ROUND_END)
            state.current_turn = 0
            state.current_round += 1
            for entry in order:
                entry.has_acted = False
                entry.is_delayed = False
            self._record(CombatActionType.ROUND_START)

        order[state.current_turn].is_active = True
        state.turn_started_at = self._clock()
        self._record_turn_start()
        return True

    def previous_turn(self) -> bool:
        state = self.state
        order = state.initiative_order
        if not state.is_active or not order:
            return False

        current = state.current_entry
        if current is not None:
            current.is_active = False

        state.current_turn -= 1
        if state.current_turn < 0:
            state.current_turn = len(order) - 1
            state.current_round = max(1, state.current_round - 1)

        previous = order[state.current_turn]
        previous.is_active = True
        previous.has_acted = False
        state.turn_started_at = self._clock()
        self._record_turn_start()
        return True

    def set_initiative(self, participant_id: str, initiative: int, dexterity: Optional[int] = None) -> bool:
        state = self.state
        entry = state.entry_for(participant_id)
        if entry is None:
            return False

        entry.initiative = int(initiative)
        if dexterity is not None:
            entry.dexterity = int(dexterity)
        participant = self.encounter.get_participant(participant_id)
        if participant is not None:
            participant.initiative = entry.initiative
            if dexterity is not None:
                participant.dexterity = entry.dexterity

        state.initiative_order = self._sort(state.initiative_order)
        for index, candidate in enumerate(state.initiative_order):
            if candidate.is_active:
                state.current_turn = index
                break
        self._record(
            CombatActionType.INITIATIVE_SET,
            participant_id,
            initiative=entry.initiative,
            dexterity=entry.dexterity,
        )
        return True

    def delay_turn(self, participant_id: str) -> bool:
        """The acting participant holds its turn and the next one starts."""
        current = self.current_entry
        if not self.state.is_active or current is None or current.participant_id != participant_id or current.is_lair:
            return False
        current.is_delayed = True
        self._record(CombatActionType.TURN_DELAYED, participant_id)
        return self.next_turn()

    def resume_delayed(self, participant_id: str) -> bool:
        """A delayed participant acts now, ahead of the current turn."""
        state = self.state
        index = state.index_of(participant_id)
        if not state.is_active or index < 0:
            return False
        delayed = state.initiative_order[index]
        if not delayed.is_delayed:
            return False

        current = state.current_entry
        del state.initiative_order[index]
        if index < state.current_turn:
            state.current_turn -= 1
        if current is not None:
            current.is_active = False
            delayed.initiative = current.initiative
        delayed.is_delayed = False
        delayed.has_acted = False
        delayed.is_active = True
        state.initiative_order.insert(state.current_turn, delayed)
        state.turn_started_at = self._clock()
        self._record_turn_start()
        return True

    def ready_action(self, participant_id: str, description: str) -> bool:
        entry = self.state.entry_for(participant_id)
        text = str(description or "").strip()
        if entry is None or entry.is_lair or not text:
            return False
        entry.ready_action = text
        return True

    def clear_ready_action(self, participant_id: str) -> bool:
        entry = self.state.entry_for(participant_id)
        if entry is None or entry.ready_action is None:
            return False
        entry.ready_action = None
        return True

    def round_time_remaining(self, now: Optional[datetime] = None) -> Optional[int]:
        """Seconds left in the current turn window, or None without a limit."""
        limit = self.encounter.settings.round_time_limit
        state = self.state
        if not limit or state.turn_started_at is None or state.ended_at is not None:
            return None
        reference = state.paused_at or now or self._clock()
        elapsed = (reference - state.turn_started_at).total_seconds()
        return max(0, int(limit - elapsed))

    # -- hit points and conditions -------------------------------------

    def apply_damage(self, participant_id: str, amount: int) -> bool:
        participant = self.encounter.get_participant(participant_id)
        if participant is None or amount < 0:
            return False
        absorbed = min(amount, participant.temporary_hit_points)
        participant.temporary_hit_points -= absorbed
        participant.current_hit_points = max(0, participant.current_hit_points - (amount - absorbed))
        self._record(
            CombatActionType.DAMAGE_DEALT,
            participant_id,
            amount=amount,
            absorbed_by_temporary=absorbed,
            current_hit_points=participant.current_hit_points,
        )
        return True

    def apply_healing(self, participant_id: str, amount: int) -> bool:
        participant = self.encounter.get_participant(participant_id)
        if participant is None or amount < 0:
            return False
        before = participant.current_hit_points
        participant.current_hit_points = min(participant.max_hit_points, before + amount)
        self._record(
            CombatActionType.HEALING_APPLIED,
            participant_id,
            amount=amount,
            healed=participant.current_hit_points - before,
            current_hit_points=participant.current_hit_points,
        )
        return True

    def set_temporary_hp(self, participant_id: str, amount: int) -> bool:
        participant = self.encounter.get_participant(participant_id)
        if participant is None or amount < 0:
            return False
        participant.temporary_hit_points = max(participant.temporary_hit_points, amount)
        self._record(
            CombatActionType.TEMPORARY_HP_SET,
            participant_id,
            temporary_hit_points=participant.temporary_hit_points,
        )
        return True

    def add_condition(self, participant_id: str, condition: str) -> bool:
        participant = self.encounter.get_participant(participant_id)
        name = str(condition or "").strip().lower()
        if participant is None or not name or name in participant.conditions:
            return False
        participant.conditions.append(name)
        self._record(CombatActionType.CONDITION_ADDED, participant_id, condition=name)
        return True

    def remove_condition(self, participant_id: str, condition: str) -> bool:
        participant = self.encounter.get_participant(participant_id)
        name = str(condition or "").strip().lower()
        if participant is None or name not in participant.conditions:
            return False
        participant.conditions.remove(name)
        self._record(CombatActionType.CONDITION_REMOVED, participant_id, condition=name)
        return True

    # -- snapshots -----------------------------------------------------

    def snapshot(self) -> CombatState:
        return copy.deepcopy(self.state)

    def restore(self, state: CombatState) -> List[str]:
        errors = validate_combat_state(state)
        if errors:
            return errors
        known = {p.character_id for p in self.encounter.participants} | {LAIR_ACTION_ID}
        unknown = [entry.participant_id for entry in state.initiative_order if entry.participant_id not in known]
        if unknown:
            return [f"Unknown participant in snapshot: {participant_id}" for participant_id in unknown]
        self.encounter.combat_state = copy.deepcopy(state)
        return []
