"""Combat orchestration: load encounter, drive the tracker, persist, publish.

Every mutating call runs the same pipeline. The encounter is loaded with an
owner check, the ``CombatTracker`` applies the change, and the encounter plus
the new combat log entries are written through the atomic persistor. Domain
events go out only after the write succeeded.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from encounter_tracker.application.dtos import TurnView
from encounter_tracker.application.services.event_bus import EventBus
from encounter_tracker.domain.errors import (
    CombatStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from encounter_tracker.domain.events import CombatEnded, CombatStarted, ParticipantDefeated, TurnAdvanced
from encounter_tracker.domain.models.combat import (
    LAIR_ACTION_ID,
    CombatActionType,
    CombatLogEntry,
    CombatSnapshot,
    InitiativeEntry,
)
from encounter_tracker.domain.models.encounter import Encounter, ParticipantReference
from encounter_tracker.domain.repositories import (
    CharacterRepository,
    CombatLogRepository,
    CombatSnapshotRepository,
    EncounterRepository,
)
from encounter_tracker.domain.services.combat_tracker import CombatTracker, combat_phase, validate_combat_state
from encounter_tracker.domain.services.damage import (
    DamageCalculator,
    DamageRoll,
    DamageTarget,
    DamageType,
    DistributionMethod,
    ResistanceType,
    TargetDamage,
    apply_resistance,
    distribute_damage,
    resistance_for,
)
from encounter_tracker.domain.services.initiative import (
    InitiativePreferences,
    RolledInitiative,
    can_reroll,
    reroll_initiative,
    roll_bulk_initiative,
    roll_initiative_with_modifier,
    sort_initiative_order,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DamageApplied:
    participant_id: str
    original_damage: int
    final_damage: int
    resistance: ResistanceType
    current_hit_points: int
    temporary_hit_points: int
    defeated: bool


class CombatService:
    def __init__(
        self,
        encounter_repo: EncounterRepository,
        log_repo: CombatLogRepository,
        snapshot_repo: CombatSnapshotRepository,
        atomic_persistor: Callable[..., None],
        *,
        character_repo: Optional[CharacterRepository] = None,
        event_bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        preferences: Optional[InitiativePreferences] = None,
    ) -> None:
        self.encounter_repo = encounter_repo
        self.log_repo = log_repo
        self.snapshot_repo = snapshot_repo
        self.atomic_persistor = atomic_persistor
        self.character_repo = character_repo
        self.event_bus = event_bus
        self.rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.preferences = preferences or InitiativePreferences()
        self.damage_calculator = DamageCalculator(self.rng)

    # -- plumbing ----------------------------------------------------------

    def _load(self, encounter_id: str) -> Encounter:
        encounter = self.encounter_repo.get(encounter_id) if encounter_id else None
        if encounter is None:
            raise NotFoundError("Encounter not found", code="ENCOUNTER_NOT_FOUND")
        return encounter

    def _owned(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self._load(encounter_id)
        if not encounter.can_edit(user_id):
            raise PermissionDeniedError("Only the encounter owner can run combat")
        return encounter

    def _viewable(self, encounter_id: str, user_id: Optional[str]) -> Encounter:
        encounter = self._load(encounter_id)
        if not encounter.can_view(user_id):
            raise PermissionDeniedError("You do not have access to this encounter")
        return encounter

    def _tracker(self, encounter: Encounter) -> CombatTracker:
        return CombatTracker(encounter, rng=self.rng, clock=self._clock, preferences=self.preferences)

    @staticmethod
    def _require_active(encounter: Encounter) -> None:
        if not encounter.combat_state.is_active:
            raise CombatStateError("Combat is not active", code="COMBAT_NOT_ACTIVE")

    @staticmethod
    def _participant(encounter: Encounter, participant_id: str) -> ParticipantReference:
        participant = encounter.get_participant(participant_id)
        if participant is None:
            raise NotFoundError("Participant not found", code="PARTICIPANT_NOT_FOUND")
        return participant

    def _commit(
        self,
        encounter: Encounter,
        entries: Sequence[CombatLogEntry] = (),
        *,
        reset_log: bool = False,
    ) -> Encounter:
        encounter.version += 1
        encounter.updated_at = self._clock()
        self.atomic_persistor(encounter, list(entries), reset_log=reset_log)
        return encounter

    def _publish(self, *events: object) -> None:
        if self.event_bus is None:
            return
        for event in events:
            self.event_bus.publish(event)

    def _entry(self, encounter: Encounter, action: CombatActionType, participant_id: Optional[str], **details: Any):
        state = encounter.combat_state
        return CombatLogEntry(
            action=action,
            timestamp=self._clock(),
            round=state.current_round,
            turn=state.current_turn,
            participant_id=participant_id,
            details=details,
        )

    def _turn_event(self, encounter: Encounter, tracker: CombatTracker) -> TurnAdvanced:
        state = encounter.combat_state
        current = state.current_entry
        return TurnAdvanced(
            encounter_id=str(encounter.id),
            round_number=state.current_round,
            turn_index=state.current_turn,
            participant_id=current.participant_id if current else None,
            is_lair_turn=tracker.is_lair_turn,
        )

    def _reorder(self, encounter: Encounter, order: List[InitiativeEntry]) -> None:
        """Install a new order and keep ``current_turn`` on the active entry."""
        state = encounter.combat_state
        state.initiative_order = order
        for index, entry in enumerate(order):
            if entry.is_active:
                state.current_turn = index
                break

    def _dexterity_for(self, participant: ParticipantReference) -> int:
        if self.character_repo is not None:
            character = self.character_repo.get(participant.character_id)
            if character is not None:
                return character.ability_scores.dexterity
        return participant.dexterity

    # -- lifecycle ---------------------------------------------------------

    def start_combat(self, encounter_id: str, user_id: str, *, auto_roll: Optional[bool] = None) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        if encounter.combat_state.is_active:
            raise CombatStateError("Combat is already active", code="COMBAT_ALREADY_ACTIVE")
        if not encounter.participants:
            raise CombatStateError("Cannot start combat without participants", code="NO_PARTICIPANTS")
        tracker = self._tracker(encounter)
        rolled = auto_roll if auto_roll is not None else (
            encounter.settings.auto_roll_initiative or self.preferences.auto_roll_on_combat_start
        )
        if not tracker.start_combat(auto_roll=auto_roll):
            raise CombatStateError("Combat could not be started")
        self._commit(encounter, tracker.log, reset_log=True)
        logger.info(
            "Combat started",
            extra={"encounter_id": encounter.id, "participants": len(encounter.participants), "auto_roll": rolled},
        )
        self._publish(
            CombatStarted(
                encounter_id=str(encounter.id),
                owner_id=encounter.owner_id,
                participant_count=len(encounter.participants),
                auto_rolled=bool(rolled),
            ),
            self._turn_event(encounter, tracker),
        )
        return encounter

    def end_combat(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        tracker = self._tracker(encounter)
        if not tracker.end_combat():
            raise CombatStateError("Combat has not started or has already ended", code="COMBAT_NOT_ACTIVE")
        self._commit(encounter, tracker.log)
        state = encounter.combat_state
        logger.info(
            "Combat ended",
            extra={"encounter_id": encounter.id, "rounds": state.current_round, "duration_ms": state.total_duration},
        )
        self._publish(
            CombatEnded(
                encounter_id=str(encounter.id),
                owner_id=encounter.owner_id,
                total_rounds=state.current_round,
                total_duration_ms=state.total_duration,
                defeated=[p.character_id for p in encounter.participants if p.is_defeated],
            )
        )
        return encounter

    def pause_combat(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        tracker = self._tracker(encounter)
        if not tracker.pause_combat():
            raise CombatStateError("Only active combat can be paused", code="COMBAT_NOT_ACTIVE")
        return self._commit(encounter, tracker.log)

    def resume_combat(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        tracker = self._tracker(encounter)
        if not tracker.resume_combat():
            raise CombatStateError("Combat is not paused", code="COMBAT_NOT_PAUSED")
        return self._commit(encounter, tracker.log)

    # -- turns -------------------------------------------------------------

    def next_turn(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        tracker = self._tracker(encounter)
        if not tracker.next_turn():
            raise CombatStateError("Combat is not active", code="COMBAT_NOT_ACTIVE")
        self._commit(encounter, tracker.log)
        self._publish(self._turn_event(encounter, tracker))
        return encounter

    def previous_turn(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        tracker = self._tracker(encounter)
        if not tracker.previous_turn():
            raise CombatStateError("Combat is not active", code="COMBAT_NOT_ACTIVE")
        self._commit(encounter, tracker.log)
        self._publish(self._turn_event(encounter, tracker))
        return encounter

    def delay_turn(self, encounter_id: str, user_id: str, participant_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        self._require_active(encounter)
        tracker = self._tracker(encounter)
        if not tracker.delay_turn(participant_id):
            raise CombatStateError("Only the acting participant can delay", code="NOT_CURRENT_TURN")
        self._commit(encounter, tracker.log)
        self._publish(self._turn_event(encounter, tracker))
        return encounter

    def resume_delayed(self, encounter_id: str, user_id: str, participant_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        self._require_active(encounter)
        tracker = self._tracker(encounter)
        if not tracker.resume_delayed(participant_id):
            raise CombatStateError("Participant is not delaying", code="NOT_DELAYED")
        self._commit(encounter, tracker.log)
        self._publish(self._turn_event(encounter, tracker))
        return encounter

    def ready_action(self, encounter_id: str, user_id: str, participant_id: str, description: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        tracker = self._tracker(encounter)
        if not tracker.ready_action(participant_id, description):
            raise ValidationError("A readied action needs a participant in the turn order and a description")
        return self._commit(encounter, tracker.log)

    def clear_ready_action(self, encounter_id: str, user_id: str, participant_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        tracker = self._tracker(encounter)
        if not tracker.clear_ready_action(participant_id):
            raise NotFoundError("No readied action for this participant", code="NO_READY_ACTION")
        return self._commit(encounter, tracker.log)

    # -- initiative --------------------------------------------------------

    def set_initiative(
        self,
        encounter_id: str,
        user_id: str,
        participant_id: str,
        initiative: int,
        dexterity: Optional[int] = None,
    ) -> Encounter:
        if int(initiative) < 0 or (dexterity is not None and int(dexterity) < 0):
            raise ValidationError("Initiative and dexterity cannot be negative")
        encounter = self._owned(encounter_id, user_id)
        participant = self._participant(encounter, participant_id)
        tracker = self._tracker(encounter)
        if tracker.set_initiative(participant_id, int(initiative), dexterity):
            return self._commit(encounter, tracker.log)
        # Before combat the value is simply stored on the participant.
        participant.initiative = int(initiative)
        if dexterity is not None:
            participant.dexterity = int(dexterity)
        return self._commit(encounter)

    def roll_initiative(
        self, encounter_id: str, user_id: str, participant_id: Optional[str] = None
    ) -> Tuple[Encounter, List[RolledInitiative]]:
        """Roll for one participant or everyone, syncing a running turn order."""
        encounter = self._owned(encounter_id, user_id)
        if participant_id is not None:
            targets = [self._participant(encounter, participant_id)]
        else:
            targets = list(encounter.participants)
        if not targets:
            raise CombatStateError("No participants to roll initiative for", code="NO_PARTICIPANTS")
        for participant in targets:
            participant.dexterity = self._dexterity_for(participant)

        rolled = roll_bulk_initiative(
            targets, self.rng, tiebreak_by_dexterity=self.preferences.tiebreak_by_dexterity
        )
        state = encounter.combat_state
        entries: List[CombatLogEntry] = []
        for result in rolled:
            encounter.get_participant(result.entry.participant_id).initiative = result.entry.initiative
            running = state.entry_for(result.entry.participant_id)
            if running is not None:
                running.initiative = result.entry.initiative
                running.dexterity = result.entry.dexterity
            entries.append(
                self._entry(
                    encounter,
                    CombatActionType.INITIATIVE_SET,
                    result.entry.participant_id,
                    initiative=result.roll.total,
                    d20_roll=result.roll.d20_roll,
                    modifier=result.roll.modifier,
                )
            )
        if state.initiative_order:
            self._reorder(
                encounter,
                sort_initiative_order(
                    state.initiative_order, tiebreak_by_dexterity=self.preferences.tiebreak_by_dexterity
                ),
            )
        self._commit(encounter, entries)
        return encounter, rolled

    def reroll_initiative(self, encounter_id: str, user_id: str, participant_id: Optional[str] = None) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        state = encounter.combat_state
        if not state.initiative_order:
            raise CombatStateError("There is no initiative order to reroll", code="COMBAT_NOT_STARTED")
        if participant_id is not None:
            participant = self._participant(encounter, participant_id)
            if state.entry_for(participant_id) is None:
                raise NotFoundError("Participant is not in the initiative order", code="PARTICIPANT_NOT_FOUND")
            if not can_reroll(self.preferences, participant.type):
                raise PermissionDeniedError("Player rerolls are disabled", code="REROLL_NOT_ALLOWED")

        order = reroll_initiative(
            state.initiative_order,
            self.rng,
            participant_id,
            tiebreak_by_dexterity=self.preferences.tiebreak_by_dexterity,
        )
        self._reorder(encounter, order)
        entries = []
        for entry in order:
            participant = encounter.get_participant(entry.participant_id)
            if participant is None or (participant_id is not None and entry.participant_id != participant_id):
                continue
            participant.initiative = entry.initiative
            entries.append(
                self._entry(encounter, CombatActionType.INITIATIVE_SET, entry.participant_id, initiative=entry.initiative)
            )
        return self._commit(encounter, entries)

    def add_to_initiative(
        self, encounter_id: str, user_id: str, participant_id: str, initiative: Optional[int] = None
    ) -> Encounter:
        """Bring a participant added mid-fight into the running order."""
        encounter = self._owned(encounter_id, user_id)
        self._require_active(encounter)
        participant = self._participant(encounter, participant_id)
        state = encounter.combat_state
        if state.entry_for(participant_id) is not None:
            raise CombatStateError("Participant is already in the initiative order", code="ALREADY_IN_COMBAT")
        if initiative is None:
            initiative = roll_initiative_with_modifier(participant.dexterity, self.rng).total
        participant.initiative = max(0, int(initiative))
        state.initiative_order.append(
            InitiativeEntry(participant_id=participant_id, initiative=participant.initiative, dexterity=participant.dexterity)
        )
        self._reorder(
            encounter,
            sort_initiative_order(state.initiative_order, tiebreak_by_dexterity=self.preferences.tiebreak_by_dexterity),
        )
        entry = self._entry(
            encounter, CombatActionType.PARTICIPANT_ADDED, participant_id, initiative=participant.initiative
        )
        return self._commit(encounter, [entry])

    def remove_from_combat(self, encounter_id: str, user_id: str, participant_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        participant = self._participant(encounter, participant_id)
        entry = self._entry(encounter, CombatActionType.PARTICIPANT_REMOVED, participant_id, name=participant.name)
        encounter.remove_participant(participant_id)
        return self._commit(encounter, [entry])

    # -- hit points and conditions ----------------------------------------

    def apply_damage(
        self,
        encounter_id: str,
        user_id: str,
        participant_id: str,
        amount: int,
        *,
        damage_type: Optional[str] = None,
        resistance: Optional[str] = None,
        resistances: Sequence[str] = (),
        immunities: Sequence[str] = (),
        vulnerabilities: Sequence[str] = (),
    ) -> DamageApplied:
        if int(amount) < 0:
            raise ValidationError("Damage must be a non-negative number")
        encounter = self._owned(encounter_id, user_id)
        participant = self._participant(encounter, participant_id)
        try:
            if resistance is not None:
                applied = ResistanceType(resistance)
            elif damage_type is not None:
                applied = resistance_for(
                    DamageType(damage_type),
                    resistances=resistances,
                    immunities=immunities,
                    vulnerabilities=vulnerabilities,
                )
            else:
                applied = ResistanceType.NORMAL
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        resisted = apply_resistance(int(amount), applied)

        was_standing = not participant.is_defeated
        tracker = self._tracker(encounter)
        tracker.apply_damage(participant_id, resisted.final_damage)
        if damage_type is not None and tracker.log:
            tracker.log[-1].details.update({"damage_type": damage_type, "resistance": applied.value})
        self._commit(encounter, tracker.log)
        defeated = was_standing and participant.is_defeated
        if defeated:
            self._announce_defeat(encounter, participant)
        return DamageApplied(
            participant_id=participant_id,
            original_damage=resisted.original_damage,
            final_damage=resisted.final_damage,
            resistance=applied,
            current_hit_points=participant.current_hit_points,
            temporary_hit_points=participant.temporary_hit_points,
            defeated=defeated,
        )

    def apply_rolled_damage(
        self,
        encounter_id: str,
        user_id: str,
        roll: DamageRoll,
        targets: Sequence[DamageTarget],
        *,
        critical: bool = False,
        method: DistributionMethod = DistributionMethod.EQUAL,
    ) -> List[TargetDamage]:
        """Roll once and deal the result to several participants in a single save."""
        encounter = self._owned(encounter_id, user_id)
        participants = [self._participant(encounter, target.id) for target in targets]
        result = self.damage_calculator.calculate_critical(roll) if critical else self.damage_calculator.calculate(roll)
        outcomes = distribute_damage(result, targets, method)

        standing = {participant.character_id for participant in participants if not participant.is_defeated}
        tracker = self._tracker(encounter)
        for outcome in outcomes:
            if tracker.apply_damage(outcome.target_id, outcome.final_damage):
                tracker.log[-1].details.update(
                    {"damage_type": result.damage_type.value, "resistance": outcome.resistance_applied.value}
                )
        self._commit(encounter, tracker.log)

        for participant in participants:
            if participant.character_id in standing and participant.is_defeated:
                standing.discard(participant.character_id)
                self._announce_defeat(encounter, participant)
        return outcomes

    def _announce_defeat(self, encounter: Encounter, participant: ParticipantReference) -> None:
        logger.info(
            "Participant defeated",
            extra={"encounter_id": encounter.id, "participant_id": participant.character_id},
        )
        self._publish(
            ParticipantDefeated(
                encounter_id=str(encounter.id),
                participant_id=participant.character_id,
                name=participant.name,
                round_number=encounter.combat_state.current_round,
            )
        )

    def apply_healing(self, encounter_id: str, user_id: str, participant_id: str, amount: int) -> Encounter:
        if int(amount) < 0:
            raise ValidationError("Healing must be a non-negative number")
        encounter = self._owned(encounter_id, user_id)
        self._participant(encounter, participant_id)
        tracker = self._tracker(encounter)
        tracker.apply_healing(participant_id, int(amount))
        return self._commit(encounter, tracker.log)

    def set_temporary_hp(self, encounter_id: str, user_id: str, participant_id: str, amount: int) -> Encounter:
        if int(amount) < 0:
            raise ValidationError("Temporary hit points cannot be negative")
        encounter = self._owned(encounter_id, user_id)
        self._participant(encounter, participant_id)
        tracker = self._tracker(encounter)
        tracker.set_temporary_hp(participant_id, int(amount))
        return self._commit(encounter, tracker.log)

    def add_condition(self, encounter_id: str, user_id: str, participant_id: str, condition: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        participant = self._participant(encounter, participant_id)
        name = str(condition or "").strip()
        if not name or len(name) > 50:
            raise ValidationError("Condition must be between 1 and 50 characters")
        if len(participant.conditions) >= 20:
            raise ValidationError("A participant can have at most 20 conditions")
        tracker = self._tracker(encounter)
        if not tracker.add_condition(participant_id, name):
            raise CombatStateError("Participant already has this condition", code="CONDITION_EXISTS")
        return self._commit(encounter, tracker.log)

    def remove_condition(self, encounter_id: str, user_id: str, participant_id: str, condition: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        self._participant(encounter, participant_id)
        tracker = self._tracker(encounter)
        if not tracker.remove_condition(participant_id, condition):
            raise NotFoundError("Participant does not have this condition", code="CONDITION_NOT_FOUND")
        return self._commit(encounter, tracker.log)

    # -- reading -----------------------------------------------------------

    def history(self, encounter_id: str, user_id: str) -> List[CombatLogEntry]:
        self._viewable(encounter_id, user_id)
        return self.log_repo.list(encounter_id)

    def validate(self, encounter_id: str, user_id: str) -> List[str]:
        return validate_combat_state(self._viewable(encounter_id, user_id).combat_state)

    def turn_view(self, encounter_id: str, user_id: Optional[str]) -> TurnView:
        encounter = self._viewable(encounter_id, user_id)
        return build_turn_view(encounter, viewer_id=user_id, now=self._clock())

    # -- snapshots ---------------------------------------------------------

    def save_snapshot(self, encounter_id: str, user_id: str, label: str = "") -> CombatSnapshot:
        encounter = self._owned(encounter_id, user_id)
        snapshot = CombatSnapshot(
            encounter_id=str(encounter.id),
            saved_at=self._clock(),
            state=self._tracker(encounter).snapshot(),
            label=str(label or "")[:100],
        )
        self.snapshot_repo.save(snapshot)
        return snapshot

    def restore_snapshot(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self._owned(encounter_id, user_id)
        snapshot = self.snapshot_repo.latest(encounter_id)
        if snapshot is None:
            raise NotFoundError("No saved combat state for this encounter", code="SNAPSHOT_NOT_FOUND")
        errors = self._tracker(encounter).restore(snapshot.state)
        if errors:
            raise ValidationError("Saved combat state is invalid", code="INVALID_SNAPSHOT", details=errors)
        logger.info("Combat state restored", extra={"encounter_id": encounter.id, "saved_at": snapshot.saved_at})
        return self._commit(encounter)


def build_turn_view(encounter: Encounter, *, viewer_id: Optional[str] = None, now: Optional[datetime] = None) -> TurnView:
    """Flatten the initiative order for display.

    Participants marked invisible are left out for anyone but the owner.
    """
    state = encounter.combat_state
    is_owner = viewer_id is not None and encounter.owner_id == viewer_id
    order: List[Dict[str, Any]] = []
    for entry in state.initiative_order:
        row: Dict[str, Any] = {
            "participant_id": entry.participant_id,
            "initiative": entry.initiative,
            "dexterity": entry.dexterity,
            "is_active": entry.is_active,
            "has_acted": entry.has_acted,
            "is_delayed": entry.is_delayed,
            "ready_action": entry.ready_action,
            "is_lair": entry.is_lair,
        }
        if entry.participant_id == LAIR_ACTION_ID:
            row["name"] = "Lair Action"
        else:
            participant = encounter.get_participant(entry.participant_id)
            if participant is None:
                continue
            if not participant.is_visible and not is_owner:
                continue
            row.update(
                {
                    "name": participant.name,
                    "type": participant.type.value,
                    "is_player": participant.is_player,
                    "current_hit_points": participant.current_hit_points,
                    "max_hit_points": participant.max_hit_points,
                    "temporary_hit_points": participant.temporary_hit_points,
                    "armor_class": participant.armor_class,
                    "conditions": list(participant.conditions),
                    "is_defeated": participant.is_defeated,
                }
            )
        order.append(row)

    current = state.current_entry
    tracker = CombatTracker(encounter)
    return TurnView(
        encounter_id=str(encounter.id),
        phase=combat_phase(encounter).value,
        round=state.current_round,
        turn=state.current_turn,
        is_lair_turn=tracker.is_lair_turn,
        current_participant_id=(
            current.participant_id if current is not None and state.started_at is not None and state.ended_at is None else None
        ),
        time_remaining=tracker.round_time_remaining(now),
        order=order,
    )
