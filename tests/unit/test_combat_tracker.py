import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.domain.models.combat import LAIR_ACTION_ID, CombatActionType, CombatPhase, InitiativeEntry
from encounter_tracker.domain.models.encounter import (
    Encounter,
    EncounterDifficulty,
    EncounterSettings,
    EncounterStatus,
    ParticipantReference,
    ParticipantType,
)
from encounter_tracker.domain.services.combat_tracker import CombatTracker, validate_combat_state


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


def _encounter(**settings) -> Encounter:
    return Encounter(
        id="enc-1",
        owner_id="dm",
        name="Goblin Ambush",
        participants=[
            ParticipantReference(character_id="aria", name="Aria", type=ParticipantType.PC, initiative=15,
                                 dexterity=14, max_hit_points=20, current_hit_points=20, is_player=True),
            ParticipantReference(character_id="gob", name="Goblin", type=ParticipantType.MONSTER, initiative=15,
                                 dexterity=16, max_hit_points=7, current_hit_points=7),
            ParticipantReference(character_id="bran", name="Bran", type=ParticipantType.PC, initiative=8,
                                 dexterity=10, max_hit_points=24, current_hit_points=24, is_player=True),
        ],
        settings=EncounterSettings(**settings),
    )


def _order(encounter: Encounter) -> list:
    return [entry.participant_id for entry in encounter.combat_state.initiative_order]


class CombatLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()

    def test_start_combat_builds_sorted_order_and_activates_first(self) -> None:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=self.clock)

        self.assertTrue(tracker.start_combat())

        state = encounter.combat_state
        self.assertEqual(["gob", "aria", "bran"], _order(encounter))
        self.assertTrue(state.initiative_order[0].is_active)
        self.assertEqual(1, state.current_round)
        self.assertEqual(0, state.current_turn)
        self.assertEqual(EncounterStatus.ACTIVE, encounter.status)
        self.assertEqual(
            [CombatActionType.COMBAT_STARTED, CombatActionType.ROUND_START, CombatActionType.TURN_START],
            [entry.action for entry in tracker.log],
        )

    def test_start_combat_refuses_without_participants_or_when_running(self) -> None:
        empty = Encounter(id="e", owner_id="dm", name="Empty")
        self.assertFalse(CombatTracker(empty).start_combat())

        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=self.clock)
        tracker.start_combat()
        self.assertFalse(tracker.start_combat())

    def test_lair_entry_defaults_to_twenty_and_loses_ties(self) -> None:
        encounter = _encounter(enable_lair_actions=True)
        encounter.participants[1].initiative = 20
        tracker = CombatTracker(encounter, clock=self.clock)
        tracker.start_combat()

        self.assertEqual(["gob", LAIR_ACTION_ID, "aria", "bran"], _order(encounter))
        tracker.next_turn()
        self.assertTrue(tracker.is_lair_turn)
        self.assertEqual(CombatActionType.LAIR_ACTION, tracker.log[-1].action)

    def test_next_turn_wraps_into_new_round_and_resets_flags(self) -> None:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=self.clock)
        tracker.start_combat()

        tracker.next_turn()
        tracker.next_turn()
        self.assertTrue(all(entry.has_acted for entry in encounter.combat_state.initiative_order[:2]))
        tracker.next_turn()

        state = encounter.combat_state
        self.assertEqual(2, state.current_round)
        self.assertEqual(0, state.current_turn)
        self.assertFalse(any(entry.has_acted for entry in state.initiative_order))
        self.assertEqual(1, sum(1 for entry in state.initiative_order if entry.is_active))

    def test_previous_turn_from_first_turn_goes_to_last_without_round_zero(self) -> None:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=self.clock)
        tracker.start_combat()

        self.assertTrue(tracker.previous_turn())

        state = encounter.combat_state
        self.assertEqual(1, state.current_round)
        self.assertEqual(2, state.current_turn)
        self.assertEqual("bran", state.current_entry.participant_id)

    def test_pause_and_resume_shift_turn_timer(self) -> None:
        encounter = _encounter(round_time_limit=60)
        tracker = CombatTracker(encounter, clock=self.clock)
        tracker.start_combat()
        self.clock.advance(10)

        self.assertTrue(tracker.pause_combat())
        self.assertEqual(CombatPhase.PAUSED, tracker.phase)
        self.assertFalse(tracker.next_turn())
        self.clock.advance(100)
        self.assertEqual(50, tracker.round_time_remaining())

        self.assertTrue(tracker.resume_combat())
        self.assertEqual(100_000, encounter.combat_state.paused_duration)
        self.assertEqual(50, tracker.round_time_remaining())

    def test_end_combat_while_paused_discounts_time_before_pause(self) -> None:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=self.clock)
        tracker.start_combat()
        self.clock.advance(60)
        tracker.pause_combat()
        self.clock.advance(30)

        self.assertTrue(tracker.end_combat())

        state = encounter.combat_state
        self.assertEqual(30_000, state.total_duration)
        self.assertIsNone(state.paused_at)
        self.assertEqual(EncounterStatus.COMPLETED, encounter.status)
        self.assertEqual(CombatPhase.ENDED, tracker.phase)
        self.assertFalse(tracker.end_combat())

    def test_end_combat_without_pause_counts_full_duration(self) -> None:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=self.clock)
        tracker.start_combat()
        self.clock.advance(45)

        tracker.end_combat()

        self.assertEqual(45_000, encounter.combat_state.total_duration)

    def test_auto_roll_is_a_plain_d20_and_leaves_participants_alone(self) -> None:
        encounter = Encounter(
            id="enc-2",
            owner_id="dm",
            name="Quicklings",
            participants=[
                ParticipantReference(character_id=f"q{i}", name=f"Quickling {i}", type=ParticipantType.MONSTER,
                                     dexterity=20, max_hit_points=10, current_hit_points=10)
                for i in range(40)
            ],
        )
        tracker = CombatTracker(encounter, rng=random.Random(7), clock=self.clock)

        tracker.start_combat(auto_roll=True)

        rolls = [entry.initiative for entry in encounter.combat_state.initiative_order]
        self.assertEqual(40, len(rolls))
        self.assertTrue(all(1 <= roll <= 20 for roll in rolls))
        self.assertTrue(all(p.initiative is None for p in encounter.participants))


class TurnManipulationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.encounter = _encounter()
        self.tracker = CombatTracker(self.encounter, clock=_Clock())
        self.tracker.start_combat()

    def test_delay_only_applies_to_current_participant(self) -> None:
        self.assertFalse(self.tracker.delay_turn("bran"))
        self.assertTrue(self.tracker.delay_turn("gob"))

        state = self.encounter.combat_state
        delayed = state.entry_for("gob")
        self.assertTrue(delayed.is_delayed)
        self.assertFalse(delayed.has_acted)
        self.assertEqual("aria", state.current_entry.participant_id)

    def test_resume_delayed_takes_current_slot_and_initiative(self) -> None:
        self.tracker.delay_turn("gob")
        self.tracker.next_turn()

        self.assertTrue(self.tracker.resume_delayed("gob"))

        state = self.encounter.combat_state
        self.assertEqual(["aria", "gob", "bran"], _order(self.encounter))
        self.assertEqual("gob", state.current_entry.participant_id)
        self.assertEqual(8, state.entry_for("gob").initiative)
        self.assertEqual(1, sum(1 for entry in state.initiative_order if entry.is_active))

    def test_set_initiative_keeps_active_entry_current(self) -> None:
        self.assertTrue(self.tracker.set_initiative("bran", 25))

        state = self.encounter.combat_state
        self.assertEqual(["bran", "gob", "aria"], _order(self.encounter))
        self.assertEqual("gob", state.current_entry.participant_id)
        self.assertEqual(25, self.encounter.get_participant("bran").initiative)

    def test_ready_action_requires_text(self) -> None:
        self.assertFalse(self.tracker.ready_action("aria", "   "))
        self.assertTrue(self.tracker.ready_action("aria", "Attack the first goblin through the door"))
        self.assertTrue(self.tracker.clear_ready_action("aria"))
        self.assertFalse(self.tracker.clear_ready_action("aria"))


class HitPointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.encounter = _encounter()
        self.tracker = CombatTracker(self.encounter, clock=_Clock())

    def test_temporary_hit_points_absorb_damage_first(self) -> None:
        self.tracker.set_temporary_hp("aria", 5)
        self.tracker.apply_damage("aria", 8)

        aria = self.encounter.get_participant("aria")
        self.assertEqual(0, aria.temporary_hit_points)
        self.assertEqual(17, aria.current_hit_points)
        self.assertEqual(5, self.tracker.log[-1].details["absorbed_by_temporary"])

    def test_damage_floors_at_zero_and_healing_caps_at_maximum(self) -> None:
        self.tracker.apply_damage("gob", 50)
        goblin = self.encounter.get_participant("gob")
        self.assertEqual(0, goblin.current_hit_points)
        self.assertTrue(goblin.is_defeated)

        self.tracker.apply_healing("gob", 100)
        self.assertEqual(7, goblin.current_hit_points)

    def test_temporary_hit_points_do_not_stack(self) -> None:
        self.tracker.set_temporary_hp("bran", 6)
        self.tracker.set_temporary_hp("bran", 4)
        self.assertEqual(6, self.encounter.get_participant("bran").temporary_hit_points)

    def test_conditions_are_normalized_and_unique(self) -> None:
        self.assertTrue(self.tracker.add_condition("aria", " Prone "))
        self.assertFalse(self.tracker.add_condition("aria", "prone"))
        self.assertEqual(["prone"], self.encounter.get_participant("aria").conditions)
        self.assertTrue(self.tracker.remove_condition("aria", "PRONE"))
        self.assertFalse(self.tracker.remove_condition("aria", "prone"))


class CombatValidationTests(unittest.TestCase):
    def test_validate_flags_multiple_active_and_duplicates(self) -> None:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=_Clock())
        tracker.start_combat()
        state = encounter.combat_state
        state.initiative_order[1].is_active = True
        state.initiative_order.append(InitiativeEntry("gob", initiative=3))

        errors = validate_combat_state(state)

        self.assertIn("Multiple participants marked as active", errors)
        self.assertIn("Duplicate participants found in initiative order", errors)

    def test_restore_rejects_unknown_participants(self) -> None:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=_Clock())
        tracker.start_combat()
        snapshot = tracker.snapshot()
        snapshot.initiative_order[2].participant_id = "stranger"

        errors = tracker.restore(snapshot)

        self.assertEqual(["Unknown participant in snapshot: stranger"], errors)
        self.assertEqual("bran", encounter.combat_state.initiative_order[2].participant_id)

    def test_snapshot_round_trip_restores_turn_position(self) -> None:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=_Clock())
        tracker.start_combat()
        snapshot = tracker.snapshot()
        tracker.next_turn()
        tracker.next_turn()

        self.assertEqual([], tracker.restore(snapshot))
        self.assertEqual(0, encounter.combat_state.current_turn)
        self.assertEqual("gob", encounter.combat_state.current_entry.participant_id)


class EncounterModelTests(unittest.TestCase):
    def _started(self, turns: int) -> Encounter:
        encounter = _encounter()
        tracker = CombatTracker(encounter, clock=_Clock())
        tracker.start_combat()
        for _ in range(turns):
            tracker.next_turn()
        return encounter

    def test_removing_earlier_participant_mid_combat_shifts_turn_down(self) -> None:
        encounter = self._started(turns=2)

        self.assertTrue(encounter.remove_participant("gob"))

        state = encounter.combat_state
        self.assertEqual(["aria", "bran"], _order(encounter))
        self.assertEqual(1, state.current_turn)
        self.assertEqual("bran", state.current_entry.participant_id)
        self.assertIsNone(encounter.get_participant("gob"))

    def test_removing_later_participant_keeps_turn(self) -> None:
        encounter = self._started(turns=0)

        encounter.remove_participant("bran")

        self.assertEqual(["gob", "aria"], _order(encounter))
        self.assertEqual(0, encounter.combat_state.current_turn)
        self.assertEqual("gob", encounter.combat_state.current_entry.participant_id)

    def test_removing_current_participant_hands_turn_to_previous_entry(self) -> None:
        encounter = self._started(turns=1)

        encounter.remove_participant("aria")

        state = encounter.combat_state
        self.assertEqual(0, state.current_turn)
        self.assertEqual(["gob"], [entry.participant_id for entry in state.initiative_order if entry.is_active])

    def test_calculate_difficulty_thresholds(self) -> None:
        def mix(players: int, monsters: int) -> Encounter:
            participants = [
                ParticipantReference(character_id=f"pc{i}", name=f"PC {i}", type=ParticipantType.PC,
                                     max_hit_points=10, current_hit_points=10, is_player=True)
                for i in range(players)
            ] + [
                ParticipantReference(character_id=f"m{i}", name=f"Monster {i}", type=ParticipantType.MONSTER,
                                     max_hit_points=10, current_hit_points=10)
                for i in range(monsters)
            ]
            return Encounter(id=None, owner_id="dm", name="Mix", participants=participants)

        cases = [
            ((4, 2), EncounterDifficulty.TRIVIAL),
            ((4, 3), EncounterDifficulty.EASY),
            ((4, 4), EncounterDifficulty.EASY),
            ((4, 6), EncounterDifficulty.MEDIUM),
            ((4, 8), EncounterDifficulty.HARD),
            ((4, 9), EncounterDifficulty.DEADLY),
            ((0, 1), EncounterDifficulty.EASY),
            ((0, 3), EncounterDifficulty.DEADLY),
        ]
        for (players, monsters), expected in cases:
            with self.subTest(players=players, monsters=monsters):
                self.assertEqual(expected, mix(players, monsters).calculate_difficulty())


if __name__ == "__main__":
    unittest.main()
