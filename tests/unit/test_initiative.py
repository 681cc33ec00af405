import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.domain.models.combat import LAIR_ACTION_ID, InitiativeEntry
from encounter_tracker.domain.models.encounter import ParticipantReference, ParticipantType
from encounter_tracker.domain.services.initiative import (
    InitiativePreferences,
    can_reroll,
    initiative_roll_breakdown,
    reroll_initiative,
    roll_bulk_initiative,
    roll_initiative_with_modifier,
    sort_initiative_order,
)


class _FixedRng:
    def __init__(self, *faces: int) -> None:
        self._faces = list(faces)

    def randint(self, low: int, high: int) -> int:
        return self._faces.pop(0) if len(self._faces) > 1 else self._faces[0]


class InitiativeOrderingTests(unittest.TestCase):
    def test_orders_by_initiative_then_dexterity(self) -> None:
        order = sort_initiative_order(
            [
                InitiativeEntry("slow", initiative=12, dexterity=10),
                InitiativeEntry("quick", initiative=12, dexterity=16),
                InitiativeEntry("first", initiative=18, dexterity=8),
            ]
        )
        self.assertEqual(["first", "quick", "slow"], [entry.participant_id for entry in order])

    def test_full_ties_keep_previous_relative_order(self) -> None:
        order = sort_initiative_order(
            [InitiativeEntry("a", initiative=10, dexterity=12), InitiativeEntry("b", initiative=10, dexterity=12)]
        )
        self.assertEqual(["a", "b"], [entry.participant_id for entry in order])

    def test_lair_action_loses_initiative_ties(self) -> None:
        order = sort_initiative_order(
            [InitiativeEntry(LAIR_ACTION_ID, initiative=20, dexterity=0), InitiativeEntry("dragon", initiative=20, dexterity=1)]
        )
        self.assertEqual(["dragon", LAIR_ACTION_ID], [entry.participant_id for entry in order])

    def test_dexterity_tiebreak_can_be_disabled(self) -> None:
        order = sort_initiative_order(
            [InitiativeEntry("a", initiative=10, dexterity=8), InitiativeEntry("b", initiative=10, dexterity=18)],
            tiebreak_by_dexterity=False,
        )
        self.assertEqual(["a", "b"], [entry.participant_id for entry in order])


class InitiativeRollingTests(unittest.TestCase):
    def test_roll_adds_dexterity_modifier(self) -> None:
        roll = roll_initiative_with_modifier(16, _FixedRng(11))
        self.assertEqual(11, roll.d20_roll)
        self.assertEqual(3, roll.modifier)
        self.assertEqual(14, roll.total)

    def test_roll_total_never_drops_below_one(self) -> None:
        roll = roll_initiative_with_modifier(1, _FixedRng(1))
        self.assertEqual(-5, roll.modifier)
        self.assertEqual(1, roll.total)

    def test_bulk_roll_reports_monsters_as_npcs_and_sorts(self) -> None:
        participants = [
            ParticipantReference(character_id="hero", name="Hero", type=ParticipantType.PC, dexterity=10),
            ParticipantReference(character_id="wolf", name="Wolf", type=ParticipantType.MONSTER, dexterity=15),
        ]
        rolled = roll_bulk_initiative(participants, _FixedRng(10, 10))

        self.assertEqual(["wolf", "hero"], [item.entry.participant_id for item in rolled])
        self.assertEqual("npc", rolled[0].type)
        self.assertEqual("pc", rolled[1].type)

    def test_reroll_single_participant_leaves_others_untouched(self) -> None:
        entries = [
            InitiativeEntry("a", initiative=15, dexterity=10),
            InitiativeEntry("b", initiative=5, dexterity=10),
            InitiativeEntry(LAIR_ACTION_ID, initiative=20, dexterity=0),
        ]
        order = reroll_initiative(entries, _FixedRng(19), participant_id="b")

        by_id = {entry.participant_id: entry.initiative for entry in order}
        self.assertEqual({"a": 15, "b": 19, LAIR_ACTION_ID: 20}, by_id)
        self.assertEqual([LAIR_ACTION_ID, "b", "a"], [entry.participant_id for entry in order])

    def test_breakdown_clamps_recovered_face(self) -> None:
        breakdown = initiative_roll_breakdown(1, 1)
        self.assertEqual(1, breakdown.d20_roll)
        self.assertEqual(-5, breakdown.modifier)

    def test_player_rerolls_follow_preferences(self) -> None:
        locked = InitiativePreferences(allow_player_rerolls=False)
        self.assertFalse(can_reroll(locked, "pc"))
        self.assertTrue(can_reroll(locked, ParticipantType.MONSTER))
        self.assertTrue(can_reroll(InitiativePreferences(), "pc"))


if __name__ == "__main__":
    unittest.main()
