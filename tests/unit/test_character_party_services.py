import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.application.services.character_service import CharacterPreset
from encounter_tracker.bootstrap import create_inmemory_container
from encounter_tracker.domain.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from encounter_tracker.domain.models.stats import AbilityScores


def _character(name="Aria", class_name="fighter", level=1, hit_die=10, **overrides):
    data = {
        "name": name,
        "race": "human",
        "classes": [{"class": class_name, "level": level, "hit_die": hit_die}],
        "ability_scores": {"strength": 16, "dexterity": 14, "constitution": 14,
                           "intelligence": 10, "wisdom": 12, "charisma": 8},
        "hit_points": {"maximum": 12},
        "armor_class": 16,
    }
    data.update(overrides)
    return data


class CharacterServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.service = self.container.characters

    def test_create_fills_current_hp_and_proficiency(self) -> None:
        created = self.service.create_character("dm", _character(level=5))

        self.assertEqual(12, created.hit_points.current)
        self.assertEqual(3, created.proficiency_bonus)
        self.assertEqual("dm", created.owner_id)

    def test_create_rejects_unknown_race_and_class(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.service.create_character("dm", _character(class_name="gunslinger", race="martian"))

        self.assertIn("Invalid character race", ctx.exception.details)

    def test_private_characters_are_owner_only(self) -> None:
        created = self.service.create_character("dm", _character())

        with self.assertRaises(PermissionDeniedError):
            self.service.get_character(created.id, "stranger")
        self.assertFalse(self.service.permissions(created.id, "stranger")["can_view"])

        self.service.update_character(created.id, "dm", {"is_public": True})
        self.assertEqual(created.id, self.service.get_character(created.id, "stranger").id)
        with self.assertRaises(PermissionDeniedError):
            self.service.update_character(created.id, "stranger", {"name": "Stolen"})

    def test_update_merges_hit_points_and_ability_scores(self) -> None:
        created = self.service.create_character("dm", _character())

        updated = self.service.update_character(
            created.id, "dm", {"hit_points": {"current": 5}, "ability_scores": {"strength": 18}}
        )

        self.assertEqual(5, updated.hit_points.current)
        self.assertEqual(12, updated.hit_points.maximum)
        self.assertEqual(18, updated.ability_scores.strength)
        self.assertEqual(14, updated.ability_scores.dexterity)

    def test_search_requires_query(self) -> None:
        self.service.create_character("dm", _character(name="Aria"))
        self.service.create_character("dm", _character(name="Bran"))

        self.assertEqual(["Aria"], [c.name for c in self.service.search("dm", "ari")])
        with self.assertRaises(ValidationError):
            self.service.search("dm", "  ")

    def test_spellcasting_for_wizard(self) -> None:
        wizard = self.service.create_character(
            "dm", _character(name="Mira", class_name="wizard", level=5, hit_die=6,
                             ability_scores={"intelligence": 18})
        )

        stats = self.service.spellcasting(wizard.id, "dm")

        self.assertEqual(5, stats["caster_level"])
        self.assertEqual({1: 4, 2: 3, 3: 2}, stats["spell_slots"])
        self.assertEqual(7, stats["spell_attack_bonus"])
        self.assertEqual(15, stats["spell_save_dc"])

    def test_carrying_capacity_levels(self) -> None:
        created = self.service.create_character(
            "dm", _character(equipment=[{"name": "Anvil", "quantity": 1, "weight": 170}])
        )

        capacity = self.service.carrying_capacity(created.id, "dm")

        self.assertEqual(240, capacity["maximum"])
        self.assertEqual("heavy", capacity["encumbrance_level"])

    def test_clone_starts_at_full_health_and_private(self) -> None:
        created = self.service.create_character("dm", _character(is_public=True))
        self.service.update_character(created.id, "dm", {"hit_points": {"current": 1}})

        clone = self.service.clone_character(created.id, "other", "Aria Again")

        self.assertNotEqual(created.id, clone.id)
        self.assertEqual("other", clone.owner_id)
        self.assertEqual(12, clone.hit_points.current)
        self.assertFalse(clone.is_public)

    def test_create_from_template_uses_class_hit_die(self) -> None:
        preset = CharacterPreset(
            name="Sellsword",
            type="npc",
            race="human",
            class_name="barbarian",
            level=5,
            ability_scores=AbilityScores(strength=16),
            hit_points=45,
            armor_class=14,
        )

        created = self.service.create_from_template("dm", preset, {"notes": "Hired in Phandalin"})

        self.assertEqual(12, created.classes[0].hit_die)
        self.assertEqual(3, created.proficiency_bonus)
        self.assertEqual("Hired in Phandalin", created.notes)

    def test_bulk_operations_report_each_item(self) -> None:
        result = self.service.create_many("dm", [_character(name="Aria"), _character(race="martian")])

        self.assertEqual([True, False], [item.success for item in result.results])
        deleted = self.service.delete_many("dm", [result.results[0].result_id, "missing"])
        self.assertEqual([True, False], [item.success for item in deleted.results])

    def test_delete_refused_while_in_active_encounter(self) -> None:
        character = self.service.create_character("dm", _character())
        encounter = self.container.encounters.create_encounter("dm", {"name": "Ambush"})
        self.container.encounters.add_character(encounter.id, "dm", character.id)
        self.container.combat.start_combat(encounter.id, "dm")

        with self.assertRaises(ConflictError) as ctx:
            self.service.delete_character(character.id, "dm")
        self.assertEqual("CHARACTER_IN_USE", ctx.exception.code)


class PartyServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.container = create_inmemory_container(bcrypt_rounds=4, share_secret="test-secret")
        self.parties = self.container.parties
        self.characters = self.container.characters

    def test_roster_tracks_members_and_average_level(self) -> None:
        party = self.parties.create_party("dm", {"name": "The Company", "tags": ["Heroes"]})
        aria = self.characters.create_character("dm", _character(name="Aria", level=3))
        bran = self.characters.create_character("dm", _character(name="Bran", level=6))

        self.parties.add_member(party.id, "dm", aria.id)
        roster = self.parties.add_member(party.id, "dm", bran.id)

        self.assertEqual(["heroes"], party.tags)
        self.assertEqual(2, roster.member_count)
        self.assertEqual(4, roster.average_level)
        with self.assertRaises(ConflictError):
            self.parties.add_member(party.id, "dm", aria.id)

    def test_full_party_rejects_new_members(self) -> None:
        party = self.parties.create_party("dm", {"name": "Duo", "settings": {"max_members": 1}})
        first = self.characters.create_character("dm", _character(name="Aria"))
        second = self.characters.create_character("dm", _character(name="Bran"))
        self.parties.add_member(party.id, "dm", first.id)

        with self.assertRaises(ConflictError) as ctx:
            self.parties.add_member(party.id, "dm", second.id)
        self.assertEqual("PARTY_FULL", ctx.exception.code)
        self.assertEqual("Party is at maximum capacity", str(ctx.exception))

    def test_only_own_characters_can_join(self) -> None:
        party = self.parties.create_party("dm", {"name": "The Company"})
        foreign = self.characters.create_character("player", _character())

        with self.assertRaises(PermissionDeniedError):
            self.parties.add_member(party.id, "dm", foreign.id)

    def test_sharing_grants_access(self) -> None:
        party = self.parties.create_party("dm", {"name": "The Company"})

        with self.assertRaises(PermissionDeniedError):
            self.parties.get_party(party.id, "player")
        self.parties.share(party.id, "dm", ["player", "dm"])
        self.assertEqual(["player"], self.parties.get_party(party.id, "player").shared_with)
        self.assertEqual([party.id], [p.id for p in self.parties.list_parties("player").items])

        self.parties.unshare(party.id, "dm", ["player"])
        with self.assertRaises(PermissionDeniedError):
            self.parties.get_party(party.id, "player")

    def test_delete_party_releases_members(self) -> None:
        party = self.parties.create_party("dm", {"name": "The Company"})
        aria = self.characters.create_character("dm", _character())
        self.parties.add_member(party.id, "dm", aria.id)

        self.parties.delete_party(party.id, "dm")

        self.assertIsNone(self.characters.get_character(aria.id, "dm").party_id)
        with self.assertRaises(NotFoundError):
            self.parties.get_party(party.id, "dm")


if __name__ == "__main__":
    unittest.main()
