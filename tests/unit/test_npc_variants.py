import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.domain.models.npc_template import (
    NPCHitPoints,
    NPCStats,
    NPCTemplate,
    VariantType,
    format_challenge_rating,
    parse_challenge_rating,
    proficiency_bonus_for_cr,
)
from encounter_tracker.domain.models.stats import AbilityScores
from encounter_tracker.domain.services.npc_variants import adjust_challenge_rating, apply_variant


def _orc() -> NPCTemplate:
    return NPCTemplate(
        id="system-orc",
        name="Orc",
        challenge_rating=0.5,
        stats=NPCStats(
            ability_scores=AbilityScores(strength=16, dexterity=12, constitution=16, intelligence=7, wisdom=11, charisma=10),
            hit_points=NPCHitPoints(maximum=15, current=15, hit_dice="2d8+6"),
            armor_class=13,
        ),
        is_system=True,
    )


class ChallengeRatingTests(unittest.TestCase):
    def test_parse_accepts_fractions_and_numbers(self) -> None:
        self.assertEqual(0.25, parse_challenge_rating("1/4"))
        self.assertEqual(0.125, parse_challenge_rating(0.125))
        self.assertEqual(17.0, parse_challenge_rating("17"))
        with self.assertRaises(ValueError):
            parse_challenge_rating("3/4")
        with self.assertRaises(ValueError):
            parse_challenge_rating(31)

    def test_format_uses_fractions_below_one(self) -> None:
        self.assertEqual("1/8", format_challenge_rating(0.125))
        self.assertEqual("1/2", format_challenge_rating(0.5))
        self.assertEqual("0", format_challenge_rating(0.0))
        self.assertEqual("12", format_challenge_rating(12.0))

    def test_proficiency_bonus_bands(self) -> None:
        self.assertEqual(2, proficiency_bonus_for_cr(0.25))
        self.assertEqual(3, proficiency_bonus_for_cr(5))
        self.assertEqual(9, proficiency_bonus_for_cr(30))

    def test_adjusted_rating_snaps_to_valid_values(self) -> None:
        self.assertEqual(0.125, adjust_challenge_rating(0, 1.5))
        self.assertEqual(0.0, adjust_challenge_rating(0, 0.5))
        self.assertEqual(0.25, adjust_challenge_rating(0.5, 0.5))
        self.assertEqual(0.5, adjust_challenge_rating(1, 0.7))
        self.assertEqual(3.0, adjust_challenge_rating(2, 1.25))
        self.assertEqual(30.0, adjust_challenge_rating(24, 2))


class VariantTests(unittest.TestCase):
    def test_elite_boosts_hit_points_and_physical_scores(self) -> None:
        variant = apply_variant(_orc(), VariantType.ELITE)

        self.assertEqual("Elite Orc", variant.name)
        self.assertIsNone(variant.id)
        self.assertFalse(variant.is_system)
        self.assertEqual("system-orc", variant.variant_of)
        self.assertEqual(22, variant.stats.hit_points.maximum)
        self.assertEqual(22, variant.stats.hit_points.current)
        self.assertEqual(18, variant.stats.ability_scores.strength)
        self.assertEqual(7, variant.stats.ability_scores.intelligence)
        self.assertEqual(0.5, variant.challenge_rating)

    def test_champion_raises_armor_class(self) -> None:
        variant = apply_variant(_orc(), "champion")
        self.assertEqual("Orc Champion", variant.name)
        self.assertEqual(15, variant.stats.armor_class)
        self.assertEqual(30, variant.stats.hit_points.maximum)

    def test_minion_has_one_hit_point(self) -> None:
        variant = apply_variant(_orc(), VariantType.MINION)
        self.assertEqual(1, variant.stats.hit_points.maximum)
        self.assertEqual(0.25, variant.challenge_rating)

    def test_weak_variant_keeps_base_untouched(self) -> None:
        base = _orc()
        variant = apply_variant(base, VariantType.WEAK)

        self.assertEqual(9, variant.stats.hit_points.maximum)
        self.assertEqual(14, variant.stats.ability_scores.strength)
        self.assertEqual(15, base.stats.hit_points.maximum)
        self.assertEqual(16, base.stats.ability_scores.strength)


if __name__ == "__main__":
    unittest.main()
