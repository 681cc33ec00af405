import copy
import math
from dataclasses import replace

from encounter_tracker.domain.models.npc_template import NPCTemplate, VariantType, proficiency_bonus_for_cr
from encounter_tracker.domain.models.stats import AbilityScores


def adjust_challenge_rating(base: float, multiplier: float) -> float:
    if base == 0:
        return 0.125 if multiplier > 1 else 0.0

    adjusted = base * multiplier
    if adjusted <= 0:
        return 0.0
    if adjusted <= 0.125:
        return 0.125
    if adjusted <= 0.25:
        return 0.25
    if adjusted < 1:
        return 0.5
    # Half rounds up.
    rounded = math.floor(adjusted + 0.5)
    return float(min(30, max(1, rounded)))


def _shift_physical_scores(scores: AbilityScores, delta: int) -> AbilityScores:
    def _clamp(value: int) -> int:
        return max(1, min(30, value + delta))

    return replace(
        scores,
        strength=_clamp(scores.strength),
        dexterity=_clamp(scores.dexterity),
        constitution=_clamp(scores.constitution),
    )


def apply_variant(base: NPCTemplate, variant_type: VariantType) -> NPCTemplate:
    """Return a new, unsaved template derived from ``base``."""
    variant_type = VariantType(getattr(variant_type, "value", variant_type))
    variant = copy.deepcopy(base)
    variant.id = None
    variant.is_system = False
    variant.variant_of = base.id
    variant.variant_type = variant_type
    hit_points = variant.stats.hit_points

    if variant_type == VariantType.ELITE:
        variant.name = f"Elite {base.name}"
        variant.challenge_rating = adjust_challenge_rating(base.challenge_rating, 1.5)
        hit_points.maximum = math.floor(hit_points.maximum * 1.5)
        variant.stats.ability_scores = _shift_physical_scores(variant.stats.ability_scores, 2)
    elif variant_type == VariantType.WEAK:
        variant.name = f"Weak {base.name}"
        variant.challenge_rating = adjust_challenge_rating(base.challenge_rating, 0.7)
        hit_points.maximum = max(1, math.floor(hit_points.maximum * 0.6))
        variant.stats.ability_scores = _shift_physical_scores(variant.stats.ability_scores, -2)
    elif variant_type == VariantType.CHAMPION:
        variant.name = f"{base.name} Champion"
        variant.challenge_rating = adjust_challenge_rating(base.challenge_rating, 2)
        hit_points.maximum = math.floor(hit_points.maximum * 2)
        variant.stats.armor_class = min(30, variant.stats.armor_class + 2)
    else:
        variant.name = f"{base.name} Minion"
        variant.challenge_rating = adjust_challenge_rating(base.challenge_rating, 0.5)
        hit_points.maximum = 1

    hit_points.current = hit_points.maximum
    variant.stats.proficiency_bonus = proficiency_bonus_for_cr(variant.challenge_rating)
    return variant
