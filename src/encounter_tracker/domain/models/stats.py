from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


ABILITY_NAMES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")

SKILL_ABILITIES: dict[str, str] = {
    "acrobatics": "dexterity",
    "animal_handling": "wisdom",
    "arcana": "intelligence",
    "athletics": "strength",
    "deception": "charisma",
    "history": "intelligence",
    "insight": "wisdom",
    "intimidation": "charisma",
    "investigation": "intelligence",
    "medicine": "wisdom",
    "nature": "intelligence",
    "perception": "wisdom",
    "performance": "charisma",
    "persuasion": "charisma",
    "religion": "intelligence",
    "sleight_of_hand": "dexterity",
    "stealth": "dexterity",
    "survival": "wisdom",
}

SPELLCASTING_ABILITIES: dict[str, str] = {
    "artificer": "intelligence",
    "bard": "charisma",
    "cleric": "wisdom",
    "druid": "wisdom",
    "paladin": "charisma",
    "ranger": "wisdom",
    "sorcerer": "charisma",
    "warlock": "charisma",
    "wizard": "intelligence",
}

# Cumulative XP needed to reach each level (index 0 is level 1).
EXPERIENCE_THRESHOLDS = (
    0, 300, 900, 2700, 6500, 14000, 23000, 34000, 48000, 64000,
    85000, 100000, 120000, 140000, 165000, 195000, 225000, 265000, 305000, 355000,
)

ABILITY_SCORE_RANGE = (1, 30)
ARMOR_CLASS_RANGE = (1, 30)
INITIATIVE_RANGE = (-10, 30)
LEVEL_RANGE = (1, 20)
HIT_DIE_RANGE = (4, 12)
SPELL_LEVEL_RANGE = (0, 9)


def ability_modifier(score: int | None) -> int:
    try:
        return (int(score) - 10) // 2
    except Exception:
        return 0


def proficiency_bonus(level: int) -> int:
    if level >= 17:
        return 6
    if level >= 13:
        return 5
    if level >= 9:
        return 4
    if level >= 5:
        return 3
    return 2


def in_range(value: Any, bounds: tuple[int, int]) -> bool:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return False
    if number != value:
        return False
    return bounds[0] <= number <= bounds[1]


@dataclass(frozen=True)
class AbilityScores:
    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10

    @property
    def strength_mod(self) -> int:
        return ability_modifier(self.strength)

    @property
    def dexterity_mod(self) -> int:
        return ability_modifier(self.dexterity)

    @property
    def constitution_mod(self) -> int:
        return ability_modifier(self.constitution)

    @property
    def intelligence_mod(self) -> int:
        return ability_modifier(self.intelligence)

    @property
    def wisdom_mod(self) -> int:
        return ability_modifier(self.wisdom)

    @property
    def charisma_mod(self) -> int:
        return ability_modifier(self.charisma)

    @property
    def initiative(self) -> int:
        return self.dexterity_mod

    def score(self, ability: str) -> int:
        return int(getattr(self, str(ability).strip().lower(), 10))

    def modifier(self, ability: str) -> int:
        return ability_modifier(self.score(ability))

    def modifiers(self) -> dict[str, int]:
        return {name: self.modifier(name) for name in ABILITY_NAMES}

    def to_dict(self) -> dict[str, int]:
        return {name: self.score(name) for name in ABILITY_NAMES}

    def validation_errors(self) -> list[str]:
        return [
            f"{name} must be between {ABILITY_SCORE_RANGE[0]} and {ABILITY_SCORE_RANGE[1]}"
            for name in ABILITY_NAMES
            if not in_range(self.score(name), ABILITY_SCORE_RANGE)
        ]


def ability_scores_from_mapping(attributes: Mapping[str, Any] | None) -> AbilityScores:
    attrs = attributes or {}

    def _score(name: str) -> int:
        raw = attrs.get(name)
        try:
            return int(raw) if raw is not None else 10
        except Exception:
            return 10

    return AbilityScores(**{name: _score(name) for name in ABILITY_NAMES})


def level_for_experience(experience: int) -> int:
    level = 1
    for index, threshold in enumerate(EXPERIENCE_THRESHOLDS):
        if experience >= threshold:
            level = index + 1
    return level


def experience_for_level(level: int) -> int:
    clamped = max(LEVEL_RANGE[0], min(LEVEL_RANGE[1], int(level)))
    return EXPERIENCE_THRESHOLDS[clamped - 1]
