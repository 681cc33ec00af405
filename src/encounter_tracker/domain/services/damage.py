from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from encounter_tracker.domain.errors import NotFoundError, ValidationError


class DamageType(str, Enum):
    ACID = "acid"
    BLUDGEONING = "bludgeoning"
    COLD = "cold"
    FIRE = "fire"
    FORCE = "force"
    LIGHTNING = "lightning"
    NECROTIC = "necrotic"
    PIERCING = "piercing"
    POISON = "poison"
    PSYCHIC = "psychic"
    RADIANT = "radiant"
    SLASHING = "slashing"
    THUNDER = "thunder"


class ResistanceType(str, Enum):
    NORMAL = "normal"
    RESISTANT = "resistant"
    VULNERABLE = "vulnerable"
    IMMUNE = "immune"


class DistributionMethod(str, Enum):
    EQUAL = "equal"
    HALF = "half"
    CUSTOM = "custom"


DICE_VALUES: Dict[str, int] = {"d4": 4, "d6": 6, "d8": 8, "d10": 10, "d12": 12, "d20": 20}

RESISTANCE_MULTIPLIERS: Dict[ResistanceType, float] = {
    ResistanceType.NORMAL: 1.0,
    ResistanceType.RESISTANT: 0.5,
    ResistanceType.VULNERABLE: 2.0,
    ResistanceType.IMMUNE: 0.0,
}

DAMAGE_TYPE_CATEGORIES: Dict[str, tuple[DamageType, ...]] = {
    "physical": (DamageType.BLUDGEONING, DamageType.PIERCING, DamageType.SLASHING),
    "elemental": (DamageType.ACID, DamageType.COLD, DamageType.FIRE, DamageType.LIGHTNING, DamageType.THUNDER),
    "energy": (DamageType.FORCE, DamageType.NECROTIC, DamageType.RADIANT),
    "mental": (DamageType.PSYCHIC,),
    "toxic": (DamageType.POISON,),
}

MAX_DICE_COUNT = 100
MODIFIER_RANGE = (-100, 100)
MAX_TARGETS = 20


@dataclass(frozen=True)
class DamageRoll:
    dice_count: int
    dice_type: str
    modifier: int = 0
    damage_type: DamageType = DamageType.BLUDGEONING


@dataclass(frozen=True)
class DamageResult:
    total_damage: int
    dice_rolls: List[int]
    modifier: int
    damage_type: DamageType
    is_critical: bool = False


@dataclass(frozen=True)
class ResistedDamage:
    original_damage: int
    final_damage: int
    resistance_applied: ResistanceType


@dataclass(frozen=True)
class DamageTarget:
    id: str
    name: str
    resistance: ResistanceType = ResistanceType.NORMAL
    multiplier: float = 1.0


@dataclass(frozen=True)
class TargetDamage:
    target_id: str
    target_name: str
    original_damage: int
    final_damage: int
    resistance_applied: ResistanceType


@dataclass(frozen=True)
class DamagePreset:
    id: str
    name: str
    description: str
    dice_count: int
    dice_type: str
    modifier: int
    damage_type: DamageType
    tags: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DamageStatistics:
    minimum: int
    maximum: int
    average: float


COMMON_DAMAGE_PRESETS: tuple[DamagePreset, ...] = (
    DamagePreset("shortsword", "Shortsword", "Standard shortsword attack", 1, "d6", 0, DamageType.PIERCING, ("weapon", "finesse", "light")),
    DamagePreset("longsword", "Longsword (One-handed)", "Longsword wielded in one hand", 1, "d8", 0, DamageType.SLASHING, ("weapon", "versatile")),
    DamagePreset("longsword-two-handed", "Longsword (Two-handed)", "Longsword wielded in two hands", 1, "d10", 0, DamageType.SLASHING, ("weapon", "versatile", "two-handed")),
    DamagePreset("fireball", "Fireball", "3rd level fireball spell", 8, "d6", 0, DamageType.FIRE, ("spell", "evocation", "area")),
    DamagePreset("burning-hands", "Burning Hands", "1st level burning hands spell", 3, "d6", 0, DamageType.FIRE, ("spell", "evocation", "area")),
    DamagePreset("magic-missile", "Magic Missile", "Single magic missile dart", 1, "d4", 1, DamageType.FORCE, ("spell", "evocation", "automatic")),
)


def validate_roll(roll: DamageRoll) -> None:
    errors: List[str] = []
    if roll.dice_count < 0:
        errors.append("dice_count must be non-negative")
    if roll.dice_count > MAX_DICE_COUNT:
        errors.append(f"dice_count cannot exceed {MAX_DICE_COUNT}")
    if not MODIFIER_RANGE[0] <= roll.modifier <= MODIFIER_RANGE[1]:
        errors.append(f"modifier must be between {MODIFIER_RANGE[0]} and {MODIFIER_RANGE[1]}")
    if roll.dice_type not in DICE_VALUES:
        errors.append(f"dice_type must be one of {', '.join(DICE_VALUES)}")
    if errors:
        raise ValidationError("Invalid damage input", details=errors)


class DamageCalculator:
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()
        self._presets = {preset.id: preset for preset in COMMON_DAMAGE_PRESETS}

    def set_seed(self, seed: int) -> None:
        self.rng.seed(seed)

    def _roll_dice(self, count: int, dice_type: str) -> List[int]:
        sides = DICE_VALUES[dice_type]
        return [self.rng.randint(1, sides) for _ in range(count)]

    def calculate(self, roll: DamageRoll) -> DamageResult:
        validate_roll(roll)
        rolls = self._roll_dice(roll.dice_count, roll.dice_type)
        return DamageResult(
            total_damage=max(0, sum(rolls) + roll.modifier),
            dice_rolls=rolls,
            modifier=roll.modifier,
            damage_type=roll.damage_type,
        )

    def calculate_critical(self, roll: DamageRoll) -> DamageResult:
        """Critical hits roll twice the dice; the modifier is added once."""
        validate_roll(roll)
        rolls = self._roll_dice(roll.dice_count * 2, roll.dice_type)
        return DamageResult(
            total_damage=max(0, sum(rolls) + roll.modifier),
            dice_rolls=rolls,
            modifier=roll.modifier,
            damage_type=roll.damage_type,
            is_critical=True,
        )

    def from_preset(self, preset_id: str, modifier_override: Optional[int] = None) -> DamageResult:
        preset = self.get_preset(preset_id)
        return self.calculate(
            DamageRoll(
                dice_count=preset.dice_count,
                dice_type=preset.dice_type,
                modifier=preset.modifier if modifier_override is None else modifier_override,
                damage_type=preset.damage_type,
            )
        )

    def get_preset(self, preset_id: str) -> DamagePreset:
        preset = self._presets.get(preset_id)
        if preset is None:
            raise NotFoundError(f"Damage preset not found: {preset_id}", code="PRESET_NOT_FOUND")
        return preset

    def presets(self, tag: Optional[str] = None) -> List[DamagePreset]:
        return [preset for preset in self._presets.values() if tag is None or tag in preset.tags]


def apply_resistance(damage: int, resistance: ResistanceType) -> ResistedDamage:
    if damage < 0:
        raise ValidationError("Damage must be a non-negative number")
    final = math.floor(damage * RESISTANCE_MULTIPLIERS[ResistanceType(resistance)])
    return ResistedDamage(original_damage=damage, final_damage=final, resistance_applied=ResistanceType(resistance))


def resistance_for(
    damage_type: DamageType,
    *,
    resistances: Sequence[str] = (),
    immunities: Sequence[str] = (),
    vulnerabilities: Sequence[str] = (),
) -> ResistanceType:
    kind = DamageType(damage_type).value

    def _mentions(values: Sequence[str]) -> bool:
        return any(kind in str(value).lower() for value in values)

    if _mentions(immunities):
        return ResistanceType.IMMUNE
    if _mentions(resistances):
        return ResistanceType.RESISTANT
    if _mentions(vulnerabilities):
        return ResistanceType.VULNERABLE
    return ResistanceType.NORMAL


def distribute_damage(
    damage: DamageResult,
    targets: Sequence[DamageTarget],
    method: DistributionMethod = DistributionMethod.EQUAL,
) -> List[TargetDamage]:
    """Every target takes the full roll (equal), half of it (half, as on a
    successful save) or the roll scaled by its own multiplier (custom)."""
    if not targets:
        raise ValidationError("Must have at least one target")
    if len(targets) > MAX_TARGETS:
        raise ValidationError(f"Target count cannot exceed {MAX_TARGETS}")

    method = DistributionMethod(method)
    results: List[TargetDamage] = []
    for target in targets:
        if not target.id or not target.name:
            raise ValidationError("Target id and name are required")
        base = damage.total_damage
        if method == DistributionMethod.HALF:
            base = base // 2
        elif method == DistributionMethod.CUSTOM:
            base = math.floor(base * max(0.0, float(target.multiplier)))
        resisted = apply_resistance(base, target.resistance)
        results.append(
            TargetDamage(
                target_id=target.id,
                target_name=target.name,
                original_damage=resisted.original_damage,
                final_damage=resisted.final_damage,
                resistance_applied=resisted.resistance_applied,
            )
        )
    return results


def damage_statistics(roll: DamageRoll) -> DamageStatistics:
    validate_roll(roll)
    sides = DICE_VALUES[roll.dice_type]
    return DamageStatistics(
        minimum=max(0, roll.dice_count + roll.modifier),
        maximum=max(0, roll.dice_count * sides + roll.modifier),
        average=max(0.0, roll.dice_count * (1 + sides) / 2 + roll.modifier),
    )
