from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from fractions import Fraction
from typing import Dict, List, Optional, Union

from encounter_tracker.domain.models.character import CreatureSize
from encounter_tracker.domain.models.stats import ARMOR_CLASS_RANGE, AbilityScores, in_range


class CreatureType(str, Enum):
    ABERRATION = "aberration"
    BEAST = "beast"
    CELESTIAL = "celestial"
    CONSTRUCT = "construct"
    DRAGON = "dragon"
    ELEMENTAL = "elemental"
    FEY = "fey"
    FIEND = "fiend"
    GIANT = "giant"
    HUMANOID = "humanoid"
    MONSTROSITY = "monstrosity"
    OOZE = "ooze"
    PLANT = "plant"
    UNDEAD = "undead"

    @classmethod
    def normalize(cls, value: object) -> "CreatureType":
        raw = str(getattr(value, "value", value) or "").strip().lower()
        for member in cls:
            if member.value == raw:
                return member
        return cls.HUMANOID


class VariantType(str, Enum):
    ELITE = "elite"
    WEAK = "weak"
    CHAMPION = "champion"
    MINION = "minion"


class ImportFormat(str, Enum):
    JSON = "json"
    DNDBEYOND = "dndbeyond"
    ROLL20 = "roll20"
    CUSTOM = "custom"
    OPEN5E = "open5e"


class ActionKind(str, Enum):
    ACTION = "action"
    BONUS_ACTION = "bonus_action"
    REACTION = "reaction"
    LEGENDARY_ACTION = "legendary_action"
    LAIR_ACTION = "lair_action"


FRACTIONAL_CHALLENGE_RATINGS = (0.0, 0.125, 0.25, 0.5)


def is_valid_challenge_rating(value: Union[int, float]) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    if number in FRACTIONAL_CHALLENGE_RATINGS:
        return True
    return number.is_integer() and 1 <= number <= 30


def parse_challenge_rating(raw: Union[str, int, float]) -> float:
    """Accept 5, 5.0, "5", "1/4" or "0.25"."""
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw or "").strip()
        try:
            value = float(Fraction(text))
        except (ValueError, ZeroDivisionError) as exc:
            raise ValueError(f"Invalid challenge rating: {raw!r}") from exc
    if not is_valid_challenge_rating(value):
        raise ValueError(f"Invalid challenge rating: {raw!r}")
    return value


def format_challenge_rating(value: float) -> str:
    if value in (0.125, 0.25, 0.5):
        return str(Fraction(value).limit_denominator(8))
    return str(int(value))


def proficiency_bonus_for_cr(challenge_rating: float) -> int:
    thresholds = ((4, 2), (8, 3), (12, 4), (16, 5), (20, 6), (24, 7), (28, 8))
    for ceiling, bonus in thresholds:
        if challenge_rating <= ceiling:
            return bonus
    return 9


@dataclass
class NPCHitPoints:
    maximum: int = 1
    current: int = 1
    temporary: int = 0
    hit_dice: Optional[str] = None


@dataclass
class NPCStats:
    ability_scores: AbilityScores = field(default_factory=AbilityScores)
    hit_points: NPCHitPoints = field(default_factory=NPCHitPoints)
    armor_class: int = 10
    speed: int = 30
    proficiency_bonus: int = 2
    saving_throws: Dict[str, int] = field(default_factory=dict)
    skills: Dict[str, int] = field(default_factory=dict)
    damage_vulnerabilities: List[str] = field(default_factory=list)
    damage_resistances: List[str] = field(default_factory=list)
    damage_immunities: List[str] = field(default_factory=list)
    condition_immunities: List[str] = field(default_factory=list)
    senses: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)


@dataclass
class NPCEquipment:
    name: str
    quantity: int = 1
    description: str = ""
    kind: str = "misc"
    magical: bool = False


@dataclass
class NPCSpell:
    name: str
    level: int = 0
    school: str = ""
    description: str = ""
    uses_remaining: Optional[int] = None
    max_uses: Optional[int] = None


@dataclass
class NPCAction:
    name: str
    kind: ActionKind = ActionKind.ACTION
    description: str = ""
    attack_bonus: Optional[int] = None
    damage: Optional[str] = None
    recharge: Optional[str] = None

    def __post_init__(self) -> None:
        self.kind = ActionKind(getattr(self.kind, "value", self.kind))


@dataclass
class NPCTemplate:
    id: Optional[str]
    name: str
    category: CreatureType = CreatureType.HUMANOID
    challenge_rating: float = 0.0
    size: CreatureSize = CreatureSize.MEDIUM
    stats: NPCStats = field(default_factory=NPCStats)
    equipment: List[NPCEquipment] = field(default_factory=list)
    spells: List[NPCSpell] = field(default_factory=list)
    actions: List[NPCAction] = field(default_factory=list)
    behavior: Dict[str, str] = field(default_factory=dict)
    is_system: bool = False
    created_by: Optional[str] = None
    variant_of: Optional[str] = None
    variant_type: Optional[VariantType] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.name = str(self.name or "").strip()
        self.category = CreatureType.normalize(self.category)
        self.size = CreatureSize.normalize(self.size)
        if self.variant_type is not None:
            self.variant_type = VariantType(getattr(self.variant_type, "value", self.variant_type))

    @property
    def has_lair_actions(self) -> bool:
        return any(action.kind == ActionKind.LAIR_ACTION for action in self.actions)


def validate_template(template: NPCTemplate) -> List[str]:
    errors: List[str] = []
    if not 1 <= len(template.name) <= 100:
        errors.append("Template name is required and cannot exceed 100 characters")
    if not is_valid_challenge_rating(template.challenge_rating):
        errors.append("challenge_rating must be 0, 1/8, 1/4, 1/2 or a whole number from 1 to 30")
    errors.extend(template.stats.ability_scores.validation_errors())
    if template.stats.hit_points.maximum < 1:
        errors.append("maximum hit points must be at least 1")
    if not in_range(template.stats.armor_class, ARMOR_CLASS_RANGE):
        errors.append("armor class must be between 1 and 30")
    for spell in template.spells:
        if not 0 <= spell.level <= 9:
            errors.append(f"spell {spell.name} level must be between 0 and 9")
    return errors
