from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from encounter_tracker.domain.models.stats import (
    ABILITY_NAMES,
    ARMOR_CLASS_RANGE,
    HIT_DIE_RANGE,
    LEVEL_RANGE,
    SKILL_ABILITIES,
    SPELL_LEVEL_RANGE,
    AbilityScores,
    in_range,
)


CHARACTER_CLASSES = (
    "artificer",
    "barbarian",
    "bard",
    "cleric",
    "druid",
    "fighter",
    "monk",
    "paladin",
    "ranger",
    "rogue",
    "sorcerer",
    "warlock",
    "wizard",
)

CHARACTER_RACES = (
    "dragonborn",
    "dwarf",
    "elf",
    "gnome",
    "half-elf",
    "halfling",
    "half-orc",
    "human",
    "tiefling",
    "aarakocra",
    "genasi",
    "goliath",
    "aasimar",
    "bugbear",
    "firbolg",
    "goblin",
    "hobgoblin",
    "kenku",
    "kobold",
    "lizardfolk",
    "orc",
    "tabaxi",
    "triton",
    "yuan-ti",
    "custom",
)

SPELL_SCHOOLS = (
    "abjuration",
    "conjuration",
    "divination",
    "enchantment",
    "evocation",
    "illusion",
    "necromancy",
    "transmutation",
)

CLASS_HIT_DICE: Dict[str, int] = {
    "artificer": 8,
    "barbarian": 12,
    "bard": 8,
    "cleric": 8,
    "druid": 8,
    "fighter": 10,
    "monk": 8,
    "paladin": 10,
    "ranger": 10,
    "rogue": 8,
    "sorcerer": 6,
    "warlock": 8,
    "wizard": 6,
}

MAX_CLASSES = 5
DEATH_SAVE_LIMIT = 3


class CharacterType(str, Enum):
    PC = "pc"
    NPC = "npc"

    @classmethod
    def normalize(cls, value: object) -> "CharacterType":
        raw = str(getattr(value, "value", value) or "").strip().lower()
        for member in cls:
            if member.value == raw:
                return member
        raise ValueError("Character type must be either PC or NPC")


class CreatureSize(str, Enum):
    TINY = "tiny"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"
    GARGANTUAN = "gargantuan"

    @classmethod
    def normalize(cls, value: object) -> "CreatureSize":
        raw = str(getattr(value, "value", value) or "").strip().lower()
        for member in cls:
            if member.value == raw:
                return member
        return cls.MEDIUM


@dataclass
class CharacterClassLevel:
    class_name: str
    level: int = 1
    hit_die: int = 0
    subclass: Optional[str] = None

    def __post_init__(self) -> None:
        self.class_name = str(self.class_name or "").strip().lower()
        if not self.hit_die:
            self.hit_die = CLASS_HIT_DICE.get(self.class_name, 8)


@dataclass
class HitPoints:
    maximum: int = 10
    current: int = 10
    temporary: int = 0
    death_save_failures: int = 0


@dataclass
class EquipmentItem:
    name: str
    quantity: int = 1
    weight: float = 0.0
    value: float = 0.0
    description: str = ""
    equipped: bool = False
    magical: bool = False


@dataclass
class SpellComponents:
    verbal: bool = False
    somatic: bool = False
    material: bool = False
    material_component: Optional[str] = None


@dataclass
class Spell:
    name: str
    level: int = 0
    school: str = "evocation"
    casting_time: str = "1 action"
    range: str = "Self"
    components: SpellComponents = field(default_factory=SpellComponents)
    duration: str = "Instantaneous"
    description: str = ""
    is_prepared: bool = False


@dataclass
class Character:
    id: Optional[str]
    owner_id: str
    name: str
    type: CharacterType = CharacterType.PC
    race: str = "human"
    custom_race: Optional[str] = None
    size: CreatureSize = CreatureSize.MEDIUM
    classes: List[CharacterClassLevel] = field(default_factory=list)
    ability_scores: AbilityScores = field(default_factory=AbilityScores)
    hit_points: HitPoints = field(default_factory=HitPoints)
    armor_class: int = 10
    speed: int = 30
    proficiency_bonus: int = 2
    experience: int = 0
    saving_throws: Dict[str, bool] = field(default_factory=dict)
    skills: Dict[str, bool] = field(default_factory=dict)
    equipment: List[EquipmentItem] = field(default_factory=list)
    spells: List[Spell] = field(default_factory=list)
    backstory: str = ""
    notes: str = ""
    image_url: Optional[str] = None
    is_public: bool = False
    party_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.name = str(self.name or "").strip()
        self.type = CharacterType.normalize(self.type)
        self.size = CreatureSize.normalize(self.size)
        self.race = str(self.race or "human").strip().lower()
        if isinstance(self.ability_scores, dict):
            self.ability_scores = AbilityScores(**self.ability_scores)
        self.saving_throws = {
            name: bool(self.saving_throws.get(name, False)) for name in ABILITY_NAMES
        } if isinstance(self.saving_throws, dict) else {name: False for name in ABILITY_NAMES}

    @property
    def level(self) -> int:
        return sum(int(cls.level) for cls in self.classes)

    @property
    def display_race(self) -> str:
        if self.race == "custom" and self.custom_race:
            return self.custom_race
        return self.race

    def ability_modifier(self, ability: str) -> int:
        return self.ability_scores.modifier(ability)

    @property
    def initiative_modifier(self) -> int:
        return self.ability_scores.initiative

    @property
    def effective_hp(self) -> int:
        return self.hit_points.current + self.hit_points.temporary

    @property
    def is_alive(self) -> bool:
        return self.hit_points.current > 0

    @property
    def is_unconscious(self) -> bool:
        return self.hit_points.current <= 0 and self.hit_points.death_save_failures < DEATH_SAVE_LIMIT

    @property
    def status(self) -> str:
        if self.is_alive:
            return "alive"
        if self.is_unconscious:
            return "unconscious"
        return "dead"

    def take_damage(self, damage: int) -> None:
        if damage <= 0:
            return
        if self.hit_points.temporary > 0:
            absorbed = min(damage, self.hit_points.temporary)
            self.hit_points.temporary -= absorbed
            damage -= absorbed
        self.hit_points.current = max(0, self.hit_points.current - damage)

    def heal(self, healing: int) -> None:
        if healing <= 0:
            return
        self.hit_points.current = min(self.hit_points.maximum, self.hit_points.current + healing)
        if self.hit_points.current > 0:
            self.hit_points.death_save_failures = 0

    def add_temporary_hp(self, temp_hp: int) -> None:
        if temp_hp <= 0:
            return
        # Temporary hit points do not stack.
        self.hit_points.temporary = max(self.hit_points.temporary, temp_hp)

    def set_maximum_hp(self, maximum: int) -> None:
        if maximum <= 0:
            return
        self.hit_points.maximum = maximum
        self.hit_points.current = min(self.hit_points.current, maximum)

    def record_death_save_failure(self, count: int = 1) -> None:
        if self.is_alive:
            return
        self.hit_points.death_save_failures = min(DEATH_SAVE_LIMIT, self.hit_points.death_save_failures + count)

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "race": self.display_race,
            "type": self.type.value,
            "level": self.level,
            "classes": [
                {"class": cls.class_name, "level": cls.level, "subclass": cls.subclass} for cls in self.classes
            ],
            "hit_points": {
                "maximum": self.hit_points.maximum,
                "current": self.hit_points.current,
                "temporary": self.hit_points.temporary,
            },
            "armor_class": self.armor_class,
            "is_public": self.is_public,
            "party_id": self.party_id,
        }


def validate_character(character: Character) -> List[str]:
    errors: List[str] = []
    if not 1 <= len(character.name) <= 100:
        errors.append("name must be between 1 and 100 characters")
    if not character.owner_id:
        errors.append("owner_id is required")
    if character.race not in CHARACTER_RACES:
        errors.append("Invalid character race")
    if character.race == "custom" and not (character.custom_race or "").strip():
        errors.append("custom_race is required when race is custom")
    if not 1 <= len(character.classes) <= MAX_CLASSES:
        errors.append(f"a character needs between 1 and {MAX_CLASSES} classes")
    for cls in character.classes:
        if cls.class_name not in CHARACTER_CLASSES:
            errors.append(f"Invalid character class: {cls.class_name}")
        if not in_range(cls.level, LEVEL_RANGE):
            errors.append(f"{cls.class_name} level must be between 1 and 20")
        if not in_range(cls.hit_die, HIT_DIE_RANGE):
            errors.append(f"{cls.class_name} hit die must be between 4 and 12")
        if cls.subclass is not None and not 1 <= len(cls.subclass) <= 50:
            errors.append("subclass must be between 1 and 50 characters")
    if character.level > LEVEL_RANGE[1]:
        errors.append("total character level cannot exceed 20")
    errors.extend(character.ability_scores.validation_errors())
    hp = character.hit_points
    if hp.maximum < 1:
        errors.append("maximum hit points must be at least 1")
    if hp.current < 0 or hp.temporary < 0:
        errors.append("hit points cannot be negative")
    if hp.current > hp.maximum:
        errors.append("current hit points cannot exceed maximum")
    if not in_range(character.armor_class, ARMOR_CLASS_RANGE):
        errors.append("armor class must be between 1 and 30")
    if not 0 <= int(character.speed) <= 120:
        errors.append("speed must be between 0 and 120")
    if not 2 <= int(character.proficiency_bonus) <= 6:
        errors.append("proficiency bonus must be between 2 and 6")
    for skill in character.skills:
        if skill not in SKILL_ABILITIES:
            errors.append(f"Unknown skill: {skill}")
    for item in character.equipment:
        if not 1 <= len(item.name or "") <= 100:
            errors.append("equipment name must be between 1 and 100 characters")
        if item.quantity < 0 or item.weight < 0 or item.value < 0:
            errors.append(f"equipment {item.name} cannot have negative quantity, weight or value")
    for spell in character.spells:
        if not 1 <= len(spell.name or "") <= 100:
            errors.append("spell name must be between 1 and 100 characters")
        if not in_range(spell.level, SPELL_LEVEL_RANGE):
            errors.append(f"spell {spell.name} level must be between 0 and 9")
        if spell.school not in SPELL_SCHOOLS:
            errors.append(f"spell {spell.name} has an invalid school")
    if len(character.backstory) > 2000:
        errors.append("backstory cannot exceed 2000 characters")
    if len(character.notes) > 1000:
        errors.append("notes cannot exceed 1000 characters")
    return errors
