from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from encounter_tracker.application.dtos import BatchResult, ItemResult, Page, paginate
from encounter_tracker.application.mappers.document_mapper import character_from_document, character_to_document
from encounter_tracker.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TrackerError,
    ValidationError,
    raise_if_invalid,
)
from encounter_tracker.domain.models.character import (
    CLASS_HIT_DICE,
    Character,
    validate_character,
)
from encounter_tracker.domain.models.stats import (
    ABILITY_NAMES,
    EXPERIENCE_THRESHOLDS,
    LEVEL_RANGE,
    SKILL_ABILITIES,
    SPELLCASTING_ABILITIES,
    AbilityScores,
    level_for_experience,
    proficiency_bonus,
)
from encounter_tracker.domain.repositories import CharacterRepository, EncounterRepository


logger = logging.getLogger(__name__)

# Spell slots by caster level, index 0 is caster level 1.
FULL_CASTER_SLOTS = (
    (2,), (3,), (4, 2), (4, 3), (4, 3, 2), (4, 3, 3), (4, 3, 3, 1), (4, 3, 3, 2), (4, 3, 3, 3, 1),
    (4, 3, 3, 3, 2), (4, 3, 3, 3, 2, 1), (4, 3, 3, 3, 2, 1), (4, 3, 3, 3, 2, 1, 1), (4, 3, 3, 3, 2, 1, 1),
    (4, 3, 3, 3, 2, 1, 1, 1), (4, 3, 3, 3, 2, 1, 1, 1), (4, 3, 3, 3, 2, 1, 1, 1, 1),
    (4, 3, 3, 3, 3, 1, 1, 1, 1), (4, 3, 3, 3, 3, 2, 1, 1, 1), (4, 3, 3, 3, 3, 2, 2, 1, 1),
)
FULL_CASTERS = frozenset({"bard", "cleric", "druid", "sorcerer", "wizard"})
HALF_CASTERS = frozenset({"artificer", "paladin", "ranger"})
PACT_CASTERS = frozenset({"warlock"})

CARRYING_CAPACITY_PER_STRENGTH = 15


@dataclass
class CharacterPreset:
    name: str
    type: str
    race: str
    class_name: str
    level: int
    ability_scores: AbilityScores
    hit_points: int
    armor_class: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "race": self.race,
            "class": self.class_name,
            "level": self.level,
            "ability_scores": self.ability_scores.to_dict(),
            "hit_points": self.hit_points,
            "armor_class": self.armor_class,
        }


def caster_level(character: Character) -> int:
    level = 0
    for cls in character.classes:
        if cls.class_name in FULL_CASTERS:
            level += cls.level
        elif cls.class_name == "artificer":
            level += math.ceil(cls.level / 2)
        elif cls.class_name in HALF_CASTERS:
            level += cls.level // 2
    return level


def spellcasting_stats(character: Character) -> Dict[str, Any]:
    level = caster_level(character)
    slots: Dict[int, int] = {}
    if level > 0:
        for spell_level, count in enumerate(FULL_CASTER_SLOTS[min(level, 20) - 1], start=1):
            slots[spell_level] = count
    pact_level = sum(cls.level for cls in character.classes if cls.class_name in PACT_CASTERS)
    if pact_level:
        pact_slot_level = min(5, (pact_level + 1) // 2)
        pact_slots = 1 if pact_level == 1 else 2 if pact_level < 11 else 3 if pact_level < 17 else 4
        slots[pact_slot_level] = slots.get(pact_slot_level, 0) + pact_slots

    ability = next(
        (SPELLCASTING_ABILITIES[cls.class_name] for cls in character.classes if cls.class_name in SPELLCASTING_ABILITIES),
        None,
    )
    modifier = character.ability_modifier(ability) if ability else 0
    return {
        "caster_level": level,
        "spellcasting_ability": ability,
        "spell_slots": slots,
        "spell_attack_bonus": modifier + character.proficiency_bonus if ability else 0,
        "spell_save_dc": 8 + modifier + character.proficiency_bonus if ability else 8,
    }


def equipment_weight(character: Character) -> Dict[str, float]:
    equipped = sum(item.weight * item.quantity for item in character.equipment if item.equipped)
    carried = sum(item.weight * item.quantity for item in character.equipment if not item.equipped)
    return {"total": equipped + carried, "equipped": equipped, "carried": carried}


def carrying_capacity(character: Character) -> Dict[str, Any]:
    strength = character.ability_scores.strength
    maximum = strength * CARRYING_CAPACITY_PER_STRENGTH
    current = equipment_weight(character)["total"]
    if current > maximum:
        level = "overloaded"
    elif current > strength * 10:
        level = "heavy"
    elif current > strength * 5:
        level = "light"
    else:
        level = "none"
    return {"maximum": maximum, "current": current, "encumbrance_level": level}


def experience_info(character: Character) -> Dict[str, Any]:
    level = level_for_experience(character.experience)
    is_max = level >= LEVEL_RANGE[1]
    next_xp = EXPERIENCE_THRESHOLDS[-1] if is_max else EXPERIENCE_THRESHOLDS[level]
    return {
        "current_xp": character.experience,
        "current_level": level,
        "next_level_xp": next_xp,
        "xp_to_next_level": 0 if is_max else next_xp - character.experience,
        "is_max_level": is_max,
    }


def character_stats(character: Character) -> Dict[str, Any]:
    modifiers = character.ability_scores.modifiers()
    bonus = character.proficiency_bonus
    return {
        "ability_modifiers": modifiers,
        "saving_throws": {
            name: modifiers[name] + (bonus if character.saving_throws.get(name) else 0) for name in ABILITY_NAMES
        },
        "skills": {
            skill: modifiers[SKILL_ABILITIES[skill]] + (bonus if proficient else 0)
            for skill, proficient in character.skills.items()
            if skill in SKILL_ABILITIES
        },
        "total_level": character.level,
        "class_levels": {cls.class_name: cls.level for cls in character.classes},
        "proficiency_bonus": bonus,
        "initiative_modifier": character.initiative_modifier,
        "armor_class": character.armor_class,
        "effective_hit_points": character.effective_hp,
        "status": character.status,
        "is_alive": character.is_alive,
        "is_unconscious": character.is_unconscious,
    }


class CharacterService:
    def __init__(
        self,
        character_repo: CharacterRepository,
        *,
        encounter_repo: Optional[EncounterRepository] = None,
    ) -> None:
        self.character_repo = character_repo
        self.encounter_repo = encounter_repo

    @staticmethod
    def _build(document: Dict[str, Any]) -> Character:
        try:
            return character_from_document(document)
        except (TypeError, ValueError, KeyError) as exc:
            raise ValidationError("Invalid character data", code="INVALID_CHARACTER_DATA", details=[str(exc)]) from exc

    def _store(self, character: Character) -> Character:
        raise_if_invalid(validate_character(character), "Invalid character data")
        character.updated_at = datetime.now(timezone.utc)
        if character.created_at is None:
            character.created_at = character.updated_at
        return self.character_repo.save(character)

    # -- access ------------------------------------------------------------

    def _load(self, character_id: str) -> Character:
        character = self.character_repo.get(character_id)
        if character is None:
            raise NotFoundError("Character not found", code="CHARACTER_NOT_FOUND")
        return character

    def get_character(self, character_id: str, user_id: str) -> Character:
        character = self._load(character_id)
        if character.owner_id != user_id and not character.is_public:
            raise PermissionDeniedError("You do not have access to this character")
        return character

    def _owned(self, character_id: str, user_id: str) -> Character:
        character = self._load(character_id)
        if character.owner_id != user_id:
            raise PermissionDeniedError("Only the owner can modify this character")
        return character

    def permissions(self, character_id: str, user_id: str) -> Dict[str, bool]:
        character = self._load(character_id)
        is_owner = character.owner_id == user_id
        return {
            "can_view": is_owner or character.is_public,
            "can_edit": is_owner,
            "can_delete": is_owner,
        }

    # -- CRUD --------------------------------------------------------------

    def create_character(self, owner_id: str, data: Dict[str, Any]) -> Character:
        document = dict(data)
        document.pop("id", None)
        document["owner_id"] = owner_id
        hit_points = document.get("hit_points")
        if isinstance(hit_points, dict) and "current" not in hit_points:
            document["hit_points"] = {**hit_points, "current": hit_points.get("maximum", 10)}
        character = self._build(document)
        if "proficiency_bonus" not in data:
            character.proficiency_bonus = proficiency_bonus(max(1, character.level))
        saved = self._store(character)
        logger.info("Character created", extra={"character_id": saved.id, "owner_id": owner_id})
        return saved

    def update_character(self, character_id: str, user_id: str, updates: Dict[str, Any]) -> Character:
        current = self._owned(character_id, user_id)
        document = character_to_document(current)
        for key, value in updates.items():
            if key in ("id", "owner_id", "created_at"):
                continue
            if key == "hit_points" and isinstance(value, dict):
                document["hit_points"] = {**document["hit_points"], **value}
            elif key == "ability_scores" and isinstance(value, dict):
                document["ability_scores"] = {**document["ability_scores"], **value}
            else:
                document[key] = value
        character = self._build(document)
        character.id = current.id
        return self._store(character)

    def delete_character(self, character_id: str, user_id: str) -> None:
        self._owned(character_id, user_id)
        if self.encounter_repo is not None:
            for encounter in self.encounter_repo.list_active(user_id):
                if encounter.get_participant(character_id) is not None:
                    raise ConflictError(
                        f"Character is in use by active encounter {encounter.name}",
                        code="CHARACTER_IN_USE",
                    )
        self.character_repo.delete(character_id)
        logger.info("Character deleted", extra={"character_id": character_id})

    # -- queries -----------------------------------------------------------

    def list_characters(self, owner_id: str, *, page: int = 1, limit: int = 20) -> Page[Character]:
        return paginate(self.character_repo.list_by_owner(owner_id), page, limit)

    def search(self, owner_id: str, query: str) -> List[Character]:
        if not str(query or "").strip():
            raise ValidationError("Search query is required", code="INVALID_SEARCH_CRITERIA")
        return self.character_repo.search_by_name(owner_id, query)

    def by_class(self, owner_id: str, class_name: str) -> List[Character]:
        return self.character_repo.find_by_class(owner_id, class_name)

    def by_race(self, owner_id: str, race: str) -> List[Character]:
        return self.character_repo.find_by_race(owner_id, race)

    def by_type(self, owner_id: str, character_type: str) -> List[Character]:
        return self.character_repo.find_by_type(owner_id, str(character_type).strip().lower())

    def public_characters(self) -> List[Character]:
        return self.character_repo.list_public()

    # -- derived stats -----------------------------------------------------

    def stats(self, character_id: str, user_id: str) -> Dict[str, Any]:
        return character_stats(self.get_character(character_id, user_id))

    def summary(self, character_id: str, user_id: str) -> Dict[str, Any]:
        return self.get_character(character_id, user_id).to_summary()

    def spellcasting(self, character_id: str, user_id: str) -> Dict[str, Any]:
        return spellcasting_stats(self.get_character(character_id, user_id))

    def carrying_capacity(self, character_id: str, user_id: str) -> Dict[str, Any]:
        return carrying_capacity(self.get_character(character_id, user_id))

    def equipment_weight(self, character_id: str, user_id: str) -> Dict[str, float]:
        return equipment_weight(self.get_character(character_id, user_id))

    def experience(self, character_id: str, user_id: str) -> Dict[str, Any]:
        return experience_info(self.get_character(character_id, user_id))

    # -- templates and cloning --------------------------------------------

    def create_template(self, character_id: str, user_id: str, template_name: str) -> CharacterPreset:
        character = self.get_character(character_id, user_id)
        if not character.classes:
            raise ValidationError("Character has no class to template", code="INVALID_TEMPLATE_DATA")
        primary = character.classes[0]
        return CharacterPreset(
            name=template_name,
            type=character.type.value,
            race=character.race,
            class_name=primary.class_name,
            level=primary.level,
            ability_scores=character.ability_scores,
            hit_points=character.hit_points.maximum,
            armor_class=character.armor_class,
        )

    def clone_character(self, character_id: str, user_id: str, new_name: str) -> Character:
        source = self.get_character(character_id, user_id)
        document = character_to_document(source)
        document.update(
            {
                "id": None,
                "name": new_name,
                "is_public": False,
                "party_id": None,
                "created_at": None,
                "updated_at": None,
            }
        )
        # Clones start fresh.
        document["hit_points"] = {
            "maximum": source.hit_points.maximum,
            "current": source.hit_points.maximum,
            "temporary": 0,
            "death_save_failures": 0,
        }
        clone = self._build(document)
        clone.owner_id = user_id
        return self._store(clone)

    def create_from_template(
        self,
        owner_id: str,
        preset: CharacterPreset,
        customizations: Optional[Dict[str, Any]] = None,
    ) -> Character:
        level = int(preset.level)
        document: Dict[str, Any] = {
            "owner_id": owner_id,
            "name": preset.name,
            "type": preset.type,
            "race": preset.race,
            "size": "medium",
            "classes": [
                {
                    "class": preset.class_name,
                    "level": level,
                    "hit_die": CLASS_HIT_DICE.get(str(preset.class_name).lower(), 8),
                }
            ],
            "ability_scores": preset.ability_scores.to_dict(),
            "hit_points": {"maximum": preset.hit_points, "current": preset.hit_points, "temporary": 0},
            "armor_class": preset.armor_class,
            "speed": 30,
            "proficiency_bonus": math.ceil(level / 4) + 1,
        }
        document.update(customizations or {})
        character = self._build(document)
        character.owner_id = owner_id
        return self._store(character)

    # -- bulk --------------------------------------------------------------

    def create_many(self, owner_id: str, items: Sequence[Dict[str, Any]]) -> BatchResult:
        result = BatchResult(operation="create")
        for index, data in enumerate(items):
            try:
                created = self.create_character(owner_id, data)
                result.results.append(ItemResult(id=str(index), success=True, result_id=created.id))
            except TrackerError as exc:
                result.results.append(ItemResult(id=str(index), success=False, error=exc.message))
        return result

    def update_many(self, user_id: str, updates: Sequence[Dict[str, Any]]) -> BatchResult:
        result = BatchResult(operation="update")
        for update in updates:
            character_id = str(update.get("character_id") or "")
            try:
                self.update_character(character_id, user_id, dict(update.get("data") or {}))
                result.results.append(ItemResult(id=character_id, success=True, result_id=character_id))
            except TrackerError as exc:
                result.results.append(ItemResult(id=character_id, success=False, error=exc.message))
        return result

    def delete_many(self, user_id: str, character_ids: Sequence[str]) -> BatchResult:
        result = BatchResult(operation="delete")
        for character_id in character_ids:
            try:
                self.delete_character(character_id, user_id)
                result.results.append(ItemResult(id=character_id, success=True))
            except TrackerError as exc:
                result.results.append(ItemResult(id=character_id, success=False, error=exc.message))
        return result
