from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from encounter_tracker.application.mappers.document_mapper import template_from_document, template_to_document
from encounter_tracker.domain.errors import (
    NotFoundError,
    PermissionDeniedError,
    TrackerError,
    ValidationError,
    raise_if_invalid,
)
from encounter_tracker.domain.models.encounter import ParticipantReference, ParticipantType
from encounter_tracker.domain.models.npc_template import (
    ActionKind,
    CreatureType,
    ImportFormat,
    NPCAction,
    NPCEquipment,
    NPCHitPoints,
    NPCStats,
    NPCTemplate,
    VariantType,
    parse_challenge_rating,
    proficiency_bonus_for_cr,
    validate_template,
)
from encounter_tracker.domain.models.stats import AbilityScores, ability_scores_from_mapping
from encounter_tracker.domain.repositories import NPCTemplateRepository
from encounter_tracker.domain.services.npc_variants import apply_variant


logger = logging.getLogger(__name__)

_DNDBEYOND_ABILITY_KEYS = {
    "str": "strength",
    "dex": "dexterity",
    "con": "constitution",
    "int": "intelligence",
    "wis": "wisdom",
    "cha": "charisma",
}


@dataclass
class TemplateFilters:
    category: Optional[str] = None
    min_cr: Optional[float] = None
    max_cr: Optional[float] = None
    search: Optional[str] = None
    size: Optional[str] = None
    is_system: Optional[bool] = None

    def matches(self, template: NPCTemplate) -> bool:
        if self.category and template.category.value != self.category.strip().lower():
            return False
        if self.min_cr is not None and template.challenge_rating < self.min_cr:
            return False
        if self.max_cr is not None and template.challenge_rating > self.max_cr:
            return False
        if self.size and template.size.value != self.size.strip().lower():
            return False
        if self.is_system is not None and template.is_system != self.is_system:
            return False
        if self.search:
            needle = self.search.strip().lower()
            if needle not in template.name.lower() and needle not in template.category.value:
                return False
        return True


def _system_template(
    slug: str,
    name: str,
    category: CreatureType,
    challenge_rating: float,
    scores: Dict[str, int],
    hit_points: int,
    hit_dice: str,
    armor_class: int,
    *,
    size: str = "medium",
    speed: int = 30,
    actions: Optional[List[NPCAction]] = None,
    **stat_lists: List[str],
) -> NPCTemplate:
    return NPCTemplate(
        id=f"system-{slug}",
        name=name,
        category=category,
        challenge_rating=challenge_rating,
        size=size,
        stats=NPCStats(
            ability_scores=AbilityScores(**scores),
            hit_points=NPCHitPoints(maximum=hit_points, current=hit_points, hit_dice=hit_dice),
            armor_class=armor_class,
            speed=speed,
            proficiency_bonus=proficiency_bonus_for_cr(challenge_rating),
            **stat_lists,
        ),
        actions=list(actions or []),
        is_system=True,
    )


def _scores(strength, dexterity, constitution, intelligence, wisdom, charisma) -> Dict[str, int]:
    return {
        "strength": strength,
        "dexterity": dexterity,
        "constitution": constitution,
        "intelligence": intelligence,
        "wisdom": wisdom,
        "charisma": charisma,
    }


def build_system_templates() -> List[NPCTemplate]:
    """A small SRD bestiary available to every user."""
    return [
        _system_template(
            "goblin", "Goblin", CreatureType.HUMANOID, 0.25, _scores(8, 14, 10, 10, 8, 8), 7, "2d6", 15,
            size="small",
            actions=[NPCAction(name="Scimitar", attack_bonus=4, damage="1d6+2")],
            senses=["darkvision 60 ft."],
            languages=["Common", "Goblin"],
        ),
        _system_template(
            "bandit", "Bandit", CreatureType.HUMANOID, 0.125, _scores(11, 12, 12, 10, 10, 10), 11, "2d8", 12,
            actions=[NPCAction(name="Scimitar", attack_bonus=3, damage="1d6+1")],
            languages=["Common"],
        ),
        _system_template(
            "wolf", "Wolf", CreatureType.BEAST, 0.25, _scores(12, 15, 12, 3, 12, 6), 11, "2d4+2", 13,
            speed=40,
            actions=[NPCAction(name="Bite", attack_bonus=4, damage="2d4+2")],
        ),
        _system_template(
            "skeleton", "Skeleton", CreatureType.UNDEAD, 0.25, _scores(10, 14, 15, 6, 8, 5), 13, "2d8+4", 13,
            actions=[NPCAction(name="Shortsword", attack_bonus=4, damage="1d6+2")],
            damage_vulnerabilities=["bludgeoning"],
            damage_immunities=["poison"],
            condition_immunities=["exhaustion", "poisoned"],
            senses=["darkvision 60 ft."],
        ),
        _system_template(
            "orc", "Orc", CreatureType.HUMANOID, 0.5, _scores(16, 12, 16, 7, 11, 10), 15, "2d8+6", 13,
            actions=[NPCAction(name="Greataxe", attack_bonus=5, damage="1d12+3")],
            senses=["darkvision 60 ft."],
            languages=["Common", "Orc"],
        ),
        _system_template(
            "ogre", "Ogre", CreatureType.GIANT, 2.0, _scores(19, 8, 16, 5, 7, 7), 59, "7d10+21", 11,
            size="large", speed=40,
            actions=[NPCAction(name="Greatclub", attack_bonus=6, damage="2d8+4")],
            languages=["Common", "Giant"],
        ),
        _system_template(
            "young-red-dragon", "Young Red Dragon", CreatureType.DRAGON, 10.0, _scores(23, 10, 21, 14, 11, 19),
            178, "17d10+85", 18,
            size="large", speed=40,
            actions=[
                NPCAction(name="Bite", attack_bonus=10, damage="2d10+6"),
                NPCAction(name="Fire Breath", damage="16d6", recharge="5-6"),
            ],
            damage_immunities=["fire"],
            senses=["blindsight 30 ft.", "darkvision 120 ft."],
            languages=["Common", "Draconic"],
        ),
        _system_template(
            "lich", "Lich", CreatureType.UNDEAD, 21.0, _scores(11, 16, 16, 20, 14, 16), 135, "18d8+54", 17,
            actions=[
                NPCAction(name="Paralyzing Touch", attack_bonus=12, damage="3d6"),
                NPCAction(name="Disrupt Life", kind=ActionKind.LEGENDARY_ACTION, damage="6d6"),
                NPCAction(name="Lair Tremor", kind=ActionKind.LAIR_ACTION),
            ],
            damage_resistances=["cold", "lightning", "necrotic"],
            damage_immunities=["poison"],
            condition_immunities=["charmed", "exhaustion", "frightened", "paralyzed", "poisoned"],
            senses=["truesight 120 ft."],
            languages=["Common", "Draconic", "Abyssal", "Infernal"],
        ),
    ]


def _first_int(value: Any, default: int) -> int:
    """Open5e and D&D Beyond report some stats as ``"13 (natural armor)"`` or lists."""
    if isinstance(value, list):
        value = value[0] if value else default
    if isinstance(value, dict):
        value = value.get("value", default)
    if isinstance(value, (int, float)):
        return int(value)
    digits = ""
    for ch in str(value or "").strip():
        if ch.isdigit():
            digits += ch
        elif digits:
            break
    return int(digits) if digits else default


def _split_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return [segment.strip() for segment in str(value or "").split(",") if segment.strip()]


def _parse_cr(raw: Any) -> float:
    try:
        return parse_challenge_rating(raw)
    except ValueError as exc:
        raise ValidationError(str(exc), code="IMPORT_ERROR") from exc


def parse_json_template(data: Dict[str, Any]) -> NPCTemplate:
    if not data.get("name") or data.get("challengeRating", data.get("challenge_rating")) is None:
        raise ValidationError("Missing required fields: name, challengeRating", code="IMPORT_ERROR")
    challenge_rating = _parse_cr(data.get("challengeRating", data.get("challenge_rating")))
    hit_points = data.get("hitPoints") or {}
    if not isinstance(hit_points, dict):
        hit_points = {"maximum": hit_points}
    maximum = _first_int(hit_points.get("maximum", hit_points.get("max")), 1)
    return NPCTemplate(
        id=None,
        name=data["name"],
        category=data.get("creatureType") or data.get("category") or "humanoid",
        challenge_rating=challenge_rating,
        size=data.get("size") or "medium",
        stats=NPCStats(
            ability_scores=ability_scores_from_mapping(data.get("abilityScores")),
            hit_points=NPCHitPoints(
                maximum=maximum,
                current=_first_int(hit_points.get("current"), maximum),
                hit_dice=hit_points.get("hitDice") or hit_points.get("formula"),
            ),
            armor_class=_first_int(data.get("armorClass"), 10),
            speed=_first_int(data.get("speed"), 30),
            proficiency_bonus=proficiency_bonus_for_cr(challenge_rating),
            damage_vulnerabilities=_split_list(data.get("damageVulnerabilities")),
            damage_resistances=_split_list(data.get("damageResistances")),
            damage_immunities=_split_list(data.get("damageImmunities")),
            condition_immunities=_split_list(data.get("conditionImmunities")),
            senses=_split_list(data.get("senses")),
            languages=_split_list(data.get("languages")),
        ),
        equipment=[
            NPCEquipment(name=item) if isinstance(item, str) else NPCEquipment(name=str(item.get("name", "")))
            for item in data.get("equipment") or []
        ],
    )


def parse_dndbeyond_template(data: Dict[str, Any]) -> NPCTemplate:
    if not data.get("name") or data.get("cr") is None:
        raise ValidationError("Missing required fields: name, cr", code="IMPORT_ERROR")
    challenge_rating = _parse_cr(str(data["cr"]))
    raw_stats = data.get("stats") or {}
    scores = {full: raw_stats.get(short) for short, full in _DNDBEYOND_ABILITY_KEYS.items()}
    maximum = _first_int(data.get("hp"), 1)
    return NPCTemplate(
        id=None,
        name=data["name"],
        category=data.get("type") or "humanoid",
        challenge_rating=challenge_rating,
        size=data.get("size") or "medium",
        stats=NPCStats(
            ability_scores=ability_scores_from_mapping(scores),
            hit_points=NPCHitPoints(maximum=maximum, current=maximum),
            armor_class=_first_int(data.get("ac"), 10),
            speed=_first_int(data.get("speed"), 30),
            proficiency_bonus=proficiency_bonus_for_cr(challenge_rating),
        ),
    )


def parse_roll20_template(data: Dict[str, Any]) -> NPCTemplate:
    """Roll20 character sheet exports keep every stat in ``attribs`` as name/current pairs."""
    attribs = {
        str(row.get("name", "")).strip().lower(): row.get("current")
        for row in data.get("attribs") or []
        if isinstance(row, dict)
    }
    name = data.get("name") or attribs.get("npc_name")
    raw_cr = attribs.get("npc_challenge", data.get("cr"))
    if not name or raw_cr in (None, ""):
        raise ValidationError("Missing required fields: name, npc_challenge", code="IMPORT_ERROR")
    challenge_rating = _parse_cr(str(raw_cr))
    npc_type = str(attribs.get("npc_type") or "")
    # "Medium humanoid (goblinoid), neutral evil"
    words = npc_type.replace(",", " ").split()
    maximum = _first_int(attribs.get("hp_max", attribs.get("hp")), 1)
    return NPCTemplate(
        id=None,
        name=name,
        category=words[1] if len(words) > 1 else "humanoid",
        challenge_rating=challenge_rating,
        size=words[0] if words else "medium",
        stats=NPCStats(
            ability_scores=ability_scores_from_mapping({full: attribs.get(full) for full in _DNDBEYOND_ABILITY_KEYS.values()}),
            hit_points=NPCHitPoints(maximum=maximum, current=maximum, hit_dice=attribs.get("npc_hpformula")),
            armor_class=_first_int(attribs.get("npc_ac"), 10),
            speed=_first_int(attribs.get("npc_speed"), 30),
            proficiency_bonus=proficiency_bonus_for_cr(challenge_rating),
            damage_vulnerabilities=_split_list(attribs.get("npc_vulnerabilities")),
            damage_resistances=_split_list(attribs.get("npc_resistances")),
            damage_immunities=_split_list(attribs.get("npc_immunities")),
            condition_immunities=_split_list(attribs.get("npc_condition_immunities")),
            senses=_split_list(attribs.get("npc_senses")),
            languages=_split_list(attribs.get("npc_languages")),
        ),
    )


def parse_custom_template(data: Dict[str, Any]) -> NPCTemplate:
    """The tracker's own document layout, as produced by the template mapper."""
    if not data.get("name") or data.get("challenge_rating") is None:
        raise ValidationError("Missing required fields: name, challenge_rating", code="IMPORT_ERROR")
    try:
        template = template_from_document(dict(data, challenge_rating=_parse_cr(data["challenge_rating"])))
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid template document: {exc}", code="IMPORT_ERROR") from exc
    template.id = None
    template.is_system = False
    return template


def parse_open5e_monster(data: Dict[str, Any]) -> NPCTemplate:
    if not data.get("name") or data.get("challenge_rating") in (None, ""):
        raise ValidationError("Open5e monster is missing name or challenge_rating", code="IMPORT_ERROR")
    challenge_rating = _parse_cr(str(data["challenge_rating"]))
    speed = data.get("speed")
    maximum = _first_int(data.get("hit_points"), 1)
    actions = [
        NPCAction(
            name=str(row.get("name", "")),
            kind=kind,
            description=str(row.get("desc") or ""),
            attack_bonus=row.get("attack_bonus"),
            damage=(
                f"{row['damage_dice']}+{row['damage_bonus']}"
                if row.get("damage_dice") and row.get("damage_bonus")
                else row.get("damage_dice")
            ),
        )
        for key, kind in (
            ("actions", ActionKind.ACTION),
            ("bonus_actions", ActionKind.BONUS_ACTION),
            ("reactions", ActionKind.REACTION),
            ("legendary_actions", ActionKind.LEGENDARY_ACTION),
        )
        for row in data.get(key) or []
        if isinstance(row, dict) and row.get("name")
    ]
    return NPCTemplate(
        id=None,
        name=data["name"],
        category=str(data.get("type") or "humanoid"),
        challenge_rating=challenge_rating,
        size=str(data.get("size") or "medium"),
        stats=NPCStats(
            ability_scores=ability_scores_from_mapping(data),
            hit_points=NPCHitPoints(maximum=maximum, current=maximum, hit_dice=data.get("hit_dice")),
            armor_class=_first_int(data.get("armor_class"), 10),
            speed=_first_int(speed.get("walk") if isinstance(speed, dict) else speed, 30),
            proficiency_bonus=proficiency_bonus_for_cr(challenge_rating),
            damage_vulnerabilities=_split_list(data.get("damage_vulnerabilities")),
            damage_resistances=_split_list(data.get("damage_resistances")),
            damage_immunities=_split_list(data.get("damage_immunities")),
            condition_immunities=_split_list(data.get("condition_immunities")),
            senses=_split_list(data.get("senses")),
            languages=_split_list(data.get("languages")),
        ),
        actions=actions,
    )


TEMPLATE_PARSERS = {
    ImportFormat.JSON: parse_json_template,
    ImportFormat.DNDBEYOND: parse_dndbeyond_template,
    ImportFormat.ROLL20: parse_roll20_template,
    ImportFormat.CUSTOM: parse_custom_template,
    ImportFormat.OPEN5E: parse_open5e_monster,
}


def template_to_participant(template: NPCTemplate, *, name: Optional[str] = None) -> ParticipantReference:
    hit_points = template.stats.hit_points
    return ParticipantReference(
        character_id=uuid.uuid4().hex,
        name=name or template.name,
        type=ParticipantType.MONSTER,
        max_hit_points=hit_points.maximum,
        current_hit_points=hit_points.maximum,
        armor_class=template.stats.armor_class,
        dexterity=template.stats.ability_scores.dexterity,
        is_player=False,
    )


class NPCTemplateService:
    def __init__(self, template_repo: NPCTemplateRepository, *, monster_client=None, clock=None) -> None:
        self.template_repo = template_repo
        self.monster_client = monster_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def seed_system_templates(self) -> int:
        created = 0
        for template in build_system_templates():
            if self.template_repo.get(template.id) is None:
                template.created_at = template.updated_at = self._clock()
                self.template_repo.save(template)
                created += 1
        if created:
            logger.info("Seeded system NPC templates", extra={"count": created})
        return created

    def list_templates(self, user_id: Optional[str], filters: Optional[TemplateFilters] = None) -> List[NPCTemplate]:
        filters = filters or TemplateFilters()
        rows = [template for template in self.template_repo.list_visible(user_id) if filters.matches(template)]
        return sorted(rows, key=lambda t: (t.challenge_rating, t.name.lower()))

    def get_template(self, template_id: str, user_id: Optional[str] = None) -> NPCTemplate:
        if not str(template_id or "").strip():
            raise ValidationError("Template ID is required")
        template = self.template_repo.get(template_id)
        if template is None or not (template.is_system or template.created_by == user_id):
            raise NotFoundError("NPC template not found", code="TEMPLATE_NOT_FOUND")
        return template

    def templates_by_category(self, user_id: Optional[str]) -> Dict[str, List[NPCTemplate]]:
        grouped: Dict[str, List[NPCTemplate]] = {}
        for template in self.list_templates(user_id):
            grouped.setdefault(template.category.value, []).append(template)
        return grouped

    def _save(self, template: NPCTemplate) -> NPCTemplate:
        raise_if_invalid(validate_template(template), "Invalid NPC template")
        now = self._clock()
        template.created_at = template.created_at or now
        template.updated_at = now
        return self.template_repo.save(template)

    def create_template(self, template: NPCTemplate, user_id: str) -> NPCTemplate:
        template.id = None
        template.is_system = False
        template.created_by = user_id
        template.created_at = None
        saved = self._save(template)
        logger.info("NPC template created", extra={"template_id": saved.id, "user_id": user_id})
        return saved

    def _owned(self, template_id: str, user_id: str, action: str) -> NPCTemplate:
        template = self.get_template(template_id, user_id)
        if template.is_system:
            raise PermissionDeniedError(f"Cannot {action} system template")
        if template.created_by != user_id:
            raise PermissionDeniedError(f"You can only {action} your own templates")
        return template

    def update_template(self, template_id: str, user_id: str, document: Dict[str, Any]) -> NPCTemplate:
        existing = self._owned(template_id, user_id, "update")
        merged = template_to_document(existing)
        for key, value in document.items():
            if key in ("id", "is_system", "created_by", "created_at", "updated_at"):
                continue
            if key == "stats" and isinstance(value, dict):
                merged["stats"] = dict(merged["stats"], **value)
            else:
                merged[key] = value
        try:
            updated = template_from_document(merged)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid template data: {exc}") from exc
        return self._save(updated)

    def delete_template(self, template_id: str, user_id: str) -> None:
        self._owned(template_id, user_id, "delete")
        self.template_repo.delete(template_id)
        logger.info("NPC template deleted", extra={"template_id": template_id, "user_id": user_id})

    def import_template(self, payload: Any, import_format: str, user_id: str) -> NPCTemplate:
        try:
            parser = TEMPLATE_PARSERS[ImportFormat(str(import_format).strip().lower())]
        except ValueError as exc:
            raise ValidationError(f"Unsupported import format: {import_format}", code="IMPORT_ERROR") from exc
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"Invalid JSON: {exc.msg}", code="IMPORT_ERROR") from exc
        if not isinstance(payload, dict):
            raise ValidationError("Import data must be a JSON object", code="IMPORT_ERROR")
        try:
            template = parser(payload)
        except TrackerError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Failed to import template: {exc}", code="IMPORT_ERROR") from exc
        return self.create_template(template, user_id)

    def _monster_client(self):
        if self.monster_client is None:
            raise TrackerError("Open5e lookups are disabled", code="OPEN5E_DISABLED", status_code=503)
        return self.monster_client

    def content_status(self) -> Dict[str, Any]:
        if self.monster_client is None:
            return {"enabled": False}
        return {"enabled": True, **self.monster_client.status()}

    def _lookup(self, call, description: str) -> Dict[str, Any]:
        try:
            return call()
        except Exception as exc:
            logger.warning("Open5e lookup failed", extra={"lookup": description, "error": str(exc)})
            raise TrackerError(
                f"Open5e lookup failed: {description}", code="OPEN5E_UNAVAILABLE", status_code=502
            ) from exc

    def search_open5e_monsters(self, search: Optional[str] = None, page: int = 1) -> Dict[str, Any]:
        client = self._monster_client()
        payload = self._lookup(lambda: client.list_monsters(page=page, search=search), f"monsters page {page}")
        return {
            "count": payload.get("count", 0),
            "page": page,
            "results": [
                {
                    "slug": row.get("slug"),
                    "name": row.get("name"),
                    "challenge_rating": row.get("challenge_rating"),
                    "type": row.get("type"),
                    "size": row.get("size"),
                }
                for row in payload.get("results") or []
            ],
        }

    def import_open5e_monster(self, slug: str, user_id: str) -> NPCTemplate:
        client = self._monster_client()
        payload = self._lookup(lambda: client.get_monster(slug), slug)
        return self.create_template(parse_open5e_monster(payload), user_id)

    def create_variant(self, template_id: str, variant_type: str, user_id: str) -> NPCTemplate:
        base = self.get_template(template_id, user_id)
        try:
            kind = VariantType(str(variant_type).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Unknown variant type: {variant_type}") from exc
        return self.create_template(apply_variant(base, kind), user_id)

    def to_participant(self, template_id: str, user_id: Optional[str], *, name: Optional[str] = None) -> ParticipantReference:
        return template_to_participant(self.get_template(template_id, user_id), name=name)
