"""Plain-dict documents for every aggregate.

The same documents back the SQL ``document_json`` columns, the JSON API and
encounter export files, so keys are stable snake_case and datetimes are ISO
8601 strings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from encounter_tracker.domain.models.character import (
    Character,
    CharacterClassLevel,
    EquipmentItem,
    HitPoints,
    Spell,
    SpellComponents,
)
from encounter_tracker.domain.models.combat import (
    CombatActionType,
    CombatLogEntry,
    CombatSnapshot,
    CombatState,
    InitiativeEntry,
)
from encounter_tracker.domain.models.encounter import (
    Encounter,
    EncounterSettings,
    ParticipantReference,
    Position,
)
from encounter_tracker.domain.models.npc_template import (
    NPCAction,
    NPCEquipment,
    NPCHitPoints,
    NPCSpell,
    NPCStats,
    NPCTemplate,
)
from encounter_tracker.domain.models.party import Party, PartySettings
from encounter_tracker.domain.models.stats import ability_scores_from_mapping
from encounter_tracker.domain.models.user import User, UserPreferences


def dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def str_to_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _int_or_none(value: Any) -> Optional[int]:
    return None if value is None or value == "" else int(value)


# -- users ---------------------------------------------------------------


def user_to_document(user: User) -> Dict[str, Any]:
    document = user.to_public_dict()
    document.update(
        {
            "password_hash": user.password_hash,
            "email_verification_token": user.email_verification_token,
            "password_reset_token": user.password_reset_token,
            "password_reset_expires": dt_to_str(user.password_reset_expires),
        }
    )
    return document


def user_from_document(document: Dict[str, Any]) -> User:
    preferences = document.get("preferences") or {}
    return User(
        id=document.get("id"),
        email=document.get("email", ""),
        username=document.get("username", ""),
        first_name=document.get("first_name", ""),
        last_name=document.get("last_name", ""),
        password_hash=document.get("password_hash", ""),
        role=document.get("role", "user"),
        subscription_tier=document.get("subscription_tier", "free"),
        preferences=UserPreferences(**preferences),
        is_email_verified=bool(document.get("is_email_verified", False)),
        email_verification_token=document.get("email_verification_token"),
        password_reset_token=document.get("password_reset_token"),
        password_reset_expires=str_to_dt(document.get("password_reset_expires")),
        last_login_at=str_to_dt(document.get("last_login_at")),
        created_at=str_to_dt(document.get("created_at")),
        updated_at=str_to_dt(document.get("updated_at")),
    )


# -- characters ----------------------------------------------------------


def character_to_document(character: Character) -> Dict[str, Any]:
    return {
        "id": character.id,
        "owner_id": character.owner_id,
        "name": character.name,
        "type": character.type.value,
        "race": character.race,
        "custom_race": character.custom_race,
        "size": character.size.value,
        "classes": [
            {
                "class": cls.class_name,
                "level": cls.level,
                "hit_die": cls.hit_die,
                "subclass": cls.subclass,
            }
            for cls in character.classes
        ],
        "level": character.level,
        "ability_scores": character.ability_scores.to_dict(),
        "hit_points": {
            "maximum": character.hit_points.maximum,
            "current": character.hit_points.current,
            "temporary": character.hit_points.temporary,
            "death_save_failures": character.hit_points.death_save_failures,
        },
        "armor_class": character.armor_class,
        "speed": character.speed,
        "proficiency_bonus": character.proficiency_bonus,
        "experience": character.experience,
        "saving_throws": dict(character.saving_throws),
        "skills": dict(character.skills),
        "equipment": [
            {
                "name": item.name,
                "quantity": item.quantity,
                "weight": item.weight,
                "value": item.value,
                "description": item.description,
                "equipped": item.equipped,
                "magical": item.magical,
            }
            for item in character.equipment
        ],
        "spells": [
            {
                "name": spell.name,
                "level": spell.level,
                "school": spell.school,
                "casting_time": spell.casting_time,
                "range": spell.range,
                "components": {
                    "verbal": spell.components.verbal,
                    "somatic": spell.components.somatic,
                    "material": spell.components.material,
                    "material_component": spell.components.material_component,
                },
                "duration": spell.duration,
                "description": spell.description,
                "is_prepared": spell.is_prepared,
            }
            for spell in character.spells
        ],
        "backstory": character.backstory,
        "notes": character.notes,
        "image_url": character.image_url,
        "is_public": character.is_public,
        "party_id": character.party_id,
        "created_at": dt_to_str(character.created_at),
        "updated_at": dt_to_str(character.updated_at),
    }


def _class_level_from_document(raw: Dict[str, Any]) -> CharacterClassLevel:
    return CharacterClassLevel(
        class_name=raw.get("class") or raw.get("class_name") or "",
        level=int(raw.get("level", 1)),
        hit_die=int(raw.get("hit_die") or raw.get("hitDie") or 0),
        subclass=raw.get("subclass"),
    )


def _spell_from_document(raw: Dict[str, Any]) -> Spell:
    components = raw.get("components") or {}
    if isinstance(components, str):
        # "V, S, M" shorthand.
        letters = {part.strip().upper()[:1] for part in components.split(",")}
        components = {"verbal": "V" in letters, "somatic": "S" in letters, "material": "M" in letters}
    return Spell(
        name=raw.get("name", ""),
        level=int(raw.get("level", 0)),
        school=str(raw.get("school") or "evocation").lower(),
        casting_time=raw.get("casting_time") or raw.get("castingTime") or "1 action",
        range=raw.get("range") or "Self",
        components=SpellComponents(
            verbal=bool(components.get("verbal", False)),
            somatic=bool(components.get("somatic", False)),
            material=bool(components.get("material", False)),
            material_component=components.get("material_component"),
        ),
        duration=raw.get("duration") or "Instantaneous",
        description=raw.get("description") or "",
        is_prepared=bool(raw.get("is_prepared", raw.get("prepared", False))),
    )


def character_from_document(document: Dict[str, Any]) -> Character:
    hit_points = document.get("hit_points") or {}
    maximum = int(hit_points.get("maximum", 10))
    return Character(
        id=document.get("id"),
        owner_id=document.get("owner_id", ""),
        name=document.get("name", ""),
        type=document.get("type", "pc"),
        race=document.get("race", "human"),
        custom_race=document.get("custom_race"),
        size=document.get("size", "medium"),
        classes=[_class_level_from_document(raw) for raw in document.get("classes") or []],
        ability_scores=ability_scores_from_mapping(document.get("ability_scores")),
        hit_points=HitPoints(
            maximum=maximum,
            current=int(hit_points.get("current", maximum)),
            temporary=int(hit_points.get("temporary", 0)),
            death_save_failures=int(hit_points.get("death_save_failures", 0)),
        ),
        armor_class=int(document.get("armor_class", 10)),
        speed=int(document.get("speed", 30)),
        proficiency_bonus=int(document.get("proficiency_bonus", 2)),
        experience=int(document.get("experience", 0)),
        saving_throws=dict(document.get("saving_throws") or {}),
        skills={str(k): bool(v) for k, v in (document.get("skills") or {}).items()},
        equipment=[
            EquipmentItem(
                name=raw.get("name", ""),
                quantity=int(raw.get("quantity", 1)),
                weight=float(raw.get("weight") or 0),
                value=float(raw.get("value") or 0),
                description=raw.get("description") or "",
                equipped=bool(raw.get("equipped", False)),
                magical=bool(raw.get("magical", False)),
            )
            for raw in document.get("equipment") or []
        ],
        spells=[_spell_from_document(raw) for raw in document.get("spells") or []],
        backstory=document.get("backstory") or "",
        notes=document.get("notes") or "",
        image_url=document.get("image_url"),
        is_public=bool(document.get("is_public", False)),
        party_id=document.get("party_id"),
        created_at=str_to_dt(document.get("created_at")),
        updated_at=str_to_dt(document.get("updated_at")),
    )


# -- parties -------------------------------------------------------------


def party_to_document(party: Party) -> Dict[str, Any]:
    return {
        "id": party.id,
        "owner_id": party.owner_id,
        "name": party.name,
        "description": party.description,
        "tags": list(party.tags),
        "is_public": party.is_public,
        "shared_with": list(party.shared_with),
        "settings": {
            "allow_joining": party.settings.allow_joining,
            "require_approval": party.settings.require_approval,
            "max_members": party.settings.max_members,
        },
        "created_at": dt_to_str(party.created_at),
        "updated_at": dt_to_str(party.updated_at),
        "last_activity": dt_to_str(party.last_activity),
    }


def party_from_document(document: Dict[str, Any]) -> Party:
    settings = document.get("settings") or {}
    return Party(
        id=document.get("id"),
        owner_id=document.get("owner_id", ""),
        name=document.get("name", ""),
        description=document.get("description") or "",
        tags=list(document.get("tags") or []),
        is_public=bool(document.get("is_public", False)),
        shared_with=list(document.get("shared_with") or []),
        settings=PartySettings(
            allow_joining=bool(settings.get("allow_joining", False)),
            require_approval=bool(settings.get("require_approval", True)),
            max_members=int(settings.get("max_members", 6)),
        ),
        created_at=str_to_dt(document.get("created_at")),
        updated_at=str_to_dt(document.get("updated_at")),
        last_activity=str_to_dt(document.get("last_activity")),
    )


# -- encounters ----------------------------------------------------------


def participant_to_document(participant: ParticipantReference) -> Dict[str, Any]:
    return {
        "character_id": participant.character_id,
        "name": participant.name,
        "type": participant.type.value,
        "max_hit_points": participant.max_hit_points,
        "current_hit_points": participant.current_hit_points,
        "temporary_hit_points": participant.temporary_hit_points,
        "armor_class": participant.armor_class,
        "initiative": participant.initiative,
        "dexterity": participant.dexterity,
        "is_player": participant.is_player,
        "is_visible": participant.is_visible,
        "notes": participant.notes,
        "conditions": list(participant.conditions),
        "position": (
            {"x": participant.position.x, "y": participant.position.y} if participant.position is not None else None
        ),
    }


def participant_from_document(raw: Dict[str, Any]) -> ParticipantReference:
    position = raw.get("position")
    max_hp = int(raw.get("max_hit_points", 1))
    return ParticipantReference(
        character_id=str(raw.get("character_id") or ""),
        name=raw.get("name", ""),
        type=raw.get("type", "npc"),
        max_hit_points=max_hp,
        current_hit_points=int(raw.get("current_hit_points", max_hp)),
        temporary_hit_points=int(raw.get("temporary_hit_points", 0)),
        armor_class=int(raw.get("armor_class", 10)),
        initiative=_int_or_none(raw.get("initiative")),
        dexterity=int(raw.get("dexterity", 10)),
        is_player=bool(raw.get("is_player", False)),
        is_visible=bool(raw.get("is_visible", True)),
        notes=raw.get("notes") or "",
        conditions=[str(c) for c in raw.get("conditions") or []],
        position=Position(x=int(position.get("x", 0)), y=int(position.get("y", 0))) if position else None,
    )


def settings_to_document(settings: EncounterSettings) -> Dict[str, Any]:
    return {
        "allow_player_visibility": settings.allow_player_visibility,
        "auto_roll_initiative": settings.auto_roll_initiative,
        "track_resources": settings.track_resources,
        "enable_lair_actions": settings.enable_lair_actions,
        "lair_action_initiative": settings.lair_action_initiative,
        "enable_grid_movement": settings.enable_grid_movement,
        "grid_size": settings.grid_size,
        "round_time_limit": settings.round_time_limit,
        "experience_threshold": settings.experience_threshold,
    }


def settings_from_document(raw: Dict[str, Any]) -> EncounterSettings:
    return EncounterSettings(
        allow_player_visibility=bool(raw.get("allow_player_visibility", True)),
        auto_roll_initiative=bool(raw.get("auto_roll_initiative", False)),
        track_resources=bool(raw.get("track_resources", True)),
        enable_lair_actions=bool(raw.get("enable_lair_actions", False)),
        lair_action_initiative=_int_or_none(raw.get("lair_action_initiative")),
        enable_grid_movement=bool(raw.get("enable_grid_movement", False)),
        grid_size=int(raw.get("grid_size", 5)),
        round_time_limit=_int_or_none(raw.get("round_time_limit")),
        experience_threshold=_int_or_none(raw.get("experience_threshold")),
    )


def combat_state_to_document(state: CombatState) -> Dict[str, Any]:
    return {
        "is_active": state.is_active,
        "current_round": state.current_round,
        "current_turn": state.current_turn,
        "initiative_order": [
            {
                "participant_id": entry.participant_id,
                "initiative": entry.initiative,
                "dexterity": entry.dexterity,
                "is_active": entry.is_active,
                "has_acted": entry.has_acted,
                "is_delayed": entry.is_delayed,
                "ready_action": entry.ready_action,
            }
            for entry in state.initiative_order
        ],
        "started_at": dt_to_str(state.started_at),
        "paused_at": dt_to_str(state.paused_at),
        "ended_at": dt_to_str(state.ended_at),
        "turn_started_at": dt_to_str(state.turn_started_at),
        "paused_duration": state.paused_duration,
        "total_duration": state.total_duration,
    }


def combat_state_from_document(raw: Dict[str, Any]) -> CombatState:
    return CombatState(
        is_active=bool(raw.get("is_active", False)),
        current_round=int(raw.get("current_round", 0)),
        current_turn=int(raw.get("current_turn", 0)),
        initiative_order=[
            InitiativeEntry(
                participant_id=str(entry.get("participant_id")),
                initiative=int(entry.get("initiative", 0)),
                dexterity=int(entry.get("dexterity", 10)),
                is_active=bool(entry.get("is_active", False)),
                has_acted=bool(entry.get("has_acted", False)),
                is_delayed=bool(entry.get("is_delayed", False)),
                ready_action=entry.get("ready_action"),
            )
            for entry in raw.get("initiative_order") or []
        ],
        started_at=str_to_dt(raw.get("started_at")),
        paused_at=str_to_dt(raw.get("paused_at")),
        ended_at=str_to_dt(raw.get("ended_at")),
        turn_started_at=str_to_dt(raw.get("turn_started_at")),
        paused_duration=int(raw.get("paused_duration", 0)),
        total_duration=int(raw.get("total_duration", 0)),
    )


def encounter_to_document(encounter: Encounter) -> Dict[str, Any]:
    return {
        "id": encounter.id,
        "owner_id": encounter.owner_id,
        "name": encounter.name,
        "description": encounter.description,
        "tags": list(encounter.tags),
        "difficulty": encounter.difficulty.value if encounter.difficulty else None,
        "estimated_duration": encounter.estimated_duration,
        "target_level": encounter.target_level,
        "participants": [participant_to_document(p) for p in encounter.participants],
        "settings": settings_to_document(encounter.settings),
        "combat_state": combat_state_to_document(encounter.combat_state),
        "status": encounter.status.value,
        "party_id": encounter.party_id,
        "is_public": encounter.is_public,
        "shared_with": list(encounter.shared_with),
        "version": encounter.version,
        "created_at": dt_to_str(encounter.created_at),
        "updated_at": dt_to_str(encounter.updated_at),
    }


def encounter_from_document(document: Dict[str, Any]) -> Encounter:
    return Encounter(
        id=document.get("id"),
        owner_id=document.get("owner_id", ""),
        name=document.get("name", ""),
        description=document.get("description") or "",
        tags=list(document.get("tags") or []),
        difficulty=document.get("difficulty") or None,
        estimated_duration=_int_or_none(document.get("estimated_duration")),
        target_level=_int_or_none(document.get("target_level")),
        participants=[participant_from_document(raw) for raw in document.get("participants") or []],
        settings=settings_from_document(document.get("settings") or {}),
        combat_state=combat_state_from_document(document.get("combat_state") or {}),
        status=document.get("status") or "draft",
        party_id=document.get("party_id"),
        is_public=bool(document.get("is_public", False)),
        shared_with=list(document.get("shared_with") or []),
        version=int(document.get("version", 1)),
        created_at=str_to_dt(document.get("created_at")),
        updated_at=str_to_dt(document.get("updated_at")),
    )


# -- combat log ----------------------------------------------------------


def log_entry_from_document(raw: Dict[str, Any]) -> CombatLogEntry:
    return CombatLogEntry(
        action=CombatActionType(raw["action"]),
        timestamp=str_to_dt(raw["timestamp"]),
        round=int(raw.get("round", 0)),
        turn=int(raw.get("turn", 0)),
        participant_id=raw.get("participant_id"),
        details=dict(raw.get("details") or {}),
    )


def snapshot_to_document(snapshot: CombatSnapshot) -> Dict[str, Any]:
    return {
        "encounter_id": snapshot.encounter_id,
        "saved_at": dt_to_str(snapshot.saved_at),
        "label": snapshot.label,
        "state": combat_state_to_document(snapshot.state),
    }


def snapshot_from_document(raw: Dict[str, Any]) -> CombatSnapshot:
    return CombatSnapshot(
        encounter_id=raw["encounter_id"],
        saved_at=str_to_dt(raw["saved_at"]),
        label=raw.get("label") or "",
        state=combat_state_from_document(raw.get("state") or {}),
    )


# -- NPC templates -------------------------------------------------------


def template_to_document(template: NPCTemplate) -> Dict[str, Any]:
    stats = template.stats
    return {
        "id": template.id,
        "name": template.name,
        "category": template.category.value,
        "challenge_rating": template.challenge_rating,
        "size": template.size.value,
        "stats": {
            "ability_scores": stats.ability_scores.to_dict(),
            "hit_points": {
                "maximum": stats.hit_points.maximum,
                "current": stats.hit_points.current,
                "temporary": stats.hit_points.temporary,
                "hit_dice": stats.hit_points.hit_dice,
            },
            "armor_class": stats.armor_class,
            "speed": stats.speed,
            "proficiency_bonus": stats.proficiency_bonus,
            "saving_throws": dict(stats.saving_throws),
            "skills": dict(stats.skills),
            "damage_vulnerabilities": list(stats.damage_vulnerabilities),
            "damage_resistances": list(stats.damage_resistances),
            "damage_immunities": list(stats.damage_immunities),
            "condition_immunities": list(stats.condition_immunities),
            "senses": list(stats.senses),
            "languages": list(stats.languages),
        },
        "equipment": [
            {
                "name": item.name,
                "quantity": item.quantity,
                "description": item.description,
                "kind": item.kind,
                "magical": item.magical,
            }
            for item in template.equipment
        ],
        "spells": [
            {
                "name": spell.name,
                "level": spell.level,
                "school": spell.school,
                "description": spell.description,
                "uses_remaining": spell.uses_remaining,
                "max_uses": spell.max_uses,
            }
            for spell in template.spells
        ],
        "actions": [
            {
                "name": action.name,
                "kind": action.kind.value,
                "description": action.description,
                "attack_bonus": action.attack_bonus,
                "damage": action.damage,
                "recharge": action.recharge,
            }
            for action in template.actions
        ],
        "behavior": dict(template.behavior),
        "is_system": template.is_system,
        "created_by": template.created_by,
        "variant_of": template.variant_of,
        "variant_type": template.variant_type.value if template.variant_type else None,
        "created_at": dt_to_str(template.created_at),
        "updated_at": dt_to_str(template.updated_at),
    }


def _str_list(values: Any) -> List[str]:
    return [str(value) for value in values or []]


def template_from_document(document: Dict[str, Any]) -> NPCTemplate:
    stats = document.get("stats") or {}
    hit_points = stats.get("hit_points") or {}
    maximum = int(hit_points.get("maximum", 1))
    return NPCTemplate(
        id=document.get("id"),
        name=document.get("name", ""),
        category=document.get("category", "humanoid"),
        challenge_rating=float(document.get("challenge_rating", 0)),
        size=document.get("size", "medium"),
        stats=NPCStats(
            ability_scores=ability_scores_from_mapping(stats.get("ability_scores")),
            hit_points=NPCHitPoints(
                maximum=maximum,
                current=int(hit_points.get("current", maximum)),
                temporary=int(hit_points.get("temporary", 0)),
                hit_dice=hit_points.get("hit_dice"),
            ),
            armor_class=int(stats.get("armor_class", 10)),
            speed=int(stats.get("speed", 30)),
            proficiency_bonus=int(stats.get("proficiency_bonus", 2)),
            saving_throws={str(k): int(v) for k, v in (stats.get("saving_throws") or {}).items()},
            skills={str(k): int(v) for k, v in (stats.get("skills") or {}).items()},
            damage_vulnerabilities=_str_list(stats.get("damage_vulnerabilities")),
            damage_resistances=_str_list(stats.get("damage_resistances")),
            damage_immunities=_str_list(stats.get("damage_immunities")),
            condition_immunities=_str_list(stats.get("condition_immunities")),
            senses=_str_list(stats.get("senses")),
            languages=_str_list(stats.get("languages")),
        ),
        equipment=[
            NPCEquipment(
                name=raw["name"] if isinstance(raw, dict) else str(raw),
                quantity=int(raw.get("quantity", 1)) if isinstance(raw, dict) else 1,
                description=(raw.get("description") or "") if isinstance(raw, dict) else "",
                kind=(raw.get("kind") or raw.get("type") or "misc") if isinstance(raw, dict) else "misc",
                magical=bool(raw.get("magical", False)) if isinstance(raw, dict) else False,
            )
            for raw in document.get("equipment") or []
        ],
        spells=[
            NPCSpell(
                name=raw.get("name", ""),
                level=int(raw.get("level", 0)),
                school=raw.get("school") or "",
                description=raw.get("description") or "",
                uses_remaining=_int_or_none(raw.get("uses_remaining")),
                max_uses=_int_or_none(raw.get("max_uses")),
            )
            for raw in document.get("spells") or []
        ],
        actions=[
            NPCAction(
                name=raw.get("name", ""),
                kind=raw.get("kind") or raw.get("type") or "action",
                description=raw.get("description") or "",
                attack_bonus=_int_or_none(raw.get("attack_bonus")),
                damage=raw.get("damage"),
                recharge=raw.get("recharge"),
            )
            for raw in document.get("actions") or []
        ],
        behavior={str(k): str(v) for k, v in (document.get("behavior") or {}).items()},
        is_system=bool(document.get("is_system", False)),
        created_by=document.get("created_by"),
        variant_of=document.get("variant_of"),
        variant_type=document.get("variant_type") or None,
        created_at=str_to_dt(document.get("created_at")),
        updated_at=str_to_dt(document.get("updated_at")),
    )
