from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from encounter_tracker.application.dtos import Page, paginate
from encounter_tracker.application.mappers.document_mapper import (
    encounter_from_document,
    encounter_to_document,
    participant_from_document,
    participant_to_document,
    settings_from_document,
    settings_to_document,
)
from encounter_tracker.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    raise_if_invalid,
)
from encounter_tracker.domain.models.character import Character, CharacterType
from encounter_tracker.domain.models.combat import CombatState
from encounter_tracker.domain.models.encounter import (
    MAX_PARTICIPANTS,
    Encounter,
    EncounterStatus,
    ParticipantReference,
    ParticipantType,
    validate_encounter,
    validate_participant,
    validate_settings,
)
from encounter_tracker.domain.repositories import CharacterRepository, EncounterRepository, PartyRepository


logger = logging.getLogger(__name__)

# Fields a plain update may not touch; they have dedicated operations.
PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at", "version", "combat_state", "shared_with"})


def participant_from_character(character: Character) -> ParticipantReference:
    """Build an encounter participant from a stored character sheet."""
    is_pc = character.type == CharacterType.PC
    return ParticipantReference(
        character_id=str(character.id),
        name=character.name,
        type=ParticipantType.PC if is_pc else ParticipantType.NPC,
        max_hit_points=max(1, character.hit_points.maximum),
        current_hit_points=character.hit_points.current,
        temporary_hit_points=character.hit_points.temporary,
        armor_class=character.armor_class,
        dexterity=character.ability_scores.dexterity,
        is_player=is_pc,
    )


class EncounterService:
    def __init__(
        self,
        encounter_repo: EncounterRepository,
        character_repo: CharacterRepository,
        party_repo: Optional[PartyRepository] = None,
    ) -> None:
        self.encounter_repo = encounter_repo
        self.character_repo = character_repo
        self.party_repo = party_repo

    # -- loading and access -----------------------------------------------

    def _load(self, encounter_id: str) -> Encounter:
        encounter = self.encounter_repo.get(encounter_id) if encounter_id else None
        if encounter is None:
            raise NotFoundError("Encounter not found", code="ENCOUNTER_NOT_FOUND")
        return encounter

    def get_encounter(self, encounter_id: str, user_id: Optional[str]) -> Encounter:
        encounter = self._load(encounter_id)
        if not encounter.can_view(user_id):
            raise PermissionDeniedError("You do not have access to this encounter")
        return encounter

    def get_owned(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self._load(encounter_id)
        if not encounter.can_edit(user_id):
            raise PermissionDeniedError("Only the encounter owner can modify this encounter")
        return encounter

    def save(self, encounter: Encounter) -> Encounter:
        """Validate and store, bumping ``version`` for existing encounters.

        An encounter saved without a difficulty gets the estimate from its
        participant mix once it has participants.
        """
        raise_if_invalid(validate_encounter(encounter), "Invalid encounter data")
        if encounter.difficulty is None and encounter.participants:
            encounter.difficulty = encounter.calculate_difficulty()
        now = datetime.now(timezone.utc)
        if encounter.id is not None and encounter.created_at is not None:
            encounter.version += 1
        if encounter.created_at is None:
            encounter.created_at = now
        encounter.updated_at = now
        return self.encounter_repo.save(encounter)

    @staticmethod
    def _build(document: Dict[str, Any]) -> Encounter:
        try:
            return encounter_from_document(document)
        except (TypeError, ValueError, KeyError) as exc:
            raise ValidationError("Invalid encounter data", code="INVALID_ENCOUNTER_DATA", details=[str(exc)]) from exc

    # -- CRUD --------------------------------------------------------------

    def create_encounter(self, owner_id: str, data: Dict[str, Any]) -> Encounter:
        document = {key: value for key, value in data.items() if key not in PROTECTED_FIELDS}
        document["owner_id"] = owner_id
        encounter = self._build(document)
        for participant in encounter.participants:
            if not participant.character_id:
                participant.character_id = uuid.uuid4().hex
        saved = self.save(encounter)
        logger.info("Encounter created", extra={"encounter_id": saved.id, "owner_id": owner_id})
        return saved

    def update_encounter(self, encounter_id: str, user_id: str, updates: Dict[str, Any]) -> Encounter:
        current = self.get_owned(encounter_id, user_id)
        document = encounter_to_document(current)
        for key, value in updates.items():
            if key in PROTECTED_FIELDS:
                continue
            if key == "settings" and isinstance(value, dict):
                document["settings"] = {**document["settings"], **value}
            else:
                document[key] = value
        encounter = self._build(document)
        return self.save(encounter)

    def delete_encounter(self, encounter_id: str, user_id: str) -> None:
        self.get_owned(encounter_id, user_id)
        self.encounter_repo.delete(encounter_id)
        logger.info("Encounter deleted", extra={"encounter_id": encounter_id})

    def list_encounters(
        self,
        user_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        difficulty: Optional[str] = None,
        target_level: Optional[int] = None,
        tags: Optional[Sequence[str]] = None,
        include_shared: bool = True,
    ) -> Page[Encounter]:
        encounters = self.encounter_repo.list_for_user(user_id, include_shared=include_shared)
        wanted_tags = {str(tag).strip().lower() for tag in tags or () if str(tag).strip()}
        selected = [
            encounter
            for encounter in encounters
            if (status is None or encounter.status.value == status)
            and (difficulty is None or (encounter.difficulty is not None and encounter.difficulty.value == difficulty))
            and (target_level is None or encounter.target_level == int(target_level))
            and wanted_tags.issubset(encounter.tags)
        ]
        return paginate(selected, page, limit)

    def search(self, user_id: str, query: str) -> List[Encounter]:
        if not str(query or "").strip():
            raise ValidationError("Search query is required", code="INVALID_SEARCH_CRITERIA")
        return self.encounter_repo.search(user_id, query)

    def public_encounters(self) -> List[Encounter]:
        return self.encounter_repo.list_public()

    def active_encounters(self, user_id: str) -> List[Encounter]:
        return self.encounter_repo.list_active(user_id)

    # -- participants ------------------------------------------------------

    def _add(self, encounter: Encounter, participant: ParticipantReference) -> None:
        raise_if_invalid(validate_participant(participant), "Invalid participant data")
        if encounter.add_participant(participant):
            return
        if len(encounter.participants) >= MAX_PARTICIPANTS:
            raise ValidationError(
                f"An encounter can have at most {MAX_PARTICIPANTS} participants", code="TOO_MANY_PARTICIPANTS"
            )
        raise ConflictError("Participant is already in this encounter", code="PARTICIPANT_EXISTS")

    def add_participant(self, encounter_id: str, user_id: str, data: Dict[str, Any]) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        document = dict(data)
        if not document.get("character_id"):
            document["character_id"] = uuid.uuid4().hex
        try:
            participant = participant_from_document(document)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid participant data", details=[str(exc)]) from exc
        self._add(encounter, participant)
        return self.save(encounter)

    def remove_participant(self, encounter_id: str, user_id: str, participant_id: str) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        if not encounter.remove_participant(participant_id):
            raise NotFoundError("Participant not found", code="PARTICIPANT_NOT_FOUND")
        return self.save(encounter)

    def update_participant(
        self, encounter_id: str, user_id: str, participant_id: str, updates: Dict[str, Any]
    ) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        current = encounter.get_participant(participant_id)
        if current is None:
            raise NotFoundError("Participant not found", code="PARTICIPANT_NOT_FOUND")
        document = {**participant_to_document(current), **updates, "character_id": participant_id}
        try:
            merged = participant_from_document(document)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid participant data", details=[str(exc)]) from exc
        raise_if_invalid(validate_participant(merged), "Invalid participant data")
        encounter.update_participant(participant_id, participant_to_document(merged))
        return self.save(encounter)

    def _visible_character(self, character_id: str, user_id: str) -> Character:
        character = self.character_repo.get(character_id)
        if character is None:
            raise NotFoundError("Character not found", code="CHARACTER_NOT_FOUND")
        if character.owner_id != user_id and not character.is_public:
            raise PermissionDeniedError("You do not have access to this character")
        return character

    def add_characters(self, encounter_id: str, user_id: str, character_ids: Iterable[str]) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        for character_id in character_ids:
            self._add(encounter, participant_from_character(self._visible_character(character_id, user_id)))
        return self.save(encounter)

    def add_character(self, encounter_id: str, user_id: str, character_id: str) -> Encounter:
        return self.add_characters(encounter_id, user_id, [character_id])

    def add_party(self, encounter_id: str, user_id: str, party_id: str) -> Encounter:
        """Add every party member not already taking part."""
        if self.party_repo is None:
            raise NotFoundError("Party not found", code="PARTY_NOT_FOUND")
        party = self.party_repo.get(party_id)
        if party is None:
            raise NotFoundError("Party not found", code="PARTY_NOT_FOUND")
        if not party.can_access(user_id):
            raise PermissionDeniedError("You do not have access to this party")
        encounter = self.get_owned(encounter_id, user_id)
        for member in self.character_repo.list_by_party(party_id):
            if encounter.get_participant(str(member.id)) is None:
                self._add(encounter, participant_from_character(member))
        encounter.party_id = party.id
        return self.save(encounter)

    # -- settings and lifecycle -------------------------------------------

    def update_settings(self, encounter_id: str, user_id: str, updates: Dict[str, Any]) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        document = {**settings_to_document(encounter.settings), **updates}
        try:
            settings = settings_from_document(document)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid encounter settings", details=[str(exc)]) from exc
        raise_if_invalid(validate_settings(settings), "Invalid encounter settings")
        encounter.settings = settings
        return self.save(encounter)

    def duplicate(self, encounter_id: str, user_id: str, new_name: Optional[str] = None) -> Encounter:
        source = self.get_encounter(encounter_id, user_id)
        copy = source.duplicate(new_name)
        copy.owner_id = user_id
        if source.owner_id != user_id:
            copy.party_id = None
        return self.save(copy)

    def archive(self, encounter_id: str, user_id: str, reason: Optional[str] = None) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        if encounter.is_active:
            raise ConflictError("End combat before archiving this encounter", code="ENCOUNTER_IN_COMBAT")
        encounter.status = EncounterStatus.ARCHIVED
        if reason:
            encounter.description = f"{encounter.description}\n\n[Archived: {reason}]".strip()[:1000]
        return self.save(encounter)

    def publish(self, encounter_id: str, user_id: str, make_public: bool = True) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        encounter.is_public = bool(make_public)
        return self.save(encounter)

    def reset_combat(self, encounter_id: str, user_id: str) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        encounter.combat_state = CombatState()
        encounter.status = EncounterStatus.DRAFT
        return self.save(encounter)

    # -- sharing -----------------------------------------------------------

    def share(
        self, encounter_id: str, user_id: str, user_ids: Sequence[str], *, make_public: Optional[bool] = None
    ) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        encounter.shared_with = list(
            dict.fromkeys([*encounter.shared_with, *(str(u) for u in user_ids if u and u != user_id)])
        )
        if make_public is not None:
            encounter.is_public = bool(make_public)
        return self.save(encounter)

    def unshare(self, encounter_id: str, user_id: str, user_ids: Sequence[str]) -> Encounter:
        encounter = self.get_owned(encounter_id, user_id)
        removed = {str(u) for u in user_ids}
        encounter.shared_with = [u for u in encounter.shared_with if u not in removed]
        return self.save(encounter)
