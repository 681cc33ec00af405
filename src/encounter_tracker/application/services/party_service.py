from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from encounter_tracker.application.dtos import Page, paginate
from encounter_tracker.application.mappers.document_mapper import party_from_document, party_to_document
from encounter_tracker.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    raise_if_invalid,
)
from encounter_tracker.domain.models.party import Party, PartyRoster, validate_party
from encounter_tracker.domain.repositories import CharacterRepository, PartyRepository


logger = logging.getLogger(__name__)


class PartyService:
    def __init__(self, party_repo: PartyRepository, character_repo: CharacterRepository) -> None:
        self.party_repo = party_repo
        self.character_repo = character_repo

    def _store(self, party: Party) -> Party:
        raise_if_invalid(validate_party(party), "Invalid party data")
        now = datetime.now(timezone.utc)
        if party.created_at is None:
            party.created_at = now
        party.touch(now)
        return self.party_repo.save(party)

    def _load(self, party_id: str) -> Party:
        party = self.party_repo.get(party_id)
        if party is None:
            raise NotFoundError("Party not found", code="PARTY_NOT_FOUND")
        return party

    def _owned(self, party_id: str, user_id: str) -> Party:
        party = self._load(party_id)
        if party.owner_id != user_id:
            raise PermissionDeniedError("Only the party owner can modify this party")
        return party

    def get_party(self, party_id: str, user_id: str) -> Party:
        party = self._load(party_id)
        if not party.can_access(user_id):
            raise PermissionDeniedError("You do not have access to this party")
        return party

    def roster(self, party_id: str, user_id: str) -> PartyRoster:
        party = self.get_party(party_id, user_id)
        return PartyRoster(party=party, members=self.members(party.id))

    def members(self, party_id: str):
        return sorted(self.character_repo.list_by_party(party_id), key=lambda c: c.name.lower())

    # -- CRUD --------------------------------------------------------------

    def create_party(self, owner_id: str, data: Dict[str, Any]) -> Party:
        document = dict(data)
        document.pop("id", None)
        document["owner_id"] = owner_id
        try:
            party = party_from_document(document)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid party data", details=[str(exc)]) from exc
        saved = self._store(party)
        logger.info("Party created", extra={"party_id": saved.id, "owner_id": owner_id})
        return saved

    def update_party(self, party_id: str, user_id: str, updates: Dict[str, Any]) -> Party:
        current = self._owned(party_id, user_id)
        document = party_to_document(current)
        for key, value in updates.items():
            if key in ("id", "owner_id", "created_at"):
                continue
            if key == "settings" and isinstance(value, dict):
                document["settings"] = {**document["settings"], **value}
            else:
                document[key] = value
        try:
            party = party_from_document(document)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid party data", details=[str(exc)]) from exc
        party.id = current.id
        if len(self.members(party.id)) > party.settings.max_members:
            raise ValidationError("max_members cannot be lower than the current member count")
        return self._store(party)

    def delete_party(self, party_id: str, user_id: str) -> None:
        self._owned(party_id, user_id)
        # Members stay, they just leave the party.
        for character in self.character_repo.list_by_party(party_id):
            character.party_id = None
            self.character_repo.save(character)
        self.party_repo.delete(party_id)

    def list_parties(self, user_id: str, *, page: int = 1, limit: int = 20, include_shared: bool = True) -> Page[Party]:
        parties = self.party_repo.list_by_owner(user_id)
        if include_shared:
            seen = {party.id for party in parties}
            parties += [party for party in self.party_repo.list_shared_with(user_id) if party.id not in seen]
        return paginate(parties, page, limit)

    def public_parties(self) -> List[Party]:
        return self.party_repo.list_public()

    def search(self, user_id: str, query: str) -> List[Party]:
        return self.party_repo.search(user_id, query)

    # -- membership --------------------------------------------------------

    def add_member(self, party_id: str, user_id: str, character_id: str) -> PartyRoster:
        party = self._owned(party_id, user_id)
        character = self.character_repo.get(character_id)
        if character is None:
            raise NotFoundError("Character not found", code="CHARACTER_NOT_FOUND")
        if character.owner_id != user_id:
            raise PermissionDeniedError("You can only add your own characters to a party")
        if character.party_id == party.id:
            raise ConflictError("Character is already a member of this party", code="ALREADY_MEMBER")
        if party.is_full(len(self.members(party.id))):
            raise ConflictError("Party is at maximum capacity", code="PARTY_FULL")
        character.party_id = party.id
        self.character_repo.save(character)
        self._store(party)
        return PartyRoster(party=party, members=self.members(party.id))

    def remove_member(self, party_id: str, user_id: str, character_id: str) -> PartyRoster:
        party = self._owned(party_id, user_id)
        character = self.character_repo.get(character_id)
        if character is None or character.party_id != party.id:
            raise NotFoundError("Character is not a member of this party", code="NOT_A_MEMBER")
        character.party_id = None
        self.character_repo.save(character)
        self._store(party)
        return PartyRoster(party=party, members=self.members(party.id))

    # -- sharing -----------------------------------------------------------

    def share(self, party_id: str, user_id: str, user_ids: Sequence[str], *, make_public: Optional[bool] = None) -> Party:
        party = self._owned(party_id, user_id)
        party.shared_with = list(dict.fromkeys([*party.shared_with, *(u for u in user_ids if u and u != user_id)]))
        if make_public is not None:
            party.is_public = bool(make_public)
        return self._store(party)

    def unshare(self, party_id: str, user_id: str, user_ids: Sequence[str]) -> Party:
        party = self._owned(party_id, user_id)
        removed = set(user_ids)
        party.shared_with = [u for u in party.shared_with if u not in removed]
        return self._store(party)
