from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from encounter_tracker.domain.models.character import Character
from encounter_tracker.domain.models.combat import CombatLogEntry, CombatSnapshot
from encounter_tracker.domain.models.encounter import Encounter, EncounterStatus
from encounter_tracker.domain.models.npc_template import NPCTemplate
from encounter_tracker.domain.models.party import Party
from encounter_tracker.domain.models.user import User


class UserRepository(ABC):
    @abstractmethod
    def get(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def get_by_username(self, username: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def get_by_verification_token(self, token: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def get_by_reset_token(self, token: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def save(self, user: User) -> User:
        raise NotImplementedError

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[User]:
        raise NotImplementedError


class SessionRepository(ABC):
    @abstractmethod
    def create(self, token: str, user_id: str, expires_at: datetime) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_user_id(self, token: str, now: datetime) -> Optional[str]:
        """Return the owner of an unexpired session token."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, token: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_for_user(self, user_id: str) -> int:
        raise NotImplementedError


class CharacterRepository(ABC):
    @abstractmethod
    def get(self, character_id: str) -> Optional[Character]:
        raise NotImplementedError

    @abstractmethod
    def get_many(self, character_ids: Sequence[str]) -> List[Character]:
        raise NotImplementedError

    @abstractmethod
    def save(self, character: Character) -> Character:
        raise NotImplementedError

    @abstractmethod
    def delete(self, character_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> List[Character]:
        raise NotImplementedError

    @abstractmethod
    def list_by_party(self, party_id: str) -> List[Character]:
        raise NotImplementedError

    @abstractmethod
    def list_public(self) -> List[Character]:
        raise NotImplementedError

    @abstractmethod
    def search_by_name(self, owner_id: str, query: str) -> List[Character]:
        raise NotImplementedError

    def find_by_type(self, owner_id: str, character_type: str) -> List[Character]:
        return [c for c in self.list_by_owner(owner_id) if c.type.value == character_type]

    def find_by_race(self, owner_id: str, race: str) -> List[Character]:
        wanted = race.strip().lower()
        return [c for c in self.list_by_owner(owner_id) if c.race == wanted]

    def find_by_class(self, owner_id: str, class_name: str) -> List[Character]:
        wanted = class_name.strip().lower()
        return [c for c in self.list_by_owner(owner_id) if any(cls.class_name == wanted for cls in c.classes)]


class PartyRepository(ABC):
    @abstractmethod
    def get(self, party_id: str) -> Optional[Party]:
        raise NotImplementedError

    @abstractmethod
    def save(self, party: Party) -> Party:
        raise NotImplementedError

    @abstractmethod
    def delete(self, party_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> List[Party]:
        raise NotImplementedError

    @abstractmethod
    def list_shared_with(self, user_id: str) -> List[Party]:
        raise NotImplementedError

    @abstractmethod
    def list_public(self) -> List[Party]:
        raise NotImplementedError

    def search(self, user_id: str, query: str) -> List[Party]:
        needle = query.strip().lower()
        visible = self.list_by_owner(user_id) + self.list_shared_with(user_id)
        return [
            party
            for party in visible
            if needle in party.name.lower() or needle in party.description.lower() or needle in party.tags
        ]


class EncounterRepository(ABC):
    @abstractmethod
    def get(self, encounter_id: str) -> Optional[Encounter]:
        raise NotImplementedError

    @abstractmethod
    def save(self, encounter: Encounter) -> Encounter:
        raise NotImplementedError

    @abstractmethod
    def delete(self, encounter_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> List[Encounter]:
        raise NotImplementedError

    @abstractmethod
    def list_shared_with(self, user_id: str) -> List[Encounter]:
        raise NotImplementedError

    @abstractmethod
    def list_public(self) -> List[Encounter]:
        raise NotImplementedError

    def list_for_user(self, user_id: str, *, include_shared: bool = True) -> List[Encounter]:
        encounters = self.list_by_owner(user_id)
        if include_shared:
            seen = {encounter.id for encounter in encounters}
            encounters += [e for e in self.list_shared_with(user_id) if e.id not in seen]
        return encounters

    def list_by_status(self, owner_id: str, status: EncounterStatus) -> List[Encounter]:
        return [e for e in self.list_by_owner(owner_id) if e.status == status]

    def list_active(self, owner_id: str) -> List[Encounter]:
        return [e for e in self.list_by_owner(owner_id) if e.combat_state.is_active]

    def search(self, user_id: str, query: str) -> List[Encounter]:
        needle = query.strip().lower()
        return [
            encounter
            for encounter in self.list_for_user(user_id)
            if needle in encounter.name.lower() or needle in encounter.description.lower() or needle in encounter.tags
        ]


class CombatLogRepository(ABC):
    @abstractmethod
    def append(self, encounter_id: str, entries: Sequence[CombatLogEntry]) -> None:
        raise NotImplementedError

    @abstractmethod
    def list(self, encounter_id: str) -> List[CombatLogEntry]:
        raise NotImplementedError

    @abstractmethod
    def clear(self, encounter_id: str) -> None:
        raise NotImplementedError


class CombatSnapshotRepository(ABC):
    @abstractmethod
    def save(self, snapshot: CombatSnapshot) -> None:
        raise NotImplementedError

    @abstractmethod
    def latest(self, encounter_id: str) -> Optional[CombatSnapshot]:
        raise NotImplementedError

    @abstractmethod
    def clear(self, encounter_id: str) -> None:
        raise NotImplementedError


class NPCTemplateRepository(ABC):
    @abstractmethod
    def get(self, template_id: str) -> Optional[NPCTemplate]:
        raise NotImplementedError

    @abstractmethod
    def save(self, template: NPCTemplate) -> NPCTemplate:
        raise NotImplementedError

    @abstractmethod
    def delete(self, template_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_visible(self, user_id: Optional[str]) -> List[NPCTemplate]:
        """System templates plus the custom templates created by ``user_id``."""
        raise NotImplementedError
