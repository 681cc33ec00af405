import copy
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from encounter_tracker.domain.models.character import Character
from encounter_tracker.domain.models.combat import CombatLogEntry, CombatSnapshot
from encounter_tracker.domain.models.encounter import Encounter
from encounter_tracker.domain.models.npc_template import NPCTemplate
from encounter_tracker.domain.models.party import Party
from encounter_tracker.domain.models.user import User
from encounter_tracker.domain.repositories import (
    CharacterRepository,
    CombatLogRepository,
    CombatSnapshotRepository,
    EncounterRepository,
    NPCTemplateRepository,
    PartyRepository,
    SessionRepository,
    UserRepository,
)


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryUserRepository(UserRepository):
    def __init__(self) -> None:
        self._users: Dict[str, User] = {}

    def get(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user is not None else None

    def _find(self, predicate) -> Optional[User]:
        for user in self._users.values():
            if predicate(user):
                return copy.deepcopy(user)
        return None

    def get_by_email(self, email: str) -> Optional[User]:
        wanted = str(email or "").strip().lower()
        return self._find(lambda user: user.email == wanted)

    def get_by_username(self, username: str) -> Optional[User]:
        wanted = str(username or "").strip().lower()
        return self._find(lambda user: user.username.lower() == wanted)

    def get_by_verification_token(self, token: str) -> Optional[User]:
        return self._find(lambda user: token and user.email_verification_token == token)

    def get_by_reset_token(self, token: str) -> Optional[User]:
        return self._find(lambda user: token and user.password_reset_token == token)

    def save(self, user: User) -> User:
        if user.id is None:
            user.id = _new_id()
        self._users[user.id] = copy.deepcopy(user)
        return user

    def delete(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None

    def list_all(self) -> List[User]:
        return sorted((copy.deepcopy(u) for u in self._users.values()), key=lambda u: u.username.lower())


class InMemorySessionRepository(SessionRepository):
    def __init__(self) -> None:
        self._sessions: Dict[str, Tuple[str, datetime]] = {}

    def create(self, token: str, user_id: str, expires_at: datetime) -> None:
        self._sessions[token] = (user_id, expires_at)

    def get_user_id(self, token: str, now: datetime) -> Optional[str]:
        row = self._sessions.get(token)
        if row is None:
            return None
        user_id, expires_at = row
        if expires_at <= now:
            self._sessions.pop(token, None)
            return None
        return user_id

    def delete(self, token: str) -> None:
        self._sessions.pop(token, None)

    def delete_for_user(self, user_id: str) -> int:
        tokens = [token for token, row in self._sessions.items() if row[0] == user_id]
        for token in tokens:
            del self._sessions[token]
        return len(tokens)


class InMemoryCharacterRepository(CharacterRepository):
    def __init__(self) -> None:
        self._characters: Dict[str, Character] = {}

    def get(self, character_id: str) -> Optional[Character]:
        character = self._characters.get(character_id)
        return copy.deepcopy(character) if character is not None else None

    def get_many(self, character_ids: Sequence[str]) -> List[Character]:
        return [copy.deepcopy(self._characters[cid]) for cid in character_ids if cid in self._characters]

    def save(self, character: Character) -> Character:
        if character.id is None:
            character.id = _new_id()
        self._characters[character.id] = copy.deepcopy(character)
        return character

    def delete(self, character_id: str) -> bool:
        return self._characters.pop(character_id, None) is not None

    def _select(self, predicate) -> List[Character]:
        rows = [copy.deepcopy(c) for c in self._characters.values() if predicate(c)]
        return sorted(rows, key=lambda c: c.name.lower())

    def list_by_owner(self, owner_id: str) -> List[Character]:
        return self._select(lambda c: c.owner_id == owner_id)

    def list_by_party(self, party_id: str) -> List[Character]:
        return self._select(lambda c: c.party_id == party_id)

    def list_public(self) -> List[Character]:
        return self._select(lambda c: c.is_public)

    def search_by_name(self, owner_id: str, query: str) -> List[Character]:
        needle = str(query or "").strip().lower()
        return self._select(lambda c: c.owner_id == owner_id and needle in c.name.lower())


class InMemoryPartyRepository(PartyRepository):
    def __init__(self) -> None:
        self._parties: Dict[str, Party] = {}

    def get(self, party_id: str) -> Optional[Party]:
        party = self._parties.get(party_id)
        return copy.deepcopy(party) if party is not None else None

    def save(self, party: Party) -> Party:
        if party.id is None:
            party.id = _new_id()
        self._parties[party.id] = copy.deepcopy(party)
        return party

    def delete(self, party_id: str) -> bool:
        return self._parties.pop(party_id, None) is not None

    def _select(self, predicate) -> List[Party]:
        rows = [copy.deepcopy(p) for p in self._parties.values() if predicate(p)]
        return sorted(rows, key=lambda p: p.name.lower())

    def list_by_owner(self, owner_id: str) -> List[Party]:
        return self._select(lambda p: p.owner_id == owner_id)

    def list_shared_with(self, user_id: str) -> List[Party]:
        return self._select(lambda p: user_id in p.shared_with)

    def list_public(self) -> List[Party]:
        return self._select(lambda p: p.is_public)


class InMemoryEncounterRepository(EncounterRepository):
    def __init__(self) -> None:
        self._encounters: Dict[str, Encounter] = {}

    def get(self, encounter_id: str) -> Optional[Encounter]:
        encounter = self._encounters.get(encounter_id)
        return copy.deepcopy(encounter) if encounter is not None else None

    def save(self, encounter: Encounter) -> Encounter:
        if encounter.id is None:
            encounter.id = _new_id()
        self._encounters[encounter.id] = copy.deepcopy(encounter)
        return encounter

    def delete(self, encounter_id: str) -> bool:
        return self._encounters.pop(encounter_id, None) is not None

    def _select(self, predicate) -> List[Encounter]:
        rows = [copy.deepcopy(e) for e in self._encounters.values() if predicate(e)]
        # Most recently touched first.
        return sorted(rows, key=lambda e: e.updated_at.timestamp() if e.updated_at else 0.0, reverse=True)

    def list_by_owner(self, owner_id: str) -> List[Encounter]:
        return self._select(lambda e: e.owner_id == owner_id)

    def list_shared_with(self, user_id: str) -> List[Encounter]:
        return self._select(lambda e: user_id in e.shared_with)

    def list_public(self) -> List[Encounter]:
        return self._select(lambda e: e.is_public)


class InMemoryCombatLogRepository(CombatLogRepository):
    def __init__(self) -> None:
        self._entries: Dict[str, List[CombatLogEntry]] = {}

    def append(self, encounter_id: str, entries: Sequence[CombatLogEntry]) -> None:
        self._entries.setdefault(encounter_id, []).extend(copy.deepcopy(list(entries)))

    def list(self, encounter_id: str) -> List[CombatLogEntry]:
        return copy.deepcopy(self._entries.get(encounter_id, []))

    def clear(self, encounter_id: str) -> None:
        self._entries.pop(encounter_id, None)


class InMemoryCombatSnapshotRepository(CombatSnapshotRepository):
    def __init__(self) -> None:
        self._snapshots: Dict[str, List[CombatSnapshot]] = {}

    def save(self, snapshot: CombatSnapshot) -> None:
        self._snapshots.setdefault(snapshot.encounter_id, []).append(copy.deepcopy(snapshot))

    def latest(self, encounter_id: str) -> Optional[CombatSnapshot]:
        rows = self._snapshots.get(encounter_id)
        return copy.deepcopy(rows[-1]) if rows else None

    def clear(self, encounter_id: str) -> None:
        self._snapshots.pop(encounter_id, None)


class InMemoryNPCTemplateRepository(NPCTemplateRepository):
    def __init__(self, templates: Optional[Sequence[NPCTemplate]] = None) -> None:
        self._templates: Dict[str, NPCTemplate] = {}
        for template in templates or ():
            self.save(template)

    def get(self, template_id: str) -> Optional[NPCTemplate]:
        template = self._templates.get(template_id)
        return copy.deepcopy(template) if template is not None else None

    def save(self, template: NPCTemplate) -> NPCTemplate:
        if template.id is None:
            template.id = _new_id()
        self._templates[template.id] = copy.deepcopy(template)
        return template

    def delete(self, template_id: str) -> bool:
        return self._templates.pop(template_id, None) is not None

    def list_visible(self, user_id: Optional[str]) -> List[NPCTemplate]:
        rows = [
            copy.deepcopy(t)
            for t in self._templates.values()
            if t.is_system or (user_id is not None and t.created_by == user_id)
        ]
        return sorted(rows, key=lambda t: (t.challenge_rating, t.name.lower()))
