from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from encounter_tracker.domain.models.character import Character, CharacterType


MAX_PARTY_TAGS = 10
MAX_PARTY_SHARES = 50
MAX_MEMBERS_RANGE = (1, 100)


@dataclass
class PartySettings:
    allow_joining: bool = False
    require_approval: bool = True
    max_members: int = 6


@dataclass
class Party:
    id: Optional[str]
    owner_id: str
    name: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    is_public: bool = False
    shared_with: List[str] = field(default_factory=list)
    settings: PartySettings = field(default_factory=PartySettings)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.name = str(self.name or "").strip()
        self.description = str(self.description or "").strip()
        self.tags = [str(tag).strip().lower() for tag in self.tags if str(tag).strip()]
        self.shared_with = list(dict.fromkeys(str(user_id) for user_id in self.shared_with if user_id))

    def is_full(self, member_count: int) -> bool:
        return member_count >= self.settings.max_members

    def can_access(self, user_id: str) -> bool:
        return self.owner_id == user_id or self.is_public or user_id in self.shared_with

    def touch(self, now: datetime) -> None:
        self.updated_at = now
        self.last_activity = now


@dataclass(frozen=True)
class PartyRoster:
    """A party together with the characters that carry its id."""

    party: Party
    members: Sequence[Character]

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def player_character_count(self) -> int:
        return sum(1 for member in self.members if member.type == CharacterType.PC)

    @property
    def average_level(self) -> int:
        if not self.members:
            return 0
        return round(sum(member.level for member in self.members) / len(self.members))

    def to_summary(self) -> dict:
        return {
            "id": self.party.id,
            "name": self.party.name,
            "description": self.party.description,
            "tags": list(self.party.tags),
            "is_public": self.party.is_public,
            "member_count": self.member_count,
            "player_character_count": self.player_character_count,
            "average_level": self.average_level,
            "last_activity": self.party.last_activity.isoformat() if self.party.last_activity else None,
        }


def validate_party(party: Party) -> List[str]:
    errors: List[str] = []
    if not 1 <= len(party.name) <= 100:
        errors.append("name must be between 1 and 100 characters")
    if not party.owner_id:
        errors.append("owner_id is required")
    if len(party.description) > 1000:
        errors.append("description cannot exceed 1000 characters")
    if len(party.tags) > MAX_PARTY_TAGS:
        errors.append(f"a party can have at most {MAX_PARTY_TAGS} tags")
    if any(len(tag) > 30 for tag in party.tags):
        errors.append("tags cannot exceed 30 characters")
    if len(party.shared_with) > MAX_PARTY_SHARES:
        errors.append(f"a party can be shared with at most {MAX_PARTY_SHARES} users")
    low, high = MAX_MEMBERS_RANGE
    if not low <= int(party.settings.max_members) <= high:
        errors.append(f"max_members must be between {low} and {high}")
    return errors
