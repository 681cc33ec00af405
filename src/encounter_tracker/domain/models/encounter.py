import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from encounter_tracker.domain.models.combat import CombatState
from encounter_tracker.domain.models.stats import ARMOR_CLASS_RANGE, INITIATIVE_RANGE, in_range


MAX_PARTICIPANTS = 50
MAX_CONDITIONS = 20
MAX_TAGS = 10
MAX_SHARED_WITH = 20


class ParticipantType(str, Enum):
    PC = "pc"
    NPC = "npc"
    MONSTER = "monster"


class EncounterStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class EncounterDifficulty(str, Enum):
    TRIVIAL = "trivial"
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    DEADLY = "deadly"


@dataclass
class Position:
    x: int = 0
    y: int = 0


@dataclass
class ParticipantReference:
    character_id: str
    name: str
    type: ParticipantType = ParticipantType.NPC
    max_hit_points: int = 1
    current_hit_points: int = 1
    temporary_hit_points: int = 0
    armor_class: int = 10
    initiative: Optional[int] = None
    dexterity: int = 10
    is_player: bool = False
    is_visible: bool = True
    notes: str = ""
    conditions: List[str] = field(default_factory=list)
    position: Optional[Position] = None

    def __post_init__(self) -> None:
        self.name = str(self.name or "").strip()
        self.type = ParticipantType(getattr(self.type, "value", self.type))
        if isinstance(self.position, dict):
            self.position = Position(**self.position)

    @property
    def is_defeated(self) -> bool:
        return self.current_hit_points <= 0


@dataclass
class EncounterSettings:
    allow_player_visibility: bool = True
    auto_roll_initiative: bool = False
    track_resources: bool = True
    enable_lair_actions: bool = False
    lair_action_initiative: Optional[int] = None
    enable_grid_movement: bool = False
    grid_size: int = 5
    round_time_limit: Optional[int] = None
    experience_threshold: Optional[int] = None


@dataclass
class Encounter:
    id: Optional[str]
    owner_id: str
    name: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    difficulty: Optional[EncounterDifficulty] = None
    estimated_duration: Optional[int] = None
    target_level: Optional[int] = None
    participants: List[ParticipantReference] = field(default_factory=list)
    settings: EncounterSettings = field(default_factory=EncounterSettings)
    combat_state: CombatState = field(default_factory=CombatState)
    status: EncounterStatus = EncounterStatus.DRAFT
    party_id: Optional[str] = None
    is_public: bool = False
    shared_with: List[str] = field(default_factory=list)
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.name = str(self.name or "").strip()
        self.description = str(self.description or "").strip()
        self.tags = [str(tag).strip().lower() for tag in self.tags if str(tag).strip()]
        self.status = EncounterStatus(getattr(self.status, "value", self.status))
        if self.difficulty is not None:
            self.difficulty = EncounterDifficulty(getattr(self.difficulty, "value", self.difficulty))
        self.shared_with = list(dict.fromkeys(str(user_id) for user_id in self.shared_with if user_id))

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def player_count(self) -> int:
        return sum(1 for participant in self.participants if participant.is_player)

    @property
    def is_active(self) -> bool:
        return self.combat_state.is_active

    def can_view(self, user_id: Optional[str]) -> bool:
        return self.is_public or (user_id is not None and (self.owner_id == user_id or user_id in self.shared_with))

    def can_edit(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.owner_id == user_id

    def get_participant(self, participant_id: str) -> Optional[ParticipantReference]:
        for participant in self.participants:
            if participant.character_id == participant_id:
                return participant
        return None

    def add_participant(self, participant: ParticipantReference) -> bool:
        if len(self.participants) >= MAX_PARTICIPANTS:
            return False
        if self.get_participant(participant.character_id) is not None:
            return False
        self.participants.append(participant)
        return True

    def remove_participant(self, participant_id: str) -> bool:
        before = len(self.participants)
        self.participants = [p for p in self.participants if p.character_id != participant_id]
        if len(self.participants) == before:
            return False

        state = self.combat_state
        removed_index = state.index_of(participant_id)
        if removed_index >= 0:
            del state.initiative_order[removed_index]
            if state.current_turn >= removed_index and state.current_turn > 0:
                state.current_turn -= 1
            if state.is_active and state.initiative_order and not any(e.is_active for e in state.initiative_order):
                state.initiative_order[min(state.current_turn, len(state.initiative_order) - 1)].is_active = True
        return True

    def update_participant(self, participant_id: str, updates: Dict[str, Any]) -> bool:
        participant = self.get_participant(participant_id)
        if participant is None:
            return False
        for key, value in updates.items():
            if key == "character_id" or not hasattr(participant, key):
                continue
            if key == "position" and isinstance(value, dict):
                value = Position(**value)
            if key == "type":
                value = ParticipantType(getattr(value, "value", value))
            setattr(participant, key, value)
        return True

    def calculate_difficulty(self) -> EncounterDifficulty:
        players = self.player_count
        others = self.participant_count - players
        ratio = others / max(players, 1)
        if ratio <= 0.5:
            return EncounterDifficulty.TRIVIAL
        if ratio <= 1:
            return EncounterDifficulty.EASY
        if ratio <= 1.5:
            return EncounterDifficulty.MEDIUM
        if ratio <= 2:
            return EncounterDifficulty.HARD
        return EncounterDifficulty.DEADLY

    def duplicate(self, new_name: Optional[str] = None) -> "Encounter":
        return Encounter(
            id=None,
            owner_id=self.owner_id,
            name=new_name or f"{self.name} (Copy)",
            description=self.description,
            tags=list(self.tags),
            difficulty=self.difficulty,
            estimated_duration=self.estimated_duration,
            target_level=self.target_level,
            participants=copy.deepcopy(self.participants),
            settings=copy.deepcopy(self.settings),
            combat_state=CombatState(),
            status=EncounterStatus.DRAFT,
            party_id=self.party_id,
            is_public=False,
            shared_with=[],
            version=1,
        )

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "difficulty": self.difficulty.value if self.difficulty else None,
            "estimated_duration": self.estimated_duration,
            "target_level": self.target_level,
            "status": self.status.value,
            "participant_count": self.participant_count,
            "player_count": self.player_count,
            "is_active": self.is_active,
            "is_public": self.is_public,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def validate_participant(participant: ParticipantReference) -> List[str]:
    errors: List[str] = []
    label = participant.name or participant.character_id
    if not participant.character_id:
        errors.append("participant character_id is required")
    if not 1 <= len(participant.name) <= 100:
        errors.append("participant name must be between 1 and 100 characters")
    if participant.max_hit_points < 1:
        errors.append(f"{label}: maximum hit points must be at least 1")
    if participant.current_hit_points < 0 or participant.temporary_hit_points < 0:
        errors.append(f"{label}: hit points cannot be negative")
    if not in_range(participant.armor_class, ARMOR_CLASS_RANGE):
        errors.append(f"{label}: armor class must be between 1 and 30")
    if participant.initiative is not None and not in_range(participant.initiative, INITIATIVE_RANGE):
        errors.append(f"{label}: initiative must be between -10 and 30")
    if len(participant.notes) > 500:
        errors.append(f"{label}: notes cannot exceed 500 characters")
    if len(participant.conditions) > MAX_CONDITIONS:
        errors.append(f"{label}: at most {MAX_CONDITIONS} conditions")
    if any(not condition or len(condition) > 50 for condition in participant.conditions):
        errors.append(f"{label}: conditions must be between 1 and 50 characters")
    if participant.position is not None and (participant.position.x < 0 or participant.position.y < 0):
        errors.append(f"{label}: position coordinates cannot be negative")
    return errors


def validate_settings(settings: EncounterSettings) -> List[str]:
    errors: List[str] = []
    if not 1 <= int(settings.grid_size) <= 50:
        errors.append("grid_size must be between 1 and 50")
    if settings.lair_action_initiative is not None and not in_range(settings.lair_action_initiative, INITIATIVE_RANGE):
        errors.append("lair_action_initiative must be between -10 and 30")
    if settings.round_time_limit is not None and not 30 <= int(settings.round_time_limit) <= 600:
        errors.append("round_time_limit must be between 30 and 600 seconds")
    if settings.experience_threshold is not None and int(settings.experience_threshold) < 0:
        errors.append("experience_threshold cannot be negative")
    return errors


def validate_encounter(encounter: Encounter) -> List[str]:
    errors: List[str] = []
    if not encounter.owner_id:
        errors.append("owner_id is required")
    if not 1 <= len(encounter.name) <= 100:
        errors.append("name must be between 1 and 100 characters")
    if len(encounter.description) > 1000:
        errors.append("description cannot exceed 1000 characters")
    if len(encounter.tags) > MAX_TAGS:
        errors.append(f"an encounter can have at most {MAX_TAGS} tags")
    if any(len(tag) > 30 for tag in encounter.tags):
        errors.append("tags cannot exceed 30 characters")
    if encounter.estimated_duration is not None and not 1 <= int(encounter.estimated_duration) <= 480:
        errors.append("estimated_duration must be between 1 and 480 minutes")
    if encounter.target_level is not None and not 1 <= int(encounter.target_level) <= 20:
        errors.append("target_level must be between 1 and 20")
    if len(encounter.participants) > MAX_PARTICIPANTS:
        errors.append(f"an encounter can have at most {MAX_PARTICIPANTS} participants")
    seen: set[str] = set()
    for participant in encounter.participants:
        if participant.character_id in seen:
            errors.append(f"duplicate participant: {participant.character_id}")
        seen.add(participant.character_id)
        errors.extend(validate_participant(participant))
    if len(encounter.shared_with) > MAX_SHARED_WITH:
        errors.append(f"an encounter can be shared with at most {MAX_SHARED_WITH} users")
    if encounter.version < 1:
        errors.append("version must be at least 1")
    errors.extend(validate_settings(encounter.settings))
    return errors
