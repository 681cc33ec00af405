from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


LAIR_ACTION_ID = "lair-action"
DEFAULT_LAIR_ACTION_INITIATIVE = 20


class CombatPhase(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class CombatActionType(str, Enum):
    COMBAT_STARTED = "combat_started"
    COMBAT_ENDED = "combat_ended"
    COMBAT_PAUSED = "combat_paused"
    COMBAT_RESUMED = "combat_resumed"
    TURN_START = "turn_start"
    TURN_END = "turn_end"
    TURN_DELAYED = "turn_delayed"
    ROUND_START = "round_start"
    ROUND_END = "round_end"
    DAMAGE_DEALT = "damage_dealt"
    HEALING_APPLIED = "healing_applied"
    TEMPORARY_HP_SET = "temporary_hp_set"
    CONDITION_ADDED = "condition_added"
    CONDITION_REMOVED = "condition_removed"
    INITIATIVE_SET = "initiative_set"
    LAIR_ACTION = "lair_action"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"


@dataclass
class InitiativeEntry:
    participant_id: str
    initiative: int
    dexterity: int = 10
    is_active: bool = False
    has_acted: bool = False
    is_delayed: bool = False
    ready_action: Optional[str] = None

    @property
    def is_lair(self) -> bool:
        return self.participant_id == LAIR_ACTION_ID


@dataclass
class CombatState:
    is_active: bool = False
    current_round: int = 0
    current_turn: int = 0
    initiative_order: List[InitiativeEntry] = field(default_factory=list)
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    turn_started_at: Optional[datetime] = None
    # Milliseconds.
    paused_duration: int = 0
    total_duration: int = 0

    @property
    def current_entry(self) -> Optional[InitiativeEntry]:
        if 0 <= self.current_turn < len(self.initiative_order):
            return self.initiative_order[self.current_turn]
        return None

    def index_of(self, participant_id: str) -> int:
        for index, entry in enumerate(self.initiative_order):
            if entry.participant_id == participant_id:
                return index
        return -1

    def entry_for(self, participant_id: str) -> Optional[InitiativeEntry]:
        index = self.index_of(participant_id)
        return self.initiative_order[index] if index >= 0 else None


@dataclass
class CombatLogEntry:
    action: CombatActionType
    timestamp: datetime
    round: int
    turn: int
    participant_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
            "round": self.round,
            "turn": self.turn,
            "participant_id": self.participant_id,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class CombatSnapshot:
    """A saved copy of an encounter's combat state, restorable later."""

    encounter_id: str
    saved_at: datetime
    state: CombatState
    label: str = ""
