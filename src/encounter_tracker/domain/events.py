from dataclasses import dataclass, field
from typing import Optional


@dataclass
class UserRegistered:
    user_id: str
    email: str
    verification_token: str


@dataclass
class EmailVerificationRequested:
    user_id: str
    email: str
    verification_token: str


@dataclass
class PasswordResetRequested:
    user_id: str
    email: str
    reset_token: str


@dataclass
class CombatStarted:
    encounter_id: str
    owner_id: str
    participant_count: int
    auto_rolled: bool


@dataclass
class TurnAdvanced:
    encounter_id: str
    round_number: int
    turn_index: int
    participant_id: Optional[str]
    is_lair_turn: bool = False


@dataclass
class ParticipantDefeated:
    encounter_id: str
    participant_id: str
    name: str
    round_number: int


@dataclass
class CombatEnded:
    encounter_id: str
    owner_id: str
    total_rounds: int
    total_duration_ms: int
    defeated: list[str] = field(default_factory=list)
