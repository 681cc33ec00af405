"""Shape of an exported encounter document, checked on import."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


EXPORT_VERSION = "1.0.0"
APP_VERSION = "1.0.0"


class _Lenient(BaseModel):
    # Hand-written imports may carry numbers where the schema expects text.
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")


class ExportMetadata(_Lenient):
    exported_at: str
    exported_by: str
    format: Literal["json", "xml"]
    version: str
    app_version: str


class ExportedPosition(_Lenient):
    x: int = Field(0, ge=0)
    y: int = Field(0, ge=0)


class ExportedParticipant(_Lenient):
    id: str
    name: str = Field(min_length=1, max_length=100)
    type: Literal["pc", "npc", "monster"]
    max_hit_points: int = Field(ge=1)
    current_hit_points: int = Field(ge=0)
    temporary_hit_points: int = Field(0, ge=0)
    armor_class: int = Field(ge=1, le=30)
    initiative: Optional[int] = Field(None, ge=-10, le=30)
    dexterity: int = Field(10, ge=1, le=30)
    is_player: bool = False
    is_visible: bool = True
    notes: str = Field("", max_length=500)
    conditions: List[str] = Field(default_factory=list, max_length=20)
    position: Optional[ExportedPosition] = None


class ExportedSettings(_Lenient):
    allow_player_visibility: bool = True
    auto_roll_initiative: bool = False
    track_resources: bool = True
    enable_lair_actions: bool = False
    lair_action_initiative: Optional[int] = None
    enable_grid_movement: bool = False
    grid_size: int = Field(5, ge=1, le=50)
    round_time_limit: Optional[int] = Field(None, ge=30, le=600)
    experience_threshold: Optional[int] = Field(None, ge=0)


class ExportedInitiativeEntry(_Lenient):
    participant_id: str
    initiative: int
    dexterity: int = 10
    is_active: bool = False
    has_acted: bool = False
    is_delayed: bool = False
    ready_action: Optional[str] = None


class ExportedCombatState(_Lenient):
    is_active: bool = False
    current_round: int = Field(0, ge=0)
    current_turn: int = Field(0, ge=0)
    total_duration: int = Field(0, ge=0)
    started_at: Optional[str] = None
    paused_at: Optional[str] = None
    ended_at: Optional[str] = None
    initiative_order: List[ExportedInitiativeEntry] = Field(default_factory=list)


class ExportedEncounter(_Lenient):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field("", max_length=1000)
    tags: List[str] = Field(default_factory=list, max_length=10)
    difficulty: Optional[Literal["trivial", "easy", "medium", "hard", "deadly"]] = None
    estimated_duration: Optional[int] = Field(None, ge=1, le=480)
    target_level: Optional[int] = Field(None, ge=1, le=20)
    status: Literal["draft", "active", "completed", "archived"] = "draft"
    is_public: bool = False
    settings: ExportedSettings = Field(default_factory=ExportedSettings)
    combat_state: Optional[ExportedCombatState] = None
    participants: List[ExportedParticipant] = Field(default_factory=list, max_length=50)
    character_sheets: Optional[List[Dict[str, Any]]] = None


class EncounterExportDocument(_Lenient):
    metadata: ExportMetadata
    encounter: ExportedEncounter
