"""Request bodies accepted by the HTTP layer.

Aggregate payloads (characters, parties, encounters, templates) stay plain
dicts and are validated by the domain; these models cover the action
endpoints whose shape is fixed.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RegisterRequest(_Request):
    email: str
    username: str
    first_name: str
    last_name: str
    password: str
    confirm_password: Optional[str] = None


class LoginRequest(_Request):
    email: str
    password: str


class EmailRequest(_Request):
    email: str


class TokenRequest(_Request):
    token: str


class ResetPasswordRequest(_Request):
    token: str
    password: str
    confirm_password: Optional[str] = None


class ChangePasswordRequest(_Request):
    current_password: str
    new_password: str


class SubscriptionRequest(_Request):
    subscription_tier: str


class ShareRequest(_Request):
    user_ids: List[str] = Field(default_factory=list, max_length=20)
    is_public: Optional[bool] = None


class NameRequest(_Request):
    name: Optional[str] = Field(None, min_length=1, max_length=100)


class MemberRequest(_Request):
    character_id: str


class IdsRequest(_Request):
    ids: List[str] = Field(min_length=1, max_length=50)


class CharacterTemplateRequest(_Request):
    name: str = Field(min_length=1, max_length=100)
    class_name: str
    race: str = "human"
    level: int = Field(1, ge=1, le=20)
    type: Literal["pc", "npc"] = "pc"
    ability_scores: Dict[str, int] = Field(default_factory=dict)
    hit_points: int = Field(10, ge=1)
    armor_class: int = Field(10, ge=1, le=30)
    customizations: Dict[str, Any] = Field(default_factory=dict)


class BulkUpdateItem(BaseModel):
    character_id: str
    data: Dict[str, Any]


class BulkUpdateRequest(_Request):
    items: List[BulkUpdateItem] = Field(min_length=1, max_length=50)


class BulkCreateRequest(_Request):
    items: List[Dict[str, Any]] = Field(min_length=1, max_length=50)


class AddCharactersRequest(_Request):
    character_ids: List[str] = Field(default_factory=list, max_length=50)
    party_id: Optional[str] = None


class ArchiveRequest(_Request):
    reason: Optional[str] = Field(None, max_length=200)


class PublishRequest(_Request):
    is_public: bool = True


class ImportRequest(_Request):
    data: str = Field(min_length=1)
    format: Literal["json", "xml"] = "json"
    preserve_ids: bool = False
    create_missing_characters: bool = False
    overwrite_existing: bool = False


class TemplateRequest(_Request):
    name: str = Field(min_length=1, max_length=100)


class BatchRequest(_Request):
    operation: Literal["export", "template", "delete", "archive", "publish", "duplicate"]
    encounter_ids: List[str]
    format: Literal["json", "xml"] = "json"
    include_character_sheets: bool = False
    include_private_notes: bool = False
    strip_personal_data: bool = True
    template_prefix: str = "Template"
    archive_reason: Optional[str] = None
    make_public: bool = True


class ShareLinkRequest(_Request):
    expires_in_hours: int = Field(24, ge=1, le=24 * 30)


class StartCombatRequest(_Request):
    auto_roll: Optional[bool] = None


class ParticipantActionRequest(_Request):
    participant_id: str


class InitiativeRequest(_Request):
    participant_id: str
    initiative: int
    dexterity: Optional[int] = None


class RollInitiativeRequest(_Request):
    participant_id: Optional[str] = None


class AddToInitiativeRequest(_Request):
    participant_id: str
    initiative: Optional[int] = None


class DamageRequest(_Request):
    participant_id: str
    amount: int = Field(ge=0)
    damage_type: Optional[str] = None
    resistance: Optional[Literal["normal", "resistant", "vulnerable", "immune"]] = None
    resistances: List[str] = Field(default_factory=list)
    immunities: List[str] = Field(default_factory=list)
    vulnerabilities: List[str] = Field(default_factory=list)


class RolledDamageTarget(BaseModel):
    id: str
    name: str = ""
    resistance: Literal["normal", "resistant", "vulnerable", "immune"] = "normal"
    multiplier: float = Field(1.0, ge=0)


class RolledDamageRequest(_Request):
    dice_count: int = Field(ge=1, le=100)
    dice_type: Literal["d4", "d6", "d8", "d10", "d12", "d20"]
    modifier: int = Field(0, ge=-100, le=100)
    damage_type: str = "bludgeoning"
    targets: List[RolledDamageTarget] = Field(min_length=1)
    critical: bool = False
    method: Literal["equal", "half", "custom"] = "equal"


class AmountRequest(_Request):
    participant_id: str
    amount: int = Field(ge=0)


class ConditionRequest(_Request):
    participant_id: str
    condition: str = Field(min_length=1, max_length=50)


class ReadyActionRequest(_Request):
    participant_id: str
    description: str = Field(min_length=1, max_length=200)


class SnapshotRequest(_Request):
    label: str = Field("", max_length=100)


class TemplateImportRequest(_Request):
    format: Literal["json", "dndbeyond", "roll20", "custom", "open5e"]
    data: Any


class VariantRequest(_Request):
    variant_type: Literal["elite", "weak", "champion", "minion"]


class Open5eImportRequest(_Request):
    slug: str = Field(min_length=1)


class TemplateParticipantRequest(_Request):
    template_id: str
    count: int = Field(1, ge=1, le=20)
    name: Optional[str] = Field(None, max_length=90)
