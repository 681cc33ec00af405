from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from encounter_tracker.domain.models.user import User


T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


def paginate(items: List[T], page: int = 1, limit: int = 20) -> Page[T]:
    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    start = (page - 1) * limit
    return Page(items=items[start : start + limit], total=len(items), page=page, limit=limit)


@dataclass
class AuthResult:
    user: User
    session_token: str
    expires_at: datetime
    requires_verification: bool = False


@dataclass
class ItemResult:
    id: str
    success: bool
    error: Optional[str] = None
    result_id: Optional[str] = None
    data: Any = None


@dataclass
class BatchResult:
    operation: str
    results: List[ItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [
                {"id": r.id, "success": r.success, "error": r.error, "result_id": r.result_id, "data": r.data}
                for r in self.results
            ],
        }


@dataclass
class ExportOptions:
    format: str = "json"
    include_character_sheets: bool = False
    include_private_notes: bool = False
    include_ids: bool = False
    strip_personal_data: bool = False


@dataclass
class BatchOptions:
    format: str = "json"
    include_character_sheets: bool = False
    include_private_notes: bool = False
    strip_personal_data: bool = True
    template_prefix: str = "Template"
    archive_reason: Optional[str] = None
    make_public: bool = True


@dataclass
class ImportOptions:
    preserve_ids: bool = False
    create_missing_characters: bool = False
    overwrite_existing: bool = False


@dataclass
class ImportResult:
    encounter_id: str
    warnings: List[str] = field(default_factory=list)
    created_characters: List[str] = field(default_factory=list)


@dataclass
class ShareLink:
    token: str
    url: str
    expires_at: datetime


@dataclass
class TurnView:
    """Read model handed to the HTTP layer and the terminal tracker."""

    encounter_id: str
    phase: str
    round: int
    turn: int
    is_lair_turn: bool
    current_participant_id: Optional[str]
    time_remaining: Optional[int]
    order: List[Dict[str, Any]] = field(default_factory=list)
