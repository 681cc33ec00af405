import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,30}$")
PERSON_NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]+$")
MAX_EMAIL_LENGTH = 254


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class SubscriptionTier(str, Enum):
    FREE = "free"
    SEASONED = "seasoned"
    EXPERT = "expert"
    MASTER = "master"
    GUILD = "guild"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


@dataclass
class UserPreferences:
    theme: Theme = Theme.SYSTEM
    email_notifications: bool = True
    browser_notifications: bool = False
    timezone: str = "UTC"
    language: str = "en"
    dice_roll_animations: bool = True
    auto_save_encounters: bool = True

    def __post_init__(self) -> None:
        self.theme = Theme(getattr(self.theme, "value", self.theme))


@dataclass
class User:
    id: Optional[str]
    email: str
    username: str
    first_name: str
    last_name: str
    password_hash: str = ""
    role: UserRole = UserRole.USER
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    preferences: UserPreferences = field(default_factory=UserPreferences)
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.email = str(self.email or "").strip().lower()
        self.username = str(self.username or "").strip()
        self.first_name = str(self.first_name or "").strip()
        self.last_name = str(self.last_name or "").strip()
        self.role = UserRole(getattr(self.role, "value", self.role))
        self.subscription_tier = SubscriptionTier(getattr(self.subscription_tier, "value", self.subscription_tier))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def to_public_dict(self) -> Dict[str, Any]:
        """User data safe to hand to clients: no hash and no tokens."""
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.value,
            "subscription_tier": self.subscription_tier.value,
            "preferences": {
                "theme": self.preferences.theme.value,
                "email_notifications": self.preferences.email_notifications,
                "browser_notifications": self.preferences.browser_notifications,
                "timezone": self.preferences.timezone,
                "language": self.preferences.language,
                "dice_roll_animations": self.preferences.dice_roll_animations,
                "auto_save_encounters": self.preferences.auto_save_encounters,
            },
            "is_email_verified": self.is_email_verified,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def validate_user(user: User) -> List[str]:
    errors: List[str] = []
    if not user.email or len(user.email) > MAX_EMAIL_LENGTH or EMAIL_PATTERN.match(user.email) is None:
        errors.append("Please enter a valid email address")
    if USERNAME_PATTERN.match(user.username) is None:
        errors.append("Username must be 3-30 characters of letters, numbers, underscores or hyphens")
    for label, value in (("First name", user.first_name), ("Last name", user.last_name)):
        if not value:
            errors.append(f"{label} is required")
        elif len(value) > 100:
            errors.append(f"{label} cannot exceed 100 characters")
        elif PERSON_NAME_PATTERN.match(value) is None:
            errors.append(f"{label} can only contain letters, spaces, hyphens, and apostrophes")
    if not user.password_hash:
        errors.append("Password is required")
    return errors
