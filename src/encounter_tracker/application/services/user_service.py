from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from encounter_tracker.application.dtos import Page, paginate
from encounter_tracker.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    raise_if_invalid,
)
from encounter_tracker.domain.models.user import SubscriptionTier, User, UserPreferences, validate_user
from encounter_tracker.domain.repositories import UserRepository


PROFILE_FIELDS = ("first_name", "last_name", "username", "email")


class UserService:
    def __init__(self, user_repo: UserRepository) -> None:
        self.user_repo = user_repo

    def get_user(self, user_id: str) -> User:
        user = self.user_repo.get(user_id)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return user

    def _require_self_or_admin(self, actor: User, user_id: str) -> None:
        if actor.id != user_id and not actor.is_admin:
            raise PermissionDeniedError("You can only access your own profile")

    def get_profile(self, actor: User, user_id: str) -> User:
        self._require_self_or_admin(actor, user_id)
        return self.get_user(user_id)

    def update_profile(self, actor: User, user_id: str, updates: Dict[str, Any]) -> User:
        self._require_self_or_admin(actor, user_id)
        user = self.get_user(user_id)

        for field_name in PROFILE_FIELDS:
            if field_name in updates and updates[field_name] is not None:
                setattr(user, field_name, str(updates[field_name]).strip())
        user.email = user.email.lower()

        preferences = updates.get("preferences")
        if isinstance(preferences, dict):
            merged = {
                "theme": user.preferences.theme,
                "email_notifications": user.preferences.email_notifications,
                "browser_notifications": user.preferences.browser_notifications,
                "timezone": user.preferences.timezone,
                "language": user.preferences.language,
                "dice_roll_animations": user.preferences.dice_roll_animations,
                "auto_save_encounters": user.preferences.auto_save_encounters,
            }
            merged.update({k: v for k, v in preferences.items() if k in merged and v is not None})
            try:
                user.preferences = UserPreferences(**merged)
            except ValueError as exc:
                raise ValidationError("Invalid preferences", details=[str(exc)]) from exc

        raise_if_invalid(validate_user(user))
        other = self.user_repo.get_by_email(user.email)
        if other is not None and other.id != user.id:
            raise ConflictError("An account with this email already exists", code="USER_ALREADY_EXISTS")
        other = self.user_repo.get_by_username(user.username)
        if other is not None and other.id != user.id:
            raise ConflictError("This username is already taken", code="USER_ALREADY_EXISTS")

        user.updated_at = datetime.now(timezone.utc)
        return self.user_repo.save(user)

    # -- administration --------------------------------------------------

    @staticmethod
    def _require_admin(actor: User) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError("Administrator access required")

    def list_users(
        self,
        actor: User,
        *,
        page: int = 1,
        limit: int = 20,
        role: Optional[str] = None,
        subscription_tier: Optional[str] = None,
    ) -> Page[User]:
        self._require_admin(actor)
        users = [
            user
            for user in self.user_repo.list_all()
            if (role is None or user.role.value == role)
            and (subscription_tier is None or user.subscription_tier.value == subscription_tier)
        ]
        return paginate(users, page, limit)

    def update_subscription(self, actor: User, user_id: str, tier: str) -> User:
        self._require_admin(actor)
        user = self.get_user(user_id)
        try:
            user.subscription_tier = SubscriptionTier(tier)
        except ValueError as exc:
            raise ValidationError(f"Unknown subscription tier: {tier}") from exc
        user.updated_at = datetime.now(timezone.utc)
        return self.user_repo.save(user)

    def delete_user(self, actor: User, user_id: str) -> None:
        self._require_self_or_admin(actor, user_id)
        if not self.user_repo.delete(user_id):
            raise NotFoundError("User not found", code="USER_NOT_FOUND")

    def user_stats(self, actor: User) -> Dict[str, Any]:
        self._require_admin(actor)
        users = self.user_repo.list_all()
        return {
            "total_users": len(users),
            "verified_users": sum(1 for user in users if user.is_email_verified),
            "users_by_role": dict(Counter(user.role.value for user in users)),
            "users_by_tier": dict(Counter(user.subscription_tier.value for user in users)),
        }
