from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from encounter_tracker.application.dtos import AuthResult
from encounter_tracker.application.services.event_bus import EventBus
from encounter_tracker.domain.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    raise_if_invalid,
)
from encounter_tracker.domain.events import EmailVerificationRequested, PasswordResetRequested, UserRegistered
from encounter_tracker.domain.models.user import EMAIL_PATTERN, User, UserRole, validate_user
from encounter_tracker.domain.repositories import SessionRepository, UserRepository
from encounter_tracker.domain.services.password_policy import (
    is_password_hashed,
    length_errors,
    validate_password_strength,
)


logger = logging.getLogger(__name__)

PASSWORD_RESET_TTL = timedelta(minutes=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Registration, credential checks, password lifecycle and API sessions."""

    def __init__(
        self,
        user_repo: UserRepository,
        session_repo: SessionRepository,
        password_hasher,
        *,
        event_bus: Optional[EventBus] = None,
        session_ttl: timedelta = timedelta(hours=24),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.user_repo = user_repo
        self.session_repo = session_repo
        self.password_hasher = password_hasher
        self.event_bus = event_bus
        self.session_ttl = session_ttl
        self._clock = clock or _utcnow

    def _publish(self, event: object) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)

    def _check_new_password(self, password: str) -> None:
        if is_password_hashed(password):
            raise ValidationError("Password appears to be pre-hashed", details=["Password cannot be a hash"])
        strength = validate_password_strength(password)
        if not strength.is_valid:
            raise ValidationError("Password does not meet requirements", details=strength.errors)

    def _set_password(self, user: User, password: str) -> None:
        self._check_new_password(password)
        user.password_hash = self.password_hasher.hash(password)
        user.password_reset_token = None
        user.password_reset_expires = None

    # -- registration and login ------------------------------------------

    def register(
        self,
        *,
        email: str,
        username: str,
        first_name: str,
        last_name: str,
        password: str,
        confirm_password: Optional[str] = None,
        role: UserRole = UserRole.USER,
    ) -> User:
        if confirm_password is not None and confirm_password != password:
            raise ValidationError("Passwords do not match", details=["Passwords do not match"])
        self._check_new_password(password)

        now = self._clock()
        user = User(
            id=None,
            email=email,
            username=username,
            first_name=first_name,
            last_name=last_name,
            password_hash="pending",
            role=role,
            email_verification_token=secrets.token_hex(32),
            created_at=now,
            updated_at=now,
        )
        raise_if_invalid(validate_user(user))
        if self.user_repo.get_by_email(user.email) is not None:
            raise ConflictError("An account with this email already exists", code="USER_ALREADY_EXISTS")
        if self.user_repo.get_by_username(user.username) is not None:
            raise ConflictError("This username is already taken", code="USER_ALREADY_EXISTS")

        user.password_hash = self.password_hasher.hash(password)
        self.user_repo.save(user)
        logger.info("User registered", extra={"user_id": user.id})
        self._publish(UserRegistered(user_id=user.id, email=user.email, verification_token=user.email_verification_token))
        return user

    def authenticate(self, email: str, password: str) -> AuthResult:
        normalized = str(email or "").strip().lower()
        if EMAIL_PATTERN.match(normalized) is None or not password:
            raise AuthenticationError("Invalid email or password")
        user = self.user_repo.get_by_email(normalized)
        if user is None or not self.password_hasher.verify(password, user.password_hash):
            logger.info("Failed login attempt")
            raise AuthenticationError("Invalid email or password")

        user.last_login_at = self._clock()
        self.user_repo.save(user)
        token, expires_at = self.create_session(user.id)
        return AuthResult(
            user=user,
            session_token=token,
            expires_at=expires_at,
            requires_verification=not user.is_email_verified,
        )

    # -- sessions ----------------------------------------------------------

    def create_session(self, user_id: str) -> tuple[str, datetime]:
        token = secrets.token_urlsafe(32)
        expires_at = self._clock() + self.session_ttl
        self.session_repo.create(token, user_id, expires_at)
        return token, expires_at

    def resolve_session(self, token: str) -> User:
        user_id = self.session_repo.get_user_id(str(token or ""), self._clock()) if token else None
        user = self.user_repo.get(user_id) if user_id else None
        if user is None:
            raise AuthenticationError("Authentication required", code="AUTHENTICATION_REQUIRED")
        return user

    def logout(self, token: str) -> None:
        self.session_repo.delete(token)

    # -- password lifecycle ----------------------------------------------

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.user_repo.get(user_id)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        if not self.password_hasher.verify(current_password, user.password_hash):
            raise ValidationError("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")
        self._set_password(user, new_password)
        user.updated_at = self._clock()
        self.user_repo.save(user)
        revoked = self.session_repo.delete_for_user(user.id)
        logger.info("Password changed", extra={"user_id": user.id, "sessions_revoked": revoked})

    def request_password_reset(self, email: str) -> Optional[str]:
        """Issue a reset token. Unknown emails get ``None`` and no error."""
        user = self.user_repo.get_by_email(email)
        if user is None:
            return None
        user.password_reset_token = secrets.token_hex(32)
        user.password_reset_expires = self._clock() + PASSWORD_RESET_TTL
        self.user_repo.save(user)
        self._publish(PasswordResetRequested(user_id=user.id, email=user.email, reset_token=user.password_reset_token))
        return user.password_reset_token

    def reset_password(self, token: str, password: str, confirm_password: Optional[str] = None) -> None:
        if confirm_password is not None and confirm_password != password:
            raise ValidationError("Passwords do not match", details=["Passwords do not match"])
        errors = length_errors(password or "")
        raise_if_invalid(errors)
        user = self.user_repo.get_by_reset_token(token) if token else None
        expires = user.password_reset_expires if user is not None else None
        if user is None or expires is None or expires <= self._clock():
            raise ValidationError("Invalid or expired reset token", code="INVALID_RESET_TOKEN")
        self._set_password(user, password)
        user.updated_at = self._clock()
        self.user_repo.save(user)
        self.session_repo.delete_for_user(user.id)

    # -- email verification ----------------------------------------------

    def verify_email(self, token: str) -> User:
        user = self.user_repo.get_by_verification_token(token) if token else None
        if user is None:
            raise ValidationError("Invalid or expired verification token", code="INVALID_VERIFICATION_TOKEN")
        user.is_email_verified = True
        user.email_verification_token = None
        user.updated_at = self._clock()
        self.user_repo.save(user)
        return user

    def resend_verification(self, email: str) -> None:
        user = self.user_repo.get_by_email(email)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        if user.is_email_verified:
            raise ValidationError("Email is already verified", code="EMAIL_ALREADY_VERIFIED")
        user.email_verification_token = secrets.token_hex(32)
        self.user_repo.save(user)
        self._publish(
            EmailVerificationRequested(
                user_id=user.id, email=user.email, verification_token=user.email_verification_token
            )
        )
