from typing import List, Optional


class TrackerError(Exception):
    """Base error carrying a stable code and the HTTP status it maps to."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = int(status_code)
        self.details = list(details or [])

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code, "details": list(self.details)}


class ValidationError(TrackerError):
    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(TrackerError):
    code = "INVALID_CREDENTIALS"
    status_code = 401


class PermissionDeniedError(TrackerError):
    code = "INSUFFICIENT_PERMISSIONS"
    status_code = 403


class NotFoundError(TrackerError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(TrackerError):
    code = "CONFLICT"
    status_code = 409


class CombatStateError(TrackerError):
    code = "INVALID_COMBAT_STATE"
    status_code = 409


def raise_if_invalid(errors: List[str], message: str = "Validation failed") -> None:
    if errors:
        raise ValidationError(message, details=errors)
