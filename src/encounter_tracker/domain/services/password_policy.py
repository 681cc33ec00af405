import re
from dataclasses import dataclass, field
from typing import List


MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 1000

_BCRYPT_PATTERN = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")
_SPECIAL_CHARS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


@dataclass(frozen=True)
class PasswordStrength:
    is_valid: bool
    strength: str
    errors: List[str] = field(default_factory=list)


def is_password_hashed(password: object) -> bool:
    if not isinstance(password, str):
        return False
    return len(password) == 60 and _BCRYPT_PATTERN.match(password) is not None


def length_errors(password: str) -> List[str]:
    errors: List[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append("Password is too long")
    return errors


def validate_password_strength(password: object) -> PasswordStrength:
    if not isinstance(password, str):
        return PasswordStrength(is_valid=False, strength="weak", errors=["Password must be a string"])

    errors = length_errors(password)
    has_lower = re.search(r"[a-z]", password) is not None
    has_upper = re.search(r"[A-Z]", password) is not None
    has_digit = re.search(r"\d", password) is not None
    has_special = _SPECIAL_CHARS.search(password) is not None
    criteria = sum((has_lower, has_upper, has_digit, has_special))

    strength = "weak"
    if len(password) >= 12 and criteria >= 4:
        strength = "strong"
    elif len(password) >= MIN_PASSWORD_LENGTH and criteria >= 3:
        strength = "medium"

    if strength != "strong":
        if not has_lower:
            errors.append("Password must contain at least one lowercase letter")
        if not has_upper:
            errors.append("Password must contain at least one uppercase letter")
        if not has_digit:
            errors.append("Password must contain at least one number")
        if not has_special:
            errors.append("Password must contain at least one special character")

    return PasswordStrength(is_valid=not errors, strength=strength, errors=errors)
