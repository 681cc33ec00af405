"""Signed, expiring tokens for read-only encounter share links.

A token is ``<encounter_id>.<expiry epoch seconds>.<signature>`` where the
signature is a URL-safe HMAC-SHA256 over the first two parts.
"""

import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from typing import Optional, Tuple


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


class ShareTokenSigner:
    def __init__(self, secret: Optional[str] = None) -> None:
        self._secret = (secret or secrets.token_urlsafe(32)).encode("utf-8")

    def _signature(self, payload: str) -> str:
        return _b64(hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).digest())

    def sign(self, encounter_id: str, expires_at: datetime) -> str:
        payload = f"{encounter_id}.{int(expires_at.timestamp())}"
        return f"{payload}.{self._signature(payload)}"

    def verify(self, token: str, now: datetime) -> Optional[Tuple[str, datetime]]:
        """Return ``(encounter_id, expires_at)`` for a valid unexpired token."""
        parts = str(token or "").split(".")
        if len(parts) != 3:
            return None
        encounter_id, expiry, signature = parts
        if not hmac.compare_digest(signature, self._signature(f"{encounter_id}.{expiry}")):
            return None
        try:
            expires_at = datetime.fromtimestamp(int(expiry), tz=timezone.utc)
        except (ValueError, OverflowError):
            return None
        if expires_at <= now:
            return None
        return encounter_id, expires_at
