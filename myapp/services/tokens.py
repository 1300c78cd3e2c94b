"""Default user token providers.

Tokens are used for flows where a user proves control of an account
outside a normal sign-in: password reset, email confirmation and
two-factor codes. Every token is tied to the user's security stamp, so
changing the password (which rotates the stamp) invalidates all tokens
issued before.

``Default``
    A signed, URL-safe token (a JWT minted with Flask-JWT-Extended)
    carrying the user id, purpose and security stamp. Lifetime one day.
``Email`` / ``Phone``
    Six digit time-step codes (RFC 6238, HMAC-SHA1, three minute steps)
    suitable for typing in by hand.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import struct
import time
from datetime import timedelta
from typing import Callable

from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from ..models import ApplicationUser

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "Default"
EMAIL_PROVIDER = "Email"
PHONE_PROVIDER = "Phone"

RESET_PASSWORD_PURPOSE = "ResetPassword"
CONFIRM_EMAIL_PURPOSE = "EmailConfirmation"
TWO_FACTOR_PURPOSE = "TwoFactor"


class DataProtectorTokenProvider:
    """Signed tokens for links sent to the user (reset, confirmation)."""

    def __init__(self, token_lifespan: timedelta = timedelta(days=1)) -> None:
        self.token_lifespan = token_lifespan

    def generate(self, purpose: str, user: ApplicationUser) -> str:
        return create_access_token(
            identity=user.id,
            expires_delta=self.token_lifespan,
            additional_claims={"purpose": purpose, "stamp": user.security_stamp},
        )

    def validate(self, purpose: str, token: str, user: ApplicationUser) -> bool:
        try:
            decoded = decode_token(token)
        except (JWTExtendedException, PyJWTError) as exc:
            logger.debug("Invalid %s token: %s", purpose, exc)
            return False
        return (
            decoded.get("sub") == user.id
            and decoded.get("purpose") == purpose
            and decoded.get("stamp") == user.security_stamp
        )

    def can_generate_two_factor(self, user: ApplicationUser) -> bool:
        return False


def _totp(key: bytes, timestep: int, modifier: str) -> int:
    digest = hmac.new(key, struct.pack(">Q", timestep) + modifier.encode("utf-8"), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    binary = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return binary % 1_000_000


class TotpTokenProvider:
    """Short numeric codes derived from the security stamp and the current time.

    Codes from up to two steps before or after the current step are
    accepted to allow for clock drift and slow delivery.
    """

    timestep = timedelta(minutes=3)
    allowed_drift = 2

    def __init__(self, name: str, clock: Callable[[], float] = time.time) -> None:
        self.name = name
        self.clock = clock

    def _modifier(self, purpose: str, user: ApplicationUser) -> str:
        if self.name == PHONE_PROVIDER:
            return f"PhoneNumber:{purpose}:{user.phone_number}"
        return f"{self.name}:{purpose}:{user.email}"

    def _current_step(self) -> int:
        return int(self.clock() // self.timestep.total_seconds())

    def generate(self, purpose: str, user: ApplicationUser) -> str:
        code = _totp(user.security_stamp.encode("utf-8"), self._current_step(), self._modifier(purpose, user))
        return f"{code:06d}"

    def validate(self, purpose: str, token: str, user: ApplicationUser) -> bool:
        token = (token or "").strip()
        if len(token) != 6 or not token.isdigit():
            return False
        expected = int(token)
        key = user.security_stamp.encode("utf-8")
        modifier = self._modifier(purpose, user)
        current = self._current_step()
        return any(
            hmac.compare_digest(f"{_totp(key, current + drift, modifier):06d}", f"{expected:06d}")
            for drift in range(-self.allowed_drift, self.allowed_drift + 1)
        )

    def can_generate_two_factor(self, user: ApplicationUser) -> bool:
        if self.name == PHONE_PROVIDER:
            return bool(user.phone_number) and user.phone_number_confirmed
        return bool(user.email) and user.email_confirmed


def default_token_providers() -> dict[str, DataProtectorTokenProvider | TotpTokenProvider]:
    return {
        DEFAULT_PROVIDER: DataProtectorTokenProvider(),
        EMAIL_PROVIDER: TotpTokenProvider(EMAIL_PROVIDER),
        PHONE_PROVIDER: TotpTokenProvider(PHONE_PROVIDER),
    }
