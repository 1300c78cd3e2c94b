"""Cookie-based authentication schemes.

Two schemes are registered by the infrastructure composer:

``Identity.Application``
    The default scheme. Its cookie identifies an already signed-in user
    on every request.
``Identity.External``
    The default sign-in scheme. Its short-lived cookie carries the
    identity returned by an external provider until the application
    turns it into a local sign-in.

Cookie payloads are JWTs minted and verified with Flask-JWT-Extended.
Each token carries a ``scheme`` claim, so a token issued for one scheme
(or for a password reset) is never accepted by another.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from functools import wraps
from typing import Callable, Optional

from flask import current_app, g, request
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from ..errors import UnauthorizedError

logger = logging.getLogger(__name__)

APPLICATION_SCHEME = "Identity.Application"
EXTERNAL_SCHEME = "Identity.External"

APPLICATION_COOKIE_NAME = ".MyApp.Identity.Application"
EXTERNAL_COOKIE_NAME = "Identity.External"

APPLICATION_COOKIE_LIFETIME = timedelta(days=14)
EXTERNAL_COOKIE_LIFETIME = timedelta(minutes=5)

# Claims set by the JWT layer itself; never copied into a principal.
RESERVED_CLAIMS = frozenset({"sub", "exp", "iat", "nbf", "jti", "type", "fresh", "csrf", "scheme"})


@dataclass(frozen=True)
class ClaimsPrincipal:
    """The identity established for a request by one scheme."""

    subject: str
    scheme: str
    claims: dict = field(default_factory=dict)

    @property
    def name(self) -> Optional[str]:
        return self.claims.get("name")


class CookieAuthenticationHandler:
    """Issue, read and clear the cookie of a single scheme."""

    def __init__(
        self,
        scheme: str,
        cookie_name: str,
        expire_time_span: timedelta,
        validate_principal: Callable[[ClaimsPrincipal], bool] | None = None,
    ) -> None:
        self.scheme = scheme
        self.cookie_name = cookie_name
        self.expire_time_span = expire_time_span
        self.validate_principal = validate_principal

    def sign_in(self, response, principal: ClaimsPrincipal) -> None:
        claims = {k: v for k, v in principal.claims.items() if k not in RESERVED_CLAIMS}
        claims["scheme"] = self.scheme
        token = create_access_token(
            identity=principal.subject,
            expires_delta=self.expire_time_span,
            additional_claims=claims,
        )
        response.set_cookie(
            self.cookie_name,
            token,
            max_age=int(self.expire_time_span.total_seconds()),
            httponly=True,
            secure=current_app.config.get("JWT_COOKIE_SECURE", False),
            samesite=current_app.config.get("JWT_COOKIE_SAMESITE") or "Lax",
            path="/",
        )

    def authenticate(self) -> Optional[ClaimsPrincipal]:
        token = request.cookies.get(self.cookie_name)
        if not token:
            return None
        try:
            decoded = decode_token(token)
        except (JWTExtendedException, PyJWTError) as exc:
            logger.debug("Rejected %s cookie: %s", self.scheme, exc)
            return None
        if decoded.get("scheme") != self.scheme:
            logger.debug("Rejected %s cookie issued for another scheme", self.scheme)
            return None
        principal = ClaimsPrincipal(
            subject=decoded["sub"],
            scheme=self.scheme,
            claims={k: v for k, v in decoded.items() if k not in RESERVED_CLAIMS},
        )
        if self.validate_principal is not None and not self.validate_principal(principal):
            logger.info("Rejected stale %s cookie for %s", self.scheme, principal.subject)
            return None
        return principal

    def sign_out(self, response) -> None:
        response.delete_cookie(self.cookie_name, path="/")

    def __repr__(self) -> str:
        return f"<CookieAuthenticationHandler {self.scheme}>"


class AuthenticationService:
    """Select the scheme for each operation and delegate to its handler."""

    def __init__(
        self,
        default_scheme: str,
        default_sign_in_scheme: str,
        handlers: dict[str, CookieAuthenticationHandler],
    ) -> None:
        for scheme in (default_scheme, default_sign_in_scheme):
            if scheme not in handlers:
                raise ValueError(f"No authentication handler registered for scheme '{scheme}'.")
        self.default_scheme = default_scheme
        self.default_sign_in_scheme = default_sign_in_scheme
        self.handlers = dict(handlers)

    def handler(self, scheme: str) -> CookieAuthenticationHandler:
        try:
            return self.handlers[scheme]
        except KeyError:
            raise ValueError(f"No authentication handler registered for scheme '{scheme}'.") from None

    def authenticate(self, scheme: str | None = None) -> Optional[ClaimsPrincipal]:
        return self.handler(scheme or self.default_scheme).authenticate()

    def sign_in(self, response, principal: ClaimsPrincipal, scheme: str | None = None) -> None:
        self.handler(scheme or self.default_sign_in_scheme).sign_in(response, principal)

    def sign_out(self, response, scheme: str | None = None) -> None:
        self.handler(scheme or self.default_scheme).sign_out(response)


def authorize(scheme: str | None = None):
    """Require an authenticated principal for the decorated view.

    The principal is stored on ``flask.g.principal``. Without one the
    request fails with 401.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            authentication: AuthenticationService = current_app.extensions["authentication"]
            principal = authentication.authenticate(scheme)
            if principal is None:
                raise UnauthorizedError(scheme=scheme or authentication.default_scheme)
            g.principal = principal
            return view(*args, **kwargs)
        return wrapper
    return decorator
