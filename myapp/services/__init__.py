"""Service layer for MyApp.

This package holds the identity and authentication services that the
infrastructure composer wires together: cookie authentication schemes,
the user store and user manager, the sign-in manager, the default token
providers and the database error diagnostics.

Nothing in this package registers itself on an application; see
``myapp.infrastructure`` for that. Services return plain Python data
structures or database objects, and signal request errors with the
exceptions defined in ``myapp.errors``.
"""

from .authentication import (
    APPLICATION_SCHEME,
    EXTERNAL_SCHEME,
    AuthenticationService,
    ClaimsPrincipal,
    CookieAuthenticationHandler,
    authorize,
)
from .identity import IdentityOptions, IdentityResult, SqlAlchemyUserStore, UserManager, UserStore
from .sign_in import ExternalLoginInfo, SignInManager, SignInResult

__all__ = [
    "APPLICATION_SCHEME",
    "EXTERNAL_SCHEME",
    "AuthenticationService",
    "ClaimsPrincipal",
    "CookieAuthenticationHandler",
    "authorize",
    "IdentityOptions",
    "IdentityResult",
    "SqlAlchemyUserStore",
    "UserManager",
    "UserStore",
    "ExternalLoginInfo",
    "SignInManager",
    "SignInResult",
]
