"""Sign-in orchestration.

``SignInManager`` validates credentials with the ``UserManager`` and,
on success, issues the application cookie through the
``AuthenticationService``. It also reads the external cookie written
during an external provider callback and converts it into a local
sign-in.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..models import ApplicationUser
from .authentication import APPLICATION_SCHEME, EXTERNAL_SCHEME, AuthenticationService, ClaimsPrincipal
from .identity import IdentityOptions, UserManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignInResult:
    succeeded: bool = False
    is_not_allowed: bool = False

    @property
    def failed(self) -> bool:
        return not (self.succeeded or self.is_not_allowed)


@dataclass(frozen=True)
class ExternalLoginInfo:
    """The identity an external provider vouched for."""

    login_provider: str
    provider_key: str
    display_name: Optional[str] = None
    email: Optional[str] = None


class SignInManager:
    def __init__(self, user_manager: UserManager, authentication: AuthenticationService,
                 options: IdentityOptions) -> None:
        self.user_manager = user_manager
        self.authentication = authentication
        self.options = options

    def can_sign_in(self, user: ApplicationUser) -> bool:
        """Return False when a confirmation required by the options is missing."""
        sign_in = self.options.sign_in
        if sign_in.require_confirmed_email and not user.email_confirmed:
            logger.info("User %s cannot sign in without a confirmed email", user.id)
            return False
        if sign_in.require_confirmed_phone_number and not user.phone_number_confirmed:
            logger.info("User %s cannot sign in without a confirmed phone number", user.id)
            return False
        if sign_in.require_confirmed_account and not (user.email_confirmed or user.phone_number_confirmed):
            logger.info("User %s cannot sign in without a confirmed account", user.id)
            return False
        return True

    def create_principal(self, user: ApplicationUser) -> ClaimsPrincipal:
        claims = {"name": user.user_name, "stamp": user.security_stamp}
        if user.email:
            claims["email"] = user.email
        return ClaimsPrincipal(subject=user.id, scheme=APPLICATION_SCHEME, claims=claims)

    def sign_in(self, user: ApplicationUser, response) -> None:
        self.authentication.sign_in(response, self.create_principal(user), APPLICATION_SCHEME)
        logger.info("User %s signed in", user.id)

    def sign_out(self, response) -> None:
        self.authentication.sign_out(response, APPLICATION_SCHEME)
        self.authentication.sign_out(response, EXTERNAL_SCHEME)

    def check_password_sign_in(self, user: ApplicationUser, password: str) -> SignInResult:
        if not self.can_sign_in(user):
            return SignInResult(is_not_allowed=True)
        if self.user_manager.check_password(user, password):
            return SignInResult(succeeded=True)
        logger.info("Invalid password for user %s", user.id)
        return SignInResult()

    def password_sign_in(self, user_name: str, password: str, response) -> SignInResult:
        user = self.user_manager.find_by_name(user_name)
        if user is None:
            return SignInResult()
        result = self.check_password_sign_in(user, password)
        if result.succeeded:
            self.sign_in(user, response)
        return result

    def validate_principal(self, principal: ClaimsPrincipal) -> Optional[ApplicationUser]:
        """Return the user behind ``principal`` if its security stamp is current."""
        user = self.user_manager.find_by_id(principal.subject)
        if user is None or principal.claims.get("stamp") != user.security_stamp:
            return None
        return user

    def get_current_user(self) -> Optional[ApplicationUser]:
        principal = self.authentication.authenticate(APPLICATION_SCHEME)
        if principal is None:
            return None
        return self.validate_principal(principal)

    # external logins ------------------------------------------------

    def sign_in_external(self, info: ExternalLoginInfo, response) -> None:
        """Remember a provider callback in the default sign-in scheme's cookie."""
        claims = {"provider": info.login_provider}
        if info.display_name:
            claims["name"] = info.display_name
        if info.email:
            claims["email"] = info.email
        principal = ClaimsPrincipal(subject=info.provider_key, scheme=EXTERNAL_SCHEME, claims=claims)
        self.authentication.sign_in(response, principal)

    def get_external_login_info(self) -> Optional[ExternalLoginInfo]:
        principal = self.authentication.authenticate(EXTERNAL_SCHEME)
        if principal is None or not principal.claims.get("provider"):
            return None
        return ExternalLoginInfo(
            login_provider=principal.claims["provider"],
            provider_key=principal.subject,
            display_name=principal.claims.get("name"),
            email=principal.claims.get("email"),
        )

    def external_login_sign_in(self, provider: str, provider_key: str, response) -> SignInResult:
        user = self.user_manager.find_by_login(provider, provider_key)
        if user is None:
            return SignInResult()
        if not self.can_sign_in(user):
            return SignInResult(is_not_allowed=True)
        self.sign_in(user, response)
        self.authentication.sign_out(response, EXTERNAL_SCHEME)
        return SignInResult(succeeded=True)
