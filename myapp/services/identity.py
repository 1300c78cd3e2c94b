"""Identity management: options, the user store and the user manager.

``UserStore`` is the persistence interface the identity services need.
``SqlAlchemyUserStore`` implements it over the models in
``myapp.models`` using the shared ``db`` object, so identity reads and
writes go through the same persistence context as the rest of the
application. ``UserManager`` holds the rules (validation, password
policy, token issuing) and talks to the store only.
"""
from __future__ import annotations

import abc
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Optional

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import IntegrityError

from ..models import ApplicationUser, UserClaim, UserLogin, UserToken
from .tokens import CONFIRM_EMAIL_PURPOSE, DEFAULT_PROVIDER, RESET_PASSWORD_PURPOSE

logger = logging.getLogger(__name__)


@dataclass
class PasswordOptions:
    required_length: int = 6
    required_unique_chars: int = 1
    require_non_alphanumeric: bool = True
    require_lowercase: bool = True
    require_uppercase: bool = True
    require_digit: bool = True


@dataclass
class SignInOptions:
    require_confirmed_email: bool = False
    require_confirmed_phone_number: bool = False
    require_confirmed_account: bool = False


@dataclass
class UserOptions:
    allowed_user_name_characters: str = (
        "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-._@+"
    )
    require_unique_email: bool = False


@dataclass
class IdentityOptions:
    password: PasswordOptions = field(default_factory=PasswordOptions)
    sign_in: SignInOptions = field(default_factory=SignInOptions)
    user: UserOptions = field(default_factory=UserOptions)


@dataclass(frozen=True)
class IdentityError:
    code: str
    description: str


@dataclass(frozen=True)
class IdentityResult:
    """Outcome of an identity operation that can fail for business reasons."""

    succeeded: bool
    errors: tuple[IdentityError, ...] = ()

    @classmethod
    def success(cls) -> IdentityResult:
        return cls(True)

    @classmethod
    def failed(cls, *errors: IdentityError) -> IdentityResult:
        return cls(False, tuple(errors))

    def messages(self) -> dict[str, str]:
        return {error.code: error.description for error in self.errors}


def normalize(value: Optional[str]) -> Optional[str]:
    return value.strip().upper() if value else None


class UserStore(abc.ABC):
    """Persistence operations required by ``UserManager``."""

    @abc.abstractmethod
    def create(self, user: ApplicationUser) -> IdentityResult: ...

    @abc.abstractmethod
    def update(self, user: ApplicationUser) -> IdentityResult: ...

    @abc.abstractmethod
    def delete(self, user: ApplicationUser) -> IdentityResult: ...

    @abc.abstractmethod
    def find_by_id(self, user_id: str) -> Optional[ApplicationUser]: ...

    @abc.abstractmethod
    def find_by_name(self, normalized_user_name: str) -> Optional[ApplicationUser]: ...

    @abc.abstractmethod
    def find_by_email(self, normalized_email: str) -> Optional[ApplicationUser]: ...

    @abc.abstractmethod
    def add_login(self, user: ApplicationUser, provider: str, provider_key: str, display_name: str | None) -> None: ...

    @abc.abstractmethod
    def remove_login(self, user: ApplicationUser, provider: str, provider_key: str) -> None: ...

    @abc.abstractmethod
    def find_by_login(self, provider: str, provider_key: str) -> Optional[ApplicationUser]: ...

    @abc.abstractmethod
    def get_logins(self, user: ApplicationUser) -> list[UserLogin]: ...

    @abc.abstractmethod
    def add_claim(self, user: ApplicationUser, claim_type: str, claim_value: str | None) -> None: ...

    @abc.abstractmethod
    def get_claims(self, user: ApplicationUser) -> list[tuple[str, str | None]]: ...

    @abc.abstractmethod
    def set_token(self, user: ApplicationUser, provider: str, name: str, value: str | None) -> None: ...

    @abc.abstractmethod
    def get_token(self, user: ApplicationUser, provider: str, name: str) -> Optional[str]: ...

    @abc.abstractmethod
    def remove_token(self, user: ApplicationUser, provider: str, name: str) -> None: ...


class SqlAlchemyUserStore(UserStore):
    """``UserStore`` backed by the Flask-SQLAlchemy persistence context.

    Every mutating call commits, mirroring a store that saves changes
    after each operation.
    """

    def __init__(self, db: SQLAlchemy) -> None:
        self.db = db

    def _save(self) -> IdentityResult:
        try:
            self.db.session.commit()
        except IntegrityError as exc:
            self.db.session.rollback()
            logger.warning("Identity store rejected a write: %s", exc.orig)
            return IdentityResult.failed(
                IdentityError("ConcurrencyFailure", "The record was changed or conflicts with an existing one.")
            )
        return IdentityResult.success()

    def create(self, user: ApplicationUser) -> IdentityResult:
        self.db.session.add(user)
        return self._save()

    def update(self, user: ApplicationUser) -> IdentityResult:
        user.concurrency_stamp = str(uuid.uuid4())
        return self._save()

    def delete(self, user: ApplicationUser) -> IdentityResult:
        self.db.session.delete(user)
        return self._save()

    def find_by_id(self, user_id: str) -> Optional[ApplicationUser]:
        return self.db.session.get(ApplicationUser, user_id)

    def find_by_name(self, normalized_user_name: str) -> Optional[ApplicationUser]:
        return ApplicationUser.query.filter_by(normalized_user_name=normalized_user_name).first()

    def find_by_email(self, normalized_email: str) -> Optional[ApplicationUser]:
        return ApplicationUser.query.filter_by(normalized_email=normalized_email).first()

    def add_login(self, user: ApplicationUser, provider: str, provider_key: str, display_name: str | None) -> None:
        """Stage the login on ``user``; it is saved by the next ``create`` or ``update``."""
        user.logins.append(
            UserLogin(login_provider=provider, provider_key=provider_key, provider_display_name=display_name)
        )

    def remove_login(self, user: ApplicationUser, provider: str, provider_key: str) -> None:
        login = self.db.session.get(UserLogin, (provider, provider_key))
        if login is not None and login.user_id == user.id:
            self.db.session.delete(login)
            self.db.session.commit()

    def find_by_login(self, provider: str, provider_key: str) -> Optional[ApplicationUser]:
        login = self.db.session.get(UserLogin, (provider, provider_key))
        return login.user if login is not None else None

    def get_logins(self, user: ApplicationUser) -> list[UserLogin]:
        return list(user.logins)

    def add_claim(self, user: ApplicationUser, claim_type: str, claim_value: str | None) -> None:
        user.claims.append(UserClaim(claim_type=claim_type, claim_value=claim_value))
        self.db.session.commit()

    def get_claims(self, user: ApplicationUser) -> list[tuple[str, str | None]]:
        return [(claim.claim_type, claim.claim_value) for claim in user.claims]

    def set_token(self, user: ApplicationUser, provider: str, name: str, value: str | None) -> None:
        token = self.db.session.get(UserToken, (user.id, provider, name))
        if token is None:
            user.tokens.append(UserToken(login_provider=provider, name=name, value=value))
        else:
            token.value = value
        self.db.session.commit()

    def get_token(self, user: ApplicationUser, provider: str, name: str) -> Optional[str]:
        token = self.db.session.get(UserToken, (user.id, provider, name))
        return token.value if token is not None else None

    def remove_token(self, user: ApplicationUser, provider: str, name: str) -> None:
        token = self.db.session.get(UserToken, (user.id, provider, name))
        if token is not None:
            self.db.session.delete(token)
            self.db.session.commit()


class UserManager:
    """Create, look up and validate users through a ``UserStore``."""

    def __init__(self, store: UserStore, options: IdentityOptions, token_providers: dict | None = None) -> None:
        self.store = store
        self.options = options
        self.token_providers: dict = dict(token_providers or {})

    def register_token_provider(self, name: str, provider) -> None:
        self.token_providers[name] = provider

    # validation -----------------------------------------------------

    def validate_password(self, password: str | None) -> list[IdentityError]:
        opts = self.options.password
        password = password or ""
        errors = []
        if len(password) < opts.required_length:
            errors.append(IdentityError(
                "PasswordTooShort", f"Passwords must be at least {opts.required_length} characters."
            ))
        if opts.require_non_alphanumeric and password.isalnum():
            errors.append(IdentityError(
                "PasswordRequiresNonAlphanumeric", "Passwords must have at least one non alphanumeric character."
            ))
        if opts.require_digit and not any(c.isdigit() for c in password):
            errors.append(IdentityError("PasswordRequiresDigit", "Passwords must have at least one digit ('0'-'9')."))
        if opts.require_lowercase and not any(c.islower() for c in password):
            errors.append(IdentityError(
                "PasswordRequiresLower", "Passwords must have at least one lowercase ('a'-'z')."
            ))
        if opts.require_uppercase and not any(c.isupper() for c in password):
            errors.append(IdentityError(
                "PasswordRequiresUpper", "Passwords must have at least one uppercase ('A'-'Z')."
            ))
        if len(set(password)) < opts.required_unique_chars:
            errors.append(IdentityError(
                "PasswordRequiresUniqueChars",
                f"Passwords must use at least {opts.required_unique_chars} different characters.",
            ))
        return errors

    def validate_user(self, user: ApplicationUser) -> list[IdentityError]:
        errors = []
        name = user.user_name or ""
        allowed = self.options.user.allowed_user_name_characters
        if not name.strip():
            errors.append(IdentityError("InvalidUserName", "User name is invalid, can only contain letters or digits."))
        elif allowed and any(c not in allowed for c in name):
            errors.append(IdentityError(
                "InvalidUserName", f"User name '{name}' is invalid, can only contain letters or digits."
            ))
        else:
            owner = self.store.find_by_name(normalize(name))
            if owner is not None and owner.id != user.id:
                errors.append(IdentityError("DuplicateUserName", f"Username '{name}' is already taken."))

        if user.email and not re.fullmatch(r"[^@\s]+@[^@\s]+", user.email):
            errors.append(IdentityError("InvalidEmail", f"Email '{user.email}' is invalid."))
        elif self.options.user.require_unique_email:
            if not user.email:
                errors.append(IdentityError("InvalidEmail", "Email '' is invalid."))
            else:
                owner = self.store.find_by_email(normalize(user.email))
                if owner is not None and owner.id != user.id:
                    errors.append(IdentityError("DuplicateEmail", f"Email '{user.email}' is already taken."))
        return errors

    # users ----------------------------------------------------------

    def create(self, user: ApplicationUser, password: str | None = None) -> IdentityResult:
        """Validate and store a new user, optionally with a password.

        No confirmation step is started; whether the user may sign in
        straight away is decided by ``SignInOptions``.
        """
        if user.id is None:
            user.id = str(uuid.uuid4())
        user.security_stamp = str(uuid.uuid4())
        user.normalized_user_name = normalize(user.user_name)
        user.normalized_email = normalize(user.email)

        errors = self.validate_user(user)
        if password is not None:
            errors.extend(self.validate_password(password))
        if errors:
            return IdentityResult.failed(*errors)
        if password is not None:
            user.set_password(password)
        result = self.store.create(user)
        if result.succeeded:
            logger.info("Created user %s", user.user_name)
        return result

    def delete(self, user: ApplicationUser) -> IdentityResult:
        return self.store.delete(user)

    def find_by_id(self, user_id: str) -> Optional[ApplicationUser]:
        return self.store.find_by_id(user_id)

    def find_by_name(self, user_name: str) -> Optional[ApplicationUser]:
        if not user_name:
            return None
        return self.store.find_by_name(normalize(user_name))

    def find_by_email(self, email: str) -> Optional[ApplicationUser]:
        if not email:
            return None
        return self.store.find_by_email(normalize(email))

    def check_password(self, user: ApplicationUser, password: str) -> bool:
        return user.check_password(password or "")

    def update_security_stamp(self, user: ApplicationUser) -> IdentityResult:
        user.security_stamp = str(uuid.uuid4())
        return self.store.update(user)

    def change_password(self, user: ApplicationUser, current_password: str, new_password: str) -> IdentityResult:
        if not self.check_password(user, current_password):
            return IdentityResult.failed(IdentityError("PasswordMismatch", "Incorrect password."))
        return self._set_password(user, new_password)

    def _set_password(self, user: ApplicationUser, new_password: str) -> IdentityResult:
        errors = self.validate_password(new_password)
        if errors:
            return IdentityResult.failed(*errors)
        user.set_password(new_password)
        return self.update_security_stamp(user)

    # tokens ---------------------------------------------------------

    def _provider(self, name: str):
        try:
            return self.token_providers[name]
        except KeyError:
            raise ValueError(f"No token provider named '{name}' is registered.") from None

    def generate_user_token(self, user: ApplicationUser, provider: str, purpose: str) -> str:
        return self._provider(provider).generate(purpose, user)

    def verify_user_token(self, user: ApplicationUser, provider: str, purpose: str, token: str) -> bool:
        valid = self._provider(provider).validate(purpose, token, user)
        if not valid:
            logger.info("Invalid %s token for user %s", purpose, user.id)
        return valid

    def generate_password_reset_token(self, user: ApplicationUser) -> str:
        return self.generate_user_token(user, DEFAULT_PROVIDER, RESET_PASSWORD_PURPOSE)

    def reset_password(self, user: ApplicationUser, token: str, new_password: str) -> IdentityResult:
        if not self.verify_user_token(user, DEFAULT_PROVIDER, RESET_PASSWORD_PURPOSE, token):
            return IdentityResult.failed(IdentityError("InvalidToken", "Invalid token."))
        return self._set_password(user, new_password)

    def generate_email_confirmation_token(self, user: ApplicationUser) -> str:
        return self.generate_user_token(user, DEFAULT_PROVIDER, CONFIRM_EMAIL_PURPOSE)

    def confirm_email(self, user: ApplicationUser, token: str) -> IdentityResult:
        if not self.verify_user_token(user, DEFAULT_PROVIDER, CONFIRM_EMAIL_PURPOSE, token):
            return IdentityResult.failed(IdentityError("InvalidToken", "Invalid token."))
        user.email_confirmed = True
        return self.store.update(user)

    def get_valid_two_factor_providers(self, user: ApplicationUser) -> list[str]:
        return [name for name, provider in self.token_providers.items() if provider.can_generate_two_factor(user)]

    # external logins ------------------------------------------------

    def add_login(self, user: ApplicationUser, provider: str, provider_key: str,
                  display_name: str | None = None) -> IdentityResult:
        if self.store.find_by_login(provider, provider_key) is not None:
            return IdentityResult.failed(
                IdentityError("LoginAlreadyAssociated", "A user with this login already exists.")
            )
        self.store.add_login(user, provider, provider_key, display_name)
        return self.store.update(user)

    def create_with_login(self, user: ApplicationUser, provider: str, provider_key: str,
                          display_name: str | None = None) -> IdentityResult:
        """Create ``user`` linked to an external login, saving both or neither."""
        if self.store.find_by_login(provider, provider_key) is not None:
            return IdentityResult.failed(
                IdentityError("LoginAlreadyAssociated", "A user with this login already exists.")
            )
        self.store.add_login(user, provider, provider_key, display_name)
        return self.create(user)

    def find_by_login(self, provider: str, provider_key: str) -> Optional[ApplicationUser]:
        return self.store.find_by_login(provider, provider_key)
