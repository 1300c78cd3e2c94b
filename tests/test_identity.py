"""Tests for the user manager, the SQLAlchemy user store and token providers."""
from __future__ import annotations

import pytest

from myapp import db
from myapp.models import ApplicationUser, Role, UserLogin
from myapp.services.identity import IdentityOptions, SignInOptions, SqlAlchemyUserStore, UserManager
from myapp.services.sign_in import SignInManager
from myapp.services.tokens import (
    DEFAULT_PROVIDER,
    EMAIL_PROVIDER,
    RESET_PASSWORD_PURPOSE,
    TWO_FACTOR_PURPOSE,
    TotpTokenProvider,
)

from conftest import PASSWORD


@pytest.fixture
def user_manager(app):
    return app.extensions["identity"]


@pytest.fixture
def user(user_manager):
    user = ApplicationUser(user_name="dave", email="Dave@Example.com")
    result = user_manager.create(user, PASSWORD)
    assert result.succeeded, result.errors
    return user


def test_create_normalizes_and_hashes(user_manager, user) -> None:
    assert user.normalized_user_name == "DAVE"
    assert user.normalized_email == "DAVE@EXAMPLE.COM"
    assert user.password_hash != PASSWORD
    assert user_manager.check_password(user, PASSWORD)
    assert not user_manager.check_password(user, "nope")
    assert user_manager.find_by_name("DaVe") is user
    assert user_manager.find_by_email("dave@example.com") is user
    assert user_manager.find_by_id(user.id) is user


def test_invalid_user_name(user_manager) -> None:
    result = user_manager.create(ApplicationUser(user_name="has space"), PASSWORD)
    assert not result.succeeded
    assert "InvalidUserName" in result.messages()


def test_duplicate_emails_are_allowed_by_default(user_manager, user) -> None:
    other = ApplicationUser(user_name="dave2", email="dave@example.com")
    assert user_manager.create(other, PASSWORD).succeeded


def test_unique_email_when_required(user_manager, user) -> None:
    user_manager.options.user.require_unique_email = True
    try:
        result = user_manager.create(ApplicationUser(user_name="dave3", email="DAVE@example.com"), PASSWORD)
    finally:
        user_manager.options.user.require_unique_email = False
    assert "DuplicateEmail" in result.messages()


def test_change_password_rotates_stamp(user_manager, user) -> None:
    stamp = user.security_stamp
    assert "PasswordMismatch" in user_manager.change_password(user, "wrong", "N3w-password").messages()
    assert user_manager.change_password(user, PASSWORD, "N3w-password").succeeded
    assert user.security_stamp != stamp
    assert user_manager.check_password(user, "N3w-password")


def test_default_token_is_bound_to_purpose_and_stamp(user_manager, user) -> None:
    token = user_manager.generate_password_reset_token(user)
    assert user_manager.verify_user_token(user, DEFAULT_PROVIDER, RESET_PASSWORD_PURPOSE, token)
    assert not user_manager.verify_user_token(user, DEFAULT_PROVIDER, "EmailConfirmation", token)

    user_manager.update_security_stamp(user)
    assert not user_manager.verify_user_token(user, DEFAULT_PROVIDER, RESET_PASSWORD_PURPOSE, token)


def test_unknown_token_provider(user_manager, user) -> None:
    with pytest.raises(ValueError, match="Authenticator"):
        user_manager.generate_user_token(user, "Authenticator", TWO_FACTOR_PURPOSE)


def test_totp_codes_expire(user) -> None:
    now = [1_700_000_000.0]
    provider = TotpTokenProvider(EMAIL_PROVIDER, clock=lambda: now[0])
    code = provider.generate(TWO_FACTOR_PURPOSE, user)
    assert len(code) == 6 and code.isdigit()
    assert provider.validate(TWO_FACTOR_PURPOSE, code, user)
    assert not provider.validate("Other", code, user)

    now[0] += 2 * 180
    assert provider.validate(TWO_FACTOR_PURPOSE, code, user)
    now[0] += 3 * 180
    assert not provider.validate(TWO_FACTOR_PURPOSE, code, user)


def test_two_factor_providers_need_confirmed_channels(user_manager, user) -> None:
    assert user_manager.get_valid_two_factor_providers(user) == []
    user.email_confirmed = True
    assert user_manager.get_valid_two_factor_providers(user) == [EMAIL_PROVIDER]


def test_store_logins_claims_and_tokens(user_manager, user) -> None:
    store = user_manager.store
    assert user_manager.add_login(user, "GitHub", "42", "Dave").succeeded
    assert "LoginAlreadyAssociated" in user_manager.add_login(user, "GitHub", "42").messages()
    assert user_manager.find_by_login("GitHub", "42") is user
    assert [(l.login_provider, l.provider_key) for l in store.get_logins(user)] == [("GitHub", "42")]
    store.remove_login(user, "GitHub", "42")
    assert user_manager.find_by_login("GitHub", "42") is None

    store.add_claim(user, "department", "research")
    assert store.get_claims(user) == [("department", "research")]

    store.set_token(user, "Authenticator", "key", "abc")
    store.set_token(user, "Authenticator", "key", "def")
    assert store.get_token(user, "Authenticator", "key") == "def"
    store.remove_token(user, "Authenticator", "key")
    assert store.get_token(user, "Authenticator", "key") is None


def test_delete_user(user_manager, user) -> None:
    assert user_manager.delete(user).succeeded
    assert user_manager.find_by_name("dave") is None


def test_sign_in_requires_confirmation_only_when_configured(app, user_manager, user) -> None:
    default = app.extensions["sign_in_manager"]
    assert default.can_sign_in(user)

    strict = SignInManager(
        user_manager,
        default.authentication,
        IdentityOptions(sign_in=SignInOptions(require_confirmed_account=True)),
    )
    assert strict.check_password_sign_in(user, PASSWORD).is_not_allowed
    user.email_confirmed = True
    assert strict.check_password_sign_in(user, PASSWORD).succeeded
    assert strict.check_password_sign_in(user, "wrong").failed


def test_user_collections_are_lists() -> None:
    user = ApplicationUser(user_name="frank")
    assert user.logins == [] and user.claims == [] and user.tokens == [] and user.roles == []
    for name in ("claims", "logins", "tokens", "roles"):
        assert ApplicationUser.__mapper__.relationships[name].uselist
    assert Role.__mapper__.relationships["users"].uselist


def test_create_with_login_saves_user_and_login_together(user_manager) -> None:
    user = ApplicationUser(user_name="grace", email="grace@example.com")
    assert user_manager.create_with_login(user, "GitHub", "101", "Grace").succeeded
    assert user_manager.find_by_login("GitHub", "101").id == user.id


def test_create_with_login_rolls_back_when_the_login_conflicts(user_manager, user, monkeypatch) -> None:
    assert user_manager.add_login(user, "GitHub", "202").succeeded
    user_id = user.id
    # Let the duplicate reach the database.
    db.session.expunge_all()
    monkeypatch.setattr(user_manager.store, "find_by_login", lambda provider, key: None)

    result = user_manager.create_with_login(ApplicationUser(user_name="heidi"), "GitHub", "202")
    assert not result.succeeded
    assert "ConcurrencyFailure" in result.messages()
    assert user_manager.find_by_name("heidi") is None
    assert UserLogin.query.filter_by(user_id=user_id).count() == 1


def test_token_providers_can_be_passed_to_the_manager(app) -> None:
    provider = TotpTokenProvider(EMAIL_PROVIDER)
    manager = UserManager(SqlAlchemyUserStore(app.extensions["sqlalchemy"]), IdentityOptions(),
                          {EMAIL_PROVIDER: provider})
    assert manager.token_providers == {EMAIL_PROVIDER: provider}
