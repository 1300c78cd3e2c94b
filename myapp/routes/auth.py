"""
Authentication routes for MyApp.

Provides endpoints for registering users, signing in and out with the
application cookie, completing external provider sign-ins through the
external cookie, and the token based password reset and email
confirmation flows. Newly registered users can sign in immediately;
no confirmation step is required.
"""

from __future__ import annotations

import logging
import re

from flask import Blueprint, current_app, g, jsonify, request
from marshmallow import ValidationError as SchemaValidationError

from ..errors import ConflictError, ForbiddenError, UnauthorizedError, ValidationError
from ..models import ApplicationUser
from ..schemas import (
    ConfirmEmailSchema,
    ExternalLoginSchema,
    ForgotPasswordSchema,
    LoginSchema,
    RegisterSchema,
    ResetPasswordSchema,
    UserSchema,
)
from ..services.authentication import EXTERNAL_SCHEME, authorize
from ..services.identity import IdentityResult, UserManager
from ..services.sign_in import ExternalLoginInfo, SignInManager
from ..services.tokens import RESET_PASSWORD_PURPOSE

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


def _user_manager() -> UserManager:
    return current_app.extensions["identity"]


def _sign_in_manager() -> SignInManager:
    return current_app.extensions["sign_in_manager"]


def _load(schema) -> dict:
    try:
        return schema.load(request.get_json(silent=True) or {})
    except SchemaValidationError as err:
        raise ValidationError("Invalid request.", fields=err.messages) from err


def _raise_for(result: IdentityResult) -> None:
    if result.succeeded:
        return
    messages = result.messages()
    if any(code.startswith("Duplicate") or code == "LoginAlreadyAssociated" for code in messages):
        raise ConflictError("; ".join(messages.values()))
    raise ValidationError("The request could not be completed.", fields=messages)


@auth_bp.route("/register", methods=["POST"])
def register():
    """Register a new user.

    Expects JSON with ``user_name``, ``password`` and optional ``email``.
    Returns the created user; 409 if the user name is taken.
    """
    data = _load(RegisterSchema())
    user = ApplicationUser(user_name=data["user_name"].strip(), email=data.get("email"))
    _raise_for(_user_manager().create(user, data["password"]))
    return UserSchema().dump(user), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """Sign in with a user name and password.

    On success the application cookie is set. Invalid credentials return
    401; a user who may not sign in yet returns 403.
    """
    data = _load(LoginSchema())
    user = _user_manager().find_by_name(data["user_name"])
    response = jsonify({"user": UserSchema().dump(user) if user else None})
    result = _sign_in_manager().password_sign_in(data["user_name"], data["password"], response)
    if result.is_not_allowed:
        raise ForbiddenError("This account is not allowed to sign in.")
    if not result.succeeded:
        raise UnauthorizedError("Invalid user name or password.")
    return response


@auth_bp.route("/logout", methods=["POST"])
def logout():
    response = jsonify({"status": "signed out"})
    _sign_in_manager().sign_out(response)
    return response


@auth_bp.route("/me", methods=["GET"])
@authorize()
def me():
    """Return the signed-in user."""
    user = _user_manager().find_by_id(g.principal.subject)
    return UserSchema().dump(user), 200


@auth_bp.route("/external-login", methods=["POST"])
def external_login_callback():
    """Accept the identity returned by an external provider.

    The identity is kept in the external cookie (the default sign-in
    scheme) until ``/external-login/complete`` is called.
    """
    data = _load(ExternalLoginSchema())
    info = ExternalLoginInfo(
        login_provider=data["provider"],
        provider_key=data["provider_key"],
        display_name=data.get("display_name"),
        email=data.get("email"),
    )
    response = jsonify({"provider": info.login_provider, "next": "/api/external-login/complete"})
    _sign_in_manager().sign_in_external(info, response)
    return response


def _send_token(user: ApplicationUser, purpose: str, token: str) -> None:
    sender = current_app.config.get("IDENTITY_TOKEN_SENDER")
    if sender is not None:
        sender(user, purpose, token)
    elif current_app.config.get("ENVIRONMENT") == "Development":
        logger.debug("%s token for user %s: %s", purpose, user.id, token)
    else:
        logger.warning("No token sender configured; %s token for user %s was not delivered", purpose, user.id)


def _external_user_name(info: ExternalLoginInfo) -> str:
    if info.email:
        return info.email
    return re.sub(r"[^A-Za-z0-9\-._@+]", "", f"{info.login_provider}_{info.provider_key}")


@auth_bp.route("/external-login/complete", methods=["POST"])
def external_login_complete():
    """Sign in the local user linked to the pending external login.

    A local user is created and linked on first use.
    """
    sign_in_manager = _sign_in_manager()
    user_manager = _user_manager()
    info = sign_in_manager.get_external_login_info()
    if info is None:
        raise UnauthorizedError("No external login in progress.", scheme=EXTERNAL_SCHEME)

    user = user_manager.find_by_login(info.login_provider, info.provider_key)
    status = 200
    if user is None:
        user = ApplicationUser(user_name=_external_user_name(info), email=info.email)
        _raise_for(user_manager.create_with_login(user, info.login_provider, info.provider_key, info.display_name))
        logger.info("Linked %s login to new user %s", info.login_provider, user.id)
        status = 201

    response = jsonify(UserSchema().dump(user))
    result = sign_in_manager.external_login_sign_in(info.login_provider, info.provider_key, response)
    if result.is_not_allowed:
        raise ForbiddenError("This account is not allowed to sign in.")
    return response, status


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    """Issue a password reset token to the account owner.

    The token is handed to the sender configured as
    ``IDENTITY_TOKEN_SENDER`` and never returned to the caller. The
    response is the same whether or not the email is known.
    """
    data = _load(ForgotPasswordSchema())
    user_manager = _user_manager()
    user = user_manager.find_by_email(data["email"])
    if user is not None:
        token = user_manager.generate_password_reset_token(user)
        _send_token(user, RESET_PASSWORD_PURPOSE, token)
    return {"status": "If the account exists, a reset token has been issued."}, 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = _load(ResetPasswordSchema())
    user_manager = _user_manager()
    user = user_manager.find_by_name(data["user_name"])
    if user is None:
        raise ValidationError("Invalid token.", fields={"token": "Invalid token."})
    _raise_for(user_manager.reset_password(user, data["token"], data["password"]))
    return {"status": "password reset"}, 200


@auth_bp.route("/confirm-email", methods=["POST"])
def confirm_email():
    data = _load(ConfirmEmailSchema())
    user_manager = _user_manager()
    user = user_manager.find_by_id(data["user_id"])
    if user is None:
        raise ValidationError("Invalid token.", fields={"token": "Invalid token."})
    _raise_for(user_manager.confirm_email(user, data["token"]))
    return UserSchema().dump(user), 200
