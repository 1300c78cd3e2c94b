"""Tests for the authentication endpoints and cookie schemes."""
from __future__ import annotations

from myapp.models import ApplicationUser, UserLogin
from myapp.services.authentication import APPLICATION_COOKIE_NAME, EXTERNAL_COOKIE_NAME
from myapp.services.tokens import RESET_PASSWORD_PURPOSE

from conftest import PASSWORD


def test_register_then_sign_in_immediately(client, register) -> None:
    user = register()
    assert user["user_name"] == "alice"
    assert user["email_confirmed"] is False
    assert "password_hash" not in user
    assert "security_stamp" not in user

    response = client.post("/api/login", json={"user_name": "alice", "password": PASSWORD})
    assert response.status_code == 200
    assert response.get_json()["user"]["id"] == user["id"]
    assert client.get_cookie(APPLICATION_COOKIE_NAME) is not None

    me = client.get("/api/me")
    assert me.status_code == 200
    assert me.get_json()["id"] == user["id"]


def test_me_requires_application_cookie(client) -> None:
    response = client.get("/api/me")
    assert response.status_code == 401
    assert response.get_json()["error"]["code"] == "UNAUTHORIZED"


def test_login_with_wrong_password(client, register) -> None:
    register()
    response = client.post("/api/login", json={"user_name": "alice", "password": "Wrong0ne!"})
    assert response.status_code == 401
    assert client.get_cookie(APPLICATION_COOKIE_NAME) is None


def test_login_with_unknown_user(client) -> None:
    response = client.post("/api/login", json={"user_name": "nobody", "password": PASSWORD})
    assert response.status_code == 401


def test_duplicate_user_name_conflicts(client, register) -> None:
    register()
    response = client.post("/api/register", json={"user_name": "ALICE", "password": PASSWORD})
    assert response.status_code == 409


def test_weak_password_is_rejected(client) -> None:
    response = client.post("/api/register", json={"user_name": "bob", "password": "abc"})
    assert response.status_code == 400
    fields = response.get_json()["error"]["fields"]
    assert "PasswordTooShort" in fields
    assert "PasswordRequiresDigit" in fields
    assert "PasswordRequiresUpper" in fields


def test_missing_fields_are_reported(client) -> None:
    response = client.post("/api/register", json={"user_name": "bob"})
    assert response.status_code == 400
    assert "password" in response.get_json()["error"]["fields"]


def test_logout_clears_the_session(client, signed_in) -> None:
    assert client.get("/api/me").status_code == 200
    response = client.post("/api/logout")
    assert response.status_code == 200
    assert client.get_cookie(APPLICATION_COOKIE_NAME) is None
    assert client.get("/api/me").status_code == 401


def test_tampered_cookie_is_rejected(client, signed_in) -> None:
    token = client.get_cookie(APPLICATION_COOKIE_NAME).value
    client.set_cookie(APPLICATION_COOKIE_NAME, token[:-4] + "AAAA")
    assert client.get("/api/me").status_code == 401


def test_external_login_flow(client) -> None:
    callback = client.post(
        "/api/external-login",
        json={"provider": "GitHub", "provider_key": "12345", "display_name": "Carol", "email": "carol@example.com"},
    )
    assert callback.status_code == 200
    assert client.get_cookie(EXTERNAL_COOKIE_NAME) is not None
    # The external cookie alone does not authenticate against the default scheme.
    assert client.get("/api/me").status_code == 401

    complete = client.post("/api/external-login/complete")
    assert complete.status_code == 201
    user = complete.get_json()
    assert user["user_name"] == "carol@example.com"
    assert client.get_cookie(EXTERNAL_COOKIE_NAME) is None
    assert client.get("/api/me").get_json()["id"] == user["id"]

    client.post("/api/logout")
    client.post("/api/external-login", json={"provider": "GitHub", "provider_key": "12345"})
    again = client.post("/api/external-login/complete")
    assert again.status_code == 200
    assert again.get_json()["id"] == user["id"]


def test_external_cookie_is_not_an_application_cookie(client) -> None:
    client.post("/api/external-login", json={"provider": "GitHub", "provider_key": "999"})
    external = client.get_cookie(EXTERNAL_COOKIE_NAME).value
    client.set_cookie(APPLICATION_COOKIE_NAME, external)
    assert client.get("/api/me").status_code == 401


def test_complete_without_external_login(client) -> None:
    response = client.post("/api/external-login/complete")
    assert response.status_code == 401


def test_password_reset_rotates_the_security_stamp(app, client, signed_in) -> None:
    sent = []
    app.config["IDENTITY_TOKEN_SENDER"] = lambda user, purpose, token: sent.append((user.id, purpose, token))
    issued = client.post("/api/forgot-password", json={"email": "alice@example.com"})
    assert issued.status_code == 200
    assert "token" not in issued.get_json()
    [(user_id, purpose, token)] = sent
    assert (user_id, purpose) == (signed_in["id"], RESET_PASSWORD_PURPOSE)

    # A reset token is not accepted as an authentication cookie.
    stolen = client.application.test_client()
    stolen.set_cookie(APPLICATION_COOKIE_NAME, token)
    assert stolen.get("/api/me").status_code == 401

    reset = client.post(
        "/api/reset-password", json={"user_name": "alice", "token": token, "password": "N3w-password"}
    )
    assert reset.status_code == 200

    # The cookie issued before the reset carries the old stamp.
    assert client.get("/api/me").status_code == 401
    old = client.post("/api/login", json={"user_name": "alice", "password": PASSWORD})
    assert old.status_code == 401
    new = client.post("/api/login", json={"user_name": "alice", "password": "N3w-password"})
    assert new.status_code == 200
    assert client.get("/api/me").status_code == 200

    replay = client.post(
        "/api/reset-password", json={"user_name": "alice", "token": token, "password": "An0ther-one"}
    )
    assert replay.status_code == 400


def test_forgot_password_for_unknown_email(client) -> None:
    response = client.post("/api/forgot-password", json={"email": "ghost@example.com"})
    assert response.status_code == 200
    assert "token" not in response.get_json()


def test_forgot_password_never_returns_the_token(client, register) -> None:
    register()
    known = client.application.test_client().post("/api/forgot-password", json={"email": "alice@example.com"})
    unknown = client.application.test_client().post("/api/forgot-password", json={"email": "ghost@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert "token" not in known.get_json()
    assert known.get_json() == unknown.get_json()


def test_reset_with_invalid_token(client, register) -> None:
    register()
    response = client.post(
        "/api/reset-password", json={"user_name": "alice", "token": "not-a-token", "password": "N3w-password"}
    )
    assert response.status_code == 400
    assert "InvalidToken" in response.get_json()["error"]["fields"]


def test_confirm_email(app, client, register) -> None:
    user = register()
    user_manager = app.extensions["identity"]
    token = user_manager.generate_email_confirmation_token(user_manager.find_by_id(user["id"]))

    response = client.post("/api/confirm-email", json={"user_id": user["id"], "token": token})
    assert response.status_code == 200
    assert response.get_json()["email_confirmed"] is True


def test_external_login_with_taken_user_name_leaves_nothing_behind(app, client, register) -> None:
    register(user_name="erin@example.com", email=None)
    client.post("/api/external-login", json={"provider": "GitHub", "provider_key": "77", "email": "erin@example.com"})

    response = client.post("/api/external-login/complete")
    assert response.status_code == 409
    assert UserLogin.query.count() == 0
    assert ApplicationUser.query.count() == 1

    client.post("/api/external-login", json={"provider": "GitHub", "provider_key": "77"})
    assert client.post("/api/external-login/complete").status_code == 201
    assert UserLogin.query.count() == 1
