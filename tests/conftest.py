"""Shared fixtures for the MyApp test-suite.

Each test gets an application built by ``create_app`` on top of an
in-memory SQLite database, with the process environment scrubbed of
any connection string or settings directory that would leak in from the
developer's shell.
"""
from __future__ import annotations

import os

import pytest

from myapp import create_app, db

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256-signing"
PASSWORD = "Passw0rd!"


def make_config(**overrides) -> dict:
    config = {
        "TESTING": True,
        "JWT_COOKIE_SECURE": False,
        "ConnectionStrings": {"DefaultConnection": "sqlite://"},
    }
    config.update(overrides)
    return config


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.upper().startswith("MYAPP_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("MYAPP_SETTINGS_DIR", str(tmp_path))
    monkeypatch.setenv("JWT_SECRET_KEY", TEST_SECRET)
    return tmp_path


@pytest.fixture
def app():
    app = create_app(make_config())
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """Register a user through the API and return the response body."""
    def _register(user_name: str = "alice", password: str = PASSWORD, email: str | None = "alice@example.com"):
        payload = {"user_name": user_name, "password": password}
        if email:
            payload["email"] = email
        response = client.post("/api/register", json=payload)
        assert response.status_code == 201, response.get_json()
        return response.get_json()
    return _register


@pytest.fixture
def signed_in(client, register):
    """Register and sign in ``alice``; returns the user body."""
    user = register()
    response = client.post("/api/login", json={"user_name": "alice", "password": PASSWORD})
    assert response.status_code == 200
    return user
