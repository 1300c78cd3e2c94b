"""
Database models for MyApp.

The persistence context holds two groups of tables. The identity tables
(users, roles, claims, external logins and tokens) back the user store
used by the identity services in ``myapp.services``. The ``people``
table is the application's own domain entity. Both share the single
``db`` object, so one scoped session covers them within a request.

There is no relationship between ``Person`` and ``ApplicationUser``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from werkzeug.security import generate_password_hash, check_password_hash

from .db import db


def new_id() -> str:
    return str(uuid.uuid4())


class ApplicationUser(db.Model):
    __allow_unmapped__ = True
    """The authentication principal.

    ``normalized_user_name`` and ``normalized_email`` hold the upper-cased
    values used for lookups. ``security_stamp`` changes whenever the
    credentials change; cookies and tokens issued under an older stamp
    stop being accepted.
    """
    __tablename__ = "users"

    id: str = db.Column(db.String(36), primary_key=True, default=new_id)
    user_name: str = db.Column(db.String(256), nullable=False)
    normalized_user_name: str = db.Column(db.String(256), unique=True, nullable=False, index=True)
    email: Optional[str] = db.Column(db.String(256))
    normalized_email: Optional[str] = db.Column(db.String(256), index=True)
    email_confirmed: bool = db.Column(db.Boolean, nullable=False, default=False)
    password_hash: Optional[str] = db.Column(db.String(256))
    security_stamp: str = db.Column(db.String(36), nullable=False, default=new_id)
    concurrency_stamp: str = db.Column(db.String(36), nullable=False, default=new_id)
    phone_number: Optional[str] = db.Column(db.String(32))
    phone_number_confirmed: bool = db.Column(db.Boolean, nullable=False, default=False)
    two_factor_enabled: bool = db.Column(db.Boolean, nullable=False, default=False)
    lockout_end: Optional[datetime] = db.Column(db.DateTime)
    lockout_enabled: bool = db.Column(db.Boolean, nullable=False, default=True)
    access_failed_count: int = db.Column(db.Integer, nullable=False, default=0)

    # Collections are left unannotated so the mapper keeps them as lists.
    claims = db.relationship("UserClaim", back_populates="user", cascade="all, delete-orphan")
    logins = db.relationship("UserLogin", back_populates="user", cascade="all, delete-orphan")
    tokens = db.relationship("UserToken", back_populates="user", cascade="all, delete-orphan")
    roles = db.relationship("Role", secondary="user_roles", back_populates="users")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:
        return f"<ApplicationUser {self.user_name}>"


class Role(db.Model):
    __allow_unmapped__ = True
    """A named group of users."""
    __tablename__ = "roles"

    id: str = db.Column(db.String(36), primary_key=True, default=new_id)
    name: str = db.Column(db.String(256), nullable=False)
    normalized_name: str = db.Column(db.String(256), unique=True, nullable=False)
    concurrency_stamp: str = db.Column(db.String(36), default=new_id)

    users = db.relationship("ApplicationUser", secondary="user_roles", back_populates="roles")
    claims = db.relationship("RoleClaim", back_populates="role", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Role {self.name}>"


user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    db.Column("role_id", db.String(36), db.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class UserClaim(db.Model):
    __allow_unmapped__ = True
    __tablename__ = "user_claims"

    id: int = db.Column(db.Integer, primary_key=True)
    user_id: str = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    claim_type: str = db.Column(db.String(256), nullable=False)
    claim_value: Optional[str] = db.Column(db.String(1024))

    user: ApplicationUser = db.relationship("ApplicationUser", back_populates="claims")


class RoleClaim(db.Model):
    __allow_unmapped__ = True
    __tablename__ = "role_claims"

    id: int = db.Column(db.Integer, primary_key=True)
    role_id: str = db.Column(db.String(36), db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    claim_type: str = db.Column(db.String(256), nullable=False)
    claim_value: Optional[str] = db.Column(db.String(1024))

    role: Role = db.relationship("Role", back_populates="claims")


class UserLogin(db.Model):
    __allow_unmapped__ = True
    """An external provider account linked to a local user."""
    __tablename__ = "user_logins"

    login_provider: str = db.Column(db.String(128), primary_key=True)
    provider_key: str = db.Column(db.String(128), primary_key=True)
    provider_display_name: Optional[str] = db.Column(db.String(256))
    user_id: str = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    user: ApplicationUser = db.relationship("ApplicationUser", back_populates="logins")

    def __repr__(self) -> str:
        return f"<UserLogin {self.login_provider}:{self.provider_key}>"


class UserToken(db.Model):
    __allow_unmapped__ = True
    """A named value stored for a user by a login provider (e.g. authenticator keys)."""
    __tablename__ = "user_tokens"

    user_id: str = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    login_provider: str = db.Column(db.String(128), primary_key=True)
    name: str = db.Column(db.String(128), primary_key=True)
    value: Optional[str] = db.Column(db.Text)

    user: ApplicationUser = db.relationship("ApplicationUser", back_populates="tokens")


class Person(db.Model):
    __allow_unmapped__ = True
    """A stored person record. Only the identifier is defined."""
    __tablename__ = "people"

    id: int = db.Column(db.Integer, primary_key=True)

    def __repr__(self) -> str:
        return f"<Person {self.id}>"
