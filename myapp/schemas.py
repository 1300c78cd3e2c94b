"""
Serialization schemas using Marshmallow.

Model schemas convert SQLAlchemy models to JSON-friendly
representations; credential material (password hash, security and
concurrency stamps) is never serialised. The plain schemas validate the
JSON bodies accepted by the authentication endpoints.
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate
from marshmallow_sqlalchemy import SQLAlchemyAutoSchema

from .models import ApplicationUser, Person


class UserSchema(SQLAlchemyAutoSchema):
    """Schema for serialising ``ApplicationUser`` objects."""

    class Meta:
        model = ApplicationUser
        load_instance = True
        exclude = (
            "password_hash",
            "security_stamp",
            "concurrency_stamp",
            "normalized_user_name",
            "normalized_email",
            "access_failed_count",
            "lockout_end",
            "lockout_enabled",
        )


class PersonSchema(SQLAlchemyAutoSchema):
    """Schema for serialising ``Person`` objects."""

    class Meta:
        model = Person
        load_instance = True


class RegisterSchema(Schema):
    user_name = fields.String(required=True, validate=validate.Length(min=1, max=256))
    email = fields.Email(load_default=None)
    password = fields.String(required=True, load_only=True)


class LoginSchema(Schema):
    user_name = fields.String(required=True)
    password = fields.String(required=True, load_only=True)


class ExternalLoginSchema(Schema):
    provider = fields.String(required=True, validate=validate.Length(min=1, max=128))
    provider_key = fields.String(required=True, validate=validate.Length(min=1, max=128))
    display_name = fields.String(load_default=None)
    email = fields.Email(load_default=None)


class ForgotPasswordSchema(Schema):
    email = fields.Email(required=True)


class ResetPasswordSchema(Schema):
    user_name = fields.String(required=True)
    token = fields.String(required=True)
    password = fields.String(required=True, load_only=True)


class ConfirmEmailSchema(Schema):
    user_id = fields.String(required=True)
    token = fields.String(required=True)
