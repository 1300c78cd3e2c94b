"""Centralised error handling and custom exceptions.

This module defines the HTTP-facing exception classes and the Flask
error handlers that serialise them into JSON responses. Services raise
these exceptions to signal specific conditions without knowing about
response codes. Configuration errors are not handled here: they are
raised before the application exists and are fatal.
"""
from __future__ import annotations

from flask import jsonify


class ApiError(Exception):
    """Base class for errors that map onto an HTTP response."""

    code = "ERROR"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict:
        return {"code": self.code, "message": self.message}

    def to_response(self, status_code: int | None = None):
        return jsonify({"error": self.payload()}), status_code or self.status_code


class ValidationError(ApiError):
    """Raised when input validation fails."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, fields: dict | None = None) -> None:
        super().__init__(message)
        self.fields = fields or {}

    def payload(self) -> dict:
        return {**super().payload(), "fields": self.fields}


class UnauthorizedError(ApiError):
    """Raised when a request carries no valid authentication cookie."""

    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Authentication required.", scheme: str | None = None) -> None:
        super().__init__(message)
        self.scheme = scheme

    def to_response(self, status_code: int | None = None):
        response, status = super().to_response(status_code)
        if self.scheme:
            response.headers["WWW-Authenticate"] = f'Cookie realm="{self.scheme}"'
        return response, status


class ForbiddenError(ApiError):
    """Raised when an authenticated user is not allowed to proceed."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(ApiError):
    """Raised when a requested resource cannot be found."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(ApiError):
    """Raised when a uniqueness or resource conflict occurs."""

    code = "CONFLICT"
    status_code = 409


def register_error_handlers(app) -> None:
    """Register custom error handlers on the given Flask app."""
    @app.errorhandler(ApiError)
    def handle_api_error(err: ApiError):
        return err.to_response()
