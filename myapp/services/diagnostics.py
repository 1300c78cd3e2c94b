"""Database error diagnostics.

Outside development a database failure produces a plain 500 response.
In development the response also names the exception, the failing SQL
statement and the usual remedy (applying pending migrations).
"""
from __future__ import annotations

import logging

from flask import current_app, jsonify
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError, StatementError

logger = logging.getLogger(__name__)

DEVELOPMENT = "Development"
MIGRATION_HINT = "Pending migrations may need to be applied. Run 'flask db upgrade'."


class DatabaseDeveloperPageExceptionFilter:
    """Turn ``SQLAlchemyError`` into a JSON error, with detail only in development."""

    def __init__(self, environment: str) -> None:
        self.environment = environment

    def is_development(self, app) -> bool:
        return app.debug or self.environment.lower() == DEVELOPMENT.lower()

    def register(self, app) -> None:
        app.register_error_handler(SQLAlchemyError, self.handle)

    def handle(self, err: SQLAlchemyError):
        logger.error("Database error: %s", err, exc_info=err)
        body = {"code": "DATABASE_ERROR", "message": "A database error occurred."}
        if self.is_development(current_app):
            body["exception"] = type(err).__name__
            body["detail"] = str(getattr(err, "orig", None) or err)
            if isinstance(err, StatementError) and err.statement:
                body["statement"] = err.statement
            if isinstance(err, (OperationalError, ProgrammingError)):
                body["hint"] = MIGRATION_HINT
        return jsonify({"error": body}), 500
