"""
Application factory for MyApp.

``create_app`` builds the Flask application. The infrastructure
services (cookie authentication, the SQLAlchemy persistence context and
the identity services) are registered by
``myapp.infrastructure.add_infrastructure_services`` from the loaded
configuration; blueprints, error handlers and migrations are added here.

The database is chosen by the ``ConnectionStrings:DefaultConnection``
setting, supplied through ``appsettings.json``,
``appsettings.<Environment>.json`` or the
``MYAPP_CONNECTIONSTRINGS__DEFAULTCONNECTION`` environment variable. There is
no default: without it ``create_app`` raises
``ConfigurationMissingError``. Set ``JWT_SECRET_KEY`` in production; it
signs the authentication cookies and user tokens.
"""

from __future__ import annotations

import logging
import os

from flask import Flask
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager

# instantiate extensions without binding them to an app yet.  They will
# be bound in create_app() and add_infrastructure_services().
from .db import db  # use shared db object from db.py
migrate = Migrate()
jwt = JWTManager()


def create_app(test_config: dict | None = None) -> Flask:
    """Create and configure a Flask application.

    Parameters
    ----------
    test_config: dict | None, optional
        Optional configuration overrides used when running tests. The
        mapping is applied to ``app.config`` and is also the
        highest-precedence configuration source, so it may carry
        ``ConnectionStrings``.

    Returns
    -------
    Flask
        A configured Flask application instance.

    Raises
    ------
    ConfigurationMissingError
        If no ``DefaultConnection`` connection string is configured.
    """
    from .config import load_configuration, log_level
    from .infrastructure import add_infrastructure_services

    configuration = load_configuration(overrides=test_config)
    logging.getLogger(__name__).setLevel(log_level(configuration, "myapp"))

    app = Flask(__name__)
    app.config.update(
        JWT_SECRET_KEY=os.environ.get("JWT_SECRET_KEY", "please-change-this-secret-key"),
        ENVIRONMENT=configuration.Environment,
        JWT_COOKIE_SECURE=configuration.Environment != "Development",
    )
    if test_config:
        app.config.update(test_config)

    add_infrastructure_services(app, configuration)
    migrate.init_app(app, db)

    # Register custom error handlers
    from .errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints. Importing here avoids circular imports.
    from .routes.auth import auth_bp
    from .routes.people import people_bp

    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(people_bp, url_prefix="/api")

    @app.route("/api/health")
    def health_check() -> dict[str, str]:
        """Return a simple health check response."""
        return {"status": "ok"}

    return app
