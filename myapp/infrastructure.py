"""Infrastructure service registration.

``add_infrastructure_services`` wires authentication, persistence and
identity management onto a Flask application. The Flask app acts as the
service registry: every capability is stored in ``app.extensions`` and
the same handles are returned as an ``InfrastructureServices`` object
for callers that prefer explicit injection.

The ``DefaultConnection`` connection string is resolved before the app
is touched. When it is missing a ``ConfigurationMissingError`` is raised
and nothing is registered.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from . import jwt
from .config import Settings, resolve_connection_string
from .db import db
from .services.authentication import (
    APPLICATION_COOKIE_LIFETIME,
    APPLICATION_COOKIE_NAME,
    APPLICATION_SCHEME,
    EXTERNAL_COOKIE_LIFETIME,
    EXTERNAL_COOKIE_NAME,
    EXTERNAL_SCHEME,
    AuthenticationService,
    CookieAuthenticationHandler,
)
from .services.diagnostics import DatabaseDeveloperPageExceptionFilter
from .services.identity import IdentityOptions, SignInOptions, SqlAlchemyUserStore, UserManager
from .services.sign_in import SignInManager
from .services.tokens import default_token_providers
from .util.connection_strings import redact, to_database_uri

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistenceContext:
    """The database the application's models are bound to."""

    connection_string: str
    database_uri: str
    db: SQLAlchemy


@dataclass(frozen=True)
class InfrastructureServices:
    authentication: AuthenticationService
    persistence: PersistenceContext
    database_exception_filter: DatabaseDeveloperPageExceptionFilter
    identity_options: IdentityOptions
    user_manager: UserManager
    sign_in_manager: SignInManager
    token_providers: dict


def add_authentication(app: Flask) -> AuthenticationService:
    authentication = AuthenticationService(
        default_scheme=APPLICATION_SCHEME,
        default_sign_in_scheme=EXTERNAL_SCHEME,
        handlers={
            APPLICATION_SCHEME: CookieAuthenticationHandler(
                APPLICATION_SCHEME, APPLICATION_COOKIE_NAME, APPLICATION_COOKIE_LIFETIME
            ),
            EXTERNAL_SCHEME: CookieAuthenticationHandler(
                EXTERNAL_SCHEME, EXTERNAL_COOKIE_NAME, EXTERNAL_COOKIE_LIFETIME
            ),
        },
    )
    app.config.setdefault("JWT_TOKEN_LOCATION", ["cookies"])
    jwt.init_app(app)
    app.extensions["authentication"] = authentication
    return authentication


def add_persistence(app: Flask, connection_string: str) -> PersistenceContext:
    """Bind ``db`` to the database named by ``connection_string``.

    Nothing is parsed or connected here; see ``myapp.db``. Binding the
    same database again keeps the existing context.
    """
    database_uri = to_database_uri(connection_string)
    current = app.extensions.get("persistence")
    if current is not None and current.database_uri == database_uri and "sqlalchemy" in app.extensions:
        return current
    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    db.init_app(app)

    persistence = PersistenceContext(connection_string=connection_string, database_uri=database_uri, db=db)
    app.extensions["persistence"] = persistence
    return persistence


def add_infrastructure_services(app: Flask, configuration: Settings) -> InfrastructureServices:
    """Register the infrastructure services on ``app``.

    Parameters
    ----------
    app: Flask
        The application acting as the service registry.
    configuration: Settings
        Source of ``ConnectionStrings:DefaultConnection`` and ``Environment``.

    Returns
    -------
    InfrastructureServices
        Handles to everything that was registered.

    Raises
    ------
    ConfigurationMissingError
        If the ``DefaultConnection`` connection string is not configured.
    """
    connection_string = resolve_connection_string(configuration)

    authentication = add_authentication(app)
    logger.debug("Registered authentication schemes %s", sorted(authentication.handlers))

    persistence = add_persistence(app, connection_string)
    logger.debug("Registered persistence context")

    exception_filter = DatabaseDeveloperPageExceptionFilter(configuration.Environment)
    exception_filter.register(app)
    app.extensions["database_exception_filter"] = exception_filter

    options = IdentityOptions(sign_in=SignInOptions(require_confirmed_account=False))
    user_manager = UserManager(SqlAlchemyUserStore(persistence.db), options)
    app.extensions["identity"] = user_manager

    sign_in_manager = SignInManager(user_manager, authentication, options)
    authentication.handler(APPLICATION_SCHEME).validate_principal = (
        lambda principal: sign_in_manager.validate_principal(principal) is not None
    )
    app.extensions["sign_in_manager"] = sign_in_manager

    token_providers = default_token_providers()
    for name, provider in token_providers.items():
        user_manager.register_token_provider(name, provider)
    app.extensions["token_providers"] = token_providers

    services = InfrastructureServices(
        authentication=authentication,
        persistence=persistence,
        database_exception_filter=exception_filter,
        identity_options=options,
        user_manager=user_manager,
        sign_in_manager=sign_in_manager,
        token_providers=token_providers,
    )
    app.extensions["infrastructure"] = services
    logger.info(
        "Infrastructure services registered (database %s, environment %s)",
        redact(persistence.database_uri),
        configuration.Environment,
    )
    return services
