"""Database setup utilities.

This module exposes the ``db`` object that backs the persistence
context. Models for both the identity tables and the ``people`` table
are declared against it. The object is bound to an application by
``myapp.infrastructure.add_infrastructure_services`` once the
``DefaultConnection`` connection string has been resolved; nothing in
this module knows which database is used.

Binding does not touch the database. The URL is parsed and the driver
imported when an engine is first used, so a bad connection string or a
missing driver is reported by the first query rather than at startup.
"""
from __future__ import annotations

import threading
import typing as t

import sqlalchemy as sa
from flask import Flask
from flask_sqlalchemy import SQLAlchemy as _SQLAlchemy


class DeferredEngine:
    """Stands in for an ``Engine`` and builds it on first use."""

    def __init__(self, factory: t.Callable[[], sa.engine.Engine]) -> None:
        self._factory = factory
        self._engine: sa.engine.Engine | None = None
        self._lock = threading.Lock()

    @property
    def built(self) -> bool:
        return self._engine is not None

    def get(self) -> sa.engine.Engine:
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = self._factory()
        return self._engine

    def dispose(self, close: bool = True) -> None:
        if self._engine is not None:
            self._engine.dispose(close)

    def __getattr__(self, name: str) -> t.Any:
        return getattr(self.get(), name)

    # Sessions key their connections by engine.
    def __hash__(self) -> int:
        return hash(self.get())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DeferredEngine):
            other = other.get()
        return self.get() == other

    def __repr__(self) -> str:
        return f"<DeferredEngine built={self.built}>"


class SQLAlchemy(_SQLAlchemy):
    """Flask-SQLAlchemy extension with engines built on first use.

    Calling ``init_app`` again for the same application replaces the
    earlier binding instead of raising.
    """

    def init_app(self, app: Flask) -> None:
        if app.extensions.get("sqlalchemy") is self:
            del app.extensions["sqlalchemy"]
            app.teardown_appcontext_funcs.remove(self._teardown_session)
            if self._add_models_to_shell:
                from flask_sqlalchemy.cli import add_models_to_shell

                app.shell_context_processors.remove(add_models_to_shell)
        super().init_app(app)

    def _apply_driver_defaults(self, options: dict[str, t.Any], app: Flask) -> None:
        # applied in _make_engine's factory, once the URL is needed
        pass

    def _make_engine(
        self, bind_key: str | None, options: dict[str, t.Any], app: Flask
    ) -> sa.engine.Engine:
        apply_driver_defaults = super()._apply_driver_defaults
        make_engine = super()._make_engine

        def build() -> sa.engine.Engine:
            apply_driver_defaults(options, app)
            return make_engine(bind_key, options, app)

        return t.cast(sa.engine.Engine, DeferredEngine(build))


db = SQLAlchemy()
