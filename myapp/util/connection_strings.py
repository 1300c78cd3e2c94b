"""Connection string helpers.

The ``DefaultConnection`` setting may hold either a SQLAlchemy database
URL (``postgresql://...``, ``sqlite:///app.db``) or a SQL Server style
``Key=Value;`` connection string such as
``Server=db,1433;Database=myapp;User Id=sa;Password=secret;``. The
latter is translated to a ``mssql+pymssql`` URL. URLs are passed on
untouched; SQLAlchemy parses them when the engine is first used.
"""
from __future__ import annotations

import logging
import re

from sqlalchemy.engine import URL, make_url

logger = logging.getLogger(__name__)

SQL_SERVER_DRIVER = "mssql+pymssql"

_URL_PASSWORD = re.compile(r"(://[^:/@]*:)[^@]*@")

_KEY_ALIASES = {
    "server": "host",
    "data source": "host",
    "address": "host",
    "addr": "host",
    "network address": "host",
    "database": "database",
    "initial catalog": "database",
    "user id": "username",
    "uid": "username",
    "user": "username",
    "password": "password",
    "pwd": "password",
}


def is_url(connection_string: str) -> bool:
    return "://" in connection_string or connection_string.startswith("sqlite:")


def parse_key_value_pairs(connection_string: str) -> dict[str, str]:
    """Split a ``Key=Value;`` string into a dict with lower-cased keys.

    Values may be wrapped in single or double quotes to protect ``;``.
    """
    pairs: dict[str, str] = {}
    key, value, quote = [], [], None
    in_value = False
    for char in connection_string + ";":
        if quote:
            if char == quote:
                quote = None
            else:
                value.append(char)
        elif in_value and char in "'\"" and not "".join(value).strip():
            quote = char
            value = []
        elif char == ";":
            name = "".join(key).strip().lower()
            if name:
                pairs[name] = "".join(value).strip()
            key, value, in_value = [], [], False
        elif char == "=" and not in_value:
            in_value = True
        elif in_value:
            value.append(char)
        else:
            key.append(char)
    return pairs


def to_sqlalchemy_url(connection_string: str) -> URL:
    """Return the SQLAlchemy URL described by ``connection_string``."""
    if is_url(connection_string):
        return make_url(connection_string)

    parts: dict[str, str] = {}
    for name, value in parse_key_value_pairs(connection_string).items():
        target = _KEY_ALIASES.get(name)
        if target is None:
            logger.debug("Ignoring connection string keyword %r", name)
            continue
        parts[target] = value

    host = parts.get("host") or None
    port = None
    if host:
        host = host.removeprefix("tcp:")
        if "," in host:
            host, _, port_text = host.partition(",")
            port = int(port_text) if port_text.strip().isdigit() else None
    return URL.create(
        SQL_SERVER_DRIVER,
        username=parts.get("username") or None,
        password=parts.get("password") or None,
        host=host,
        port=port,
        database=parts.get("database") or None,
    )


def to_database_uri(connection_string: str) -> str:
    """Return the ``SQLALCHEMY_DATABASE_URI`` for ``connection_string``.

    URLs are returned as given, even when malformed.
    """
    if is_url(connection_string):
        return connection_string
    return to_sqlalchemy_url(connection_string).render_as_string(hide_password=False)


def redact(database_uri: str) -> str:
    """Mask the password in ``database_uri`` for logging."""
    return _URL_PASSWORD.sub(r"\1***@", database_uri)
