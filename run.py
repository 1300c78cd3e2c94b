"""
Entry point for running MyApp with the Flask development server.

The application refuses to start without the ``DefaultConnection``
connection string; in that case the error is logged and the process
exits with status 1. In production a WSGI server like gunicorn should
serve ``wsgi:app`` instead.
"""

import logging
import sys

from myapp import create_app, db
from myapp.config import ConfigurationError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("myapp.run")


def main() -> int:
    try:
        app = create_app()
    except ConfigurationError as exc:
        logger.critical("Startup aborted: %s", exc.message)
        return 1

    # Only create the database tables automatically in local
    # development when running this module directly. Production
    # deployments should manage migrations with ``flask db upgrade``.
    with app.app_context():
        db.create_all()
    app.run(host="0.0.0.0", port=5000, debug=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
