"""Seed script for initial data.

Running this script populates the database with a demo user and a few
people records. It can be executed with ``python -m seed.seed`` from
the repository root once ``DefaultConnection`` is configured.
"""
from __future__ import annotations

import logging

from myapp import create_app, db
from myapp.models import ApplicationUser, Person

logger = logging.getLogger(__name__)


def run_seeds(app=None, people: int = 3) -> str:
    """Insert a demo user and ``people`` person records.

    Returns the demo user's id.
    """
    app = app or create_app()
    with app.app_context():
        db.create_all()
        user_manager = app.extensions["identity"]
        user = user_manager.find_by_name("demo")
        if user is None:
            user = ApplicationUser(user_name="demo", email="demo@example.com")
            result = user_manager.create(user, "Passw0rd!")
            if not result.succeeded:
                raise RuntimeError(f"Could not create demo user: {result.messages()}")
        db.session.add_all([Person() for _ in range(people)])
        db.session.commit()
        logger.info("Seed data inserted successfully.")
        return user.id


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seeds()
