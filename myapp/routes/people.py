"""
Routes for the ``Person`` collection.

People are stored records with no attributes beyond their identifier.
The collection can be listed, read by id and added to. All endpoints
require a signed-in user (application cookie).
"""

from __future__ import annotations

from flask import Blueprint, request

from ..db import db
from ..errors import NotFoundError, ValidationError
from ..models import Person
from ..schemas import PersonSchema
from ..services.authentication import authorize


people_bp = Blueprint("people", __name__)


@people_bp.route("/people", methods=["GET"])
@authorize()
def list_people():
    """Return people ordered by id, with ``limit``/``offset`` pagination."""
    try:
        limit = int(request.args.get("limit", 25))
        offset = int(request.args.get("offset", 0))
    except ValueError:
        raise ValidationError("Invalid pagination parameters.") from None
    if limit < 0 or offset < 0:
        raise ValidationError("Invalid pagination parameters.")
    people = Person.query.order_by(Person.id.asc()).limit(limit).offset(offset).all()
    return PersonSchema(many=True).dump(people), 200


@people_bp.route("/people/<int:person_id>", methods=["GET"])
@authorize()
def get_person(person_id: int):
    person = db.session.get(Person, person_id)
    if person is None:
        raise NotFoundError("Person not found.")
    return PersonSchema().dump(person), 200


@people_bp.route("/people", methods=["POST"])
@authorize()
def create_person():
    person = Person()
    db.session.add(person)
    db.session.commit()
    return PersonSchema().dump(person), 201
