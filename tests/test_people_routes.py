"""Tests for the people collection endpoints."""
from __future__ import annotations

from myapp import db
from myapp.models import Person


def test_people_require_sign_in(client) -> None:
    assert client.get("/api/people").status_code == 401
    assert client.post("/api/people").status_code == 401


def test_create_and_list_people(client, signed_in) -> None:
    created = [client.post("/api/people") for _ in range(3)]
    assert all(response.status_code == 201 for response in created)
    ids = [response.get_json()["id"] for response in created]

    listing = client.get("/api/people")
    assert listing.status_code == 200
    assert [person["id"] for person in listing.get_json()] == ids

    page = client.get("/api/people?limit=1&offset=1")
    assert [person["id"] for person in page.get_json()] == ids[1:2]


def test_get_person(client, signed_in) -> None:
    person_id = client.post("/api/people").get_json()["id"]
    assert client.get(f"/api/people/{person_id}").get_json() == {"id": person_id}
    assert client.get("/api/people/9999").status_code == 404


def test_invalid_pagination(client, signed_in) -> None:
    assert client.get("/api/people?limit=abc").status_code == 400
    assert client.get("/api/people?offset=-1").status_code == 400


def test_people_share_the_identity_session(app) -> None:
    user_manager = app.extensions["identity"]
    db.session.add(Person())
    db.session.commit()
    assert Person.query.count() == 1
    assert user_manager.store.db.session is db.session


def test_seed_inserts_demo_user_and_people(app) -> None:
    from seed.seed import run_seeds

    user_id = run_seeds(app, people=2)
    assert Person.query.count() == 2
    assert app.extensions["identity"].find_by_name("demo").id == user_id
