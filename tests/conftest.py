"""Shared fixtures: a throwaway SQLite database per test and a TestClient with an overridable actor."""

from __future__ import annotations

from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.engine import Engine

from netrika import db, schema, workflow
from netrika.api import create_app, current_actor
from netrika.identity import ROLE_ADMIN, ROLE_SUPER_ADMIN, ROLE_USER, Actor

USERS = (
    ("u1", "u1@example.org", "Uma One", ROLE_USER),
    ("u2", "u2@example.org", "Umesh Two", ROLE_USER),
    ("admin1", "admin1@example.org", "Asha Admin", ROLE_ADMIN),
    ("root", "root@example.org", "Sagar Super", ROLE_SUPER_ADMIN),
)


@pytest.fixture(autouse=True)
def engine(tmp_path, monkeypatch) -> Iterator[Engine]:
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'netrika.db'}")
    monkeypatch.delenv("INSTANCE_CONNECTION_NAME", raising=False)
    monkeypatch.setattr(workflow, "REVISION_FAILURE_POLICY", workflow.POLICY_ROLLBACK)
    db.reset_engine()
    engine = db.get_engine()
    schema.metadata.create_all(engine)
    with engine.begin() as connection:
        for user_id, email, full_name, role in USERS:
            connection.execute(
                text("INSERT INTO users (id, email, full_name, role) VALUES (:id, :email, :full_name, :role)"),
                {"id": user_id, "email": email, "full_name": full_name, "role": role},
            )
    yield engine
    db.reset_engine()


@pytest.fixture
def user() -> Actor:
    return Actor(id="u1", role=ROLE_USER)


@pytest.fixture
def other_user() -> Actor:
    return Actor(id="u2", role=ROLE_USER)


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin1", role=ROLE_ADMIN)


@pytest.fixture
def super_admin() -> Actor:
    return Actor(id="root", role=ROLE_SUPER_ADMIN)


@pytest.fixture
def politician_id(engine) -> int:
    """An approved politician, p1, inserted directly."""
    with engine.begin() as connection:
        new_id = connection.execute(
            text(
                """
                INSERT INTO politicians (name, gender, biography)
                VALUES ('Ram Bahadur', 'Male', 'Original bio')
                RETURNING id
                """
            )
        ).scalar_one()
    return int(new_id)


class DbCheck:
    """Direct reads against the test database, bypassing the code under test."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def row(self, sql: str, **params) -> Optional[dict]:
        with self.engine.connect() as connection:
            row = connection.execute(text(sql), params).mappings().one_or_none()
        return dict(row) if row is not None else None

    def count(self, table: str, where: str = "1 = 1", **params) -> int:
        with self.engine.connect() as connection:
            return int(
                connection.execute(text(f"SELECT COUNT(*) FROM {table} WHERE {where}"), params).scalar_one()
            )

    def execute(self, sql: str, **params) -> None:
        with self.engine.begin() as connection:
            connection.execute(text(sql), params)


@pytest.fixture
def db_check(engine) -> DbCheck:
    return DbCheck(engine)


class ActorSwitch:
    """Mutable stand-in for the session user; tests set `.actor` per request."""

    def __init__(self) -> None:
        self.actor: Optional[Actor] = None

    def __call__(self) -> Optional[Actor]:
        return self.actor


@pytest.fixture
def acting_as() -> ActorSwitch:
    return ActorSwitch()


@pytest.fixture
def client(acting_as: ActorSwitch) -> Iterator[TestClient]:
    app = create_app(session_secret="test-session-secret")
    app.dependency_overrides[current_actor] = acting_as
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
