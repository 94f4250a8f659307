"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database (one connection shared
through StaticPool) and a small organisation:

    Plant A: manager1, tech1, tech1b, equipment e1
    Plant B: manager2, tech2,         equipment e2
    admin (no team)
"""

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from application import CreateRequestCommand, CreateRequestUseCase
from db import make_session_factory
from infrastructure import SqlAlchemyUnitOfWork
from model import Actor, Equipment, RequestType, Role, Team, User
from orm import metadata, start_mappers


@pytest.fixture
def engine():
    start_mappers()
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def uow(session_factory):
    return SqlAlchemyUnitOfWork(session_factory)


@pytest.fixture
def world(uow):
    t1 = Team(name="Plant A")
    t2 = Team(name="Plant B")
    admin = User(name="Ada Admin", email="admin@example.com", role=Role.ADMIN)
    manager1 = User(name="Mona Manager", email="mona@example.com", role=Role.MANAGER, team_id=t1.id)
    manager2 = User(name="Max Manager", email="max@example.com", role=Role.MANAGER, team_id=t2.id)
    tech1 = User(name="Tom Tech", email="tom@example.com", role=Role.TECHNICIAN, team_id=t1.id)
    tech1b = User(name="Tia Tech", email="tia@example.com", role=Role.TECHNICIAN, team_id=t1.id)
    tech2 = User(name="Ted Tech", email="ted@example.com", role=Role.TECHNICIAN, team_id=t2.id)
    e1 = Equipment(
        name="Hydraulic Press",
        serial_number="HP-001",
        department="Stamping",
        location="Hall 1",
        purchase_date=date(2022, 1, 10),
        team_id=t1.id,
    )
    e2 = Equipment(
        name="CNC Lathe",
        serial_number="CNC-002",
        department="Machining",
        location="Hall 2",
        purchase_date=date(2023, 6, 1),
        team_id=t2.id,
    )
    users = [admin, manager1, manager2, tech1, tech1b, tech2]

    with uow:
        for team in (t1, t2):
            uow.teams.save(team)
        for user in users:
            uow.users.save(user)
        for item in (e1, e2):
            uow.equipment.save(item)
        uow.commit()

    return SimpleNamespace(
        t1=t1,
        t2=t2,
        e1=e1,
        e2=e2,
        admin=admin,
        manager1=manager1,
        manager2=manager2,
        tech1=tech1,
        tech1b=tech1b,
        tech2=tech2,
        actors=SimpleNamespace(**{
            name: Actor.from_user(user)
            for name, user in zip(
                ("admin", "manager1", "manager2", "tech1", "tech1b", "tech2"), users
            )
        }),
    )


@pytest.fixture
def open_request(uow):
    """Create a request through the use case and return its DTO."""

    def _open(actor, equipment_id, request_type=RequestType.CORRECTIVE, scheduled_date=None, subject="Oil leak"):
        cmd = CreateRequestCommand(
            actor=actor,
            subject=subject,
            description="Found during the morning round.",
            type=request_type,
            equipment_id=equipment_id,
            scheduled_date=scheduled_date,
        )
        return CreateRequestUseCase().execute(cmd, uow)

    return _open


@pytest.fixture
def tomorrow():
    return datetime.now(timezone.utc) + timedelta(days=1)
