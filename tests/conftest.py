"""Shared fixtures: a file-backed SQLite store per test, seeded with two
member families of one group plus an outsider family."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from carpool.database import build_engine, init_db, make_session_factory
from carpool.models import (
    Child,
    Family,
    FamilyMember,
    Group,
    GroupFamilyMember,
    GroupScheduleConfig,
    User,
    Vehicle,
)
from carpool.services.assignments import AssignmentManager
from carpool.services.queries import SlotQueryService
from carpool.settings import Settings

# Sunday; every slot used by the tests is in the following days
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

MONDAY_0730 = "2026-03-02T07:30:00Z"
MONDAY_0800 = "2026-03-02T08:00:00Z"
TUESDAY_0800 = "2026-03-03T08:00:00Z"

SCHEDULE_HOURS = {"MONDAY": ["07:30", "08:00"], "TUESDAY": ["08:00"]}


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'carpool.db'}",
        TX_TIMEOUT_SEC=10.0,
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.DATABASE_URL, settings.TX_TIMEOUT_SEC)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def world(session_factory) -> SimpleNamespace:
    w = SimpleNamespace(
        alice="user-alice",
        andy="user-andy",
        bob="user-bob",
        carl="user-carl",
        family_a="family-anderson",
        family_b="family-brown",
        family_c="family-clark",
        van="vehicle-van",
        sedan="vehicle-sedan",
        minibus="vehicle-minibus",
        amy="child-amy",
        ann="child-ann",
        abe="child-abe",
        ava="child-ava",
        art="child-art",
        ben="child-ben",
        bea="child-bea",
        cal="child-cal",
        group="group-school-run",
        lonely_group="group-no-config",
    )
    with session_factory() as db:
        db.add_all(
            [
                Family(id=w.family_a, name="Anderson"),
                Family(id=w.family_b, name="Brown"),
                Family(id=w.family_c, name="Clark"),
            ]
        )
        db.add_all(
            [
                User(id=w.alice, name="Alice"),
                User(id=w.andy, name="Andy"),
                User(id=w.bob, name="Bob"),
                User(id=w.carl, name="Carl"),
            ]
        )
        db.flush()
        db.add_all(
            [
                FamilyMember(family_id=w.family_a, user_id=w.alice, role="ADMIN"),
                FamilyMember(family_id=w.family_a, user_id=w.andy),
                FamilyMember(family_id=w.family_b, user_id=w.bob, role="ADMIN"),
                FamilyMember(family_id=w.family_c, user_id=w.carl, role="ADMIN"),
                Vehicle(id=w.van, name="Van", capacity=4, family_id=w.family_a),
                Vehicle(id=w.sedan, name="Sedan", capacity=3, family_id=w.family_b),
                Vehicle(id=w.minibus, name="Minibus", capacity=7, family_id=w.family_a),
                Child(id=w.amy, name="Amy", family_id=w.family_a),
                Child(id=w.ann, name="Ann", family_id=w.family_a),
                Child(id=w.abe, name="Abe", family_id=w.family_a),
                Child(id=w.ava, name="Ava", family_id=w.family_a),
                Child(id=w.art, name="Art", family_id=w.family_a),
                Child(id=w.ben, name="Ben", family_id=w.family_b),
                Child(id=w.bea, name="Bea", family_id=w.family_b),
                Child(id=w.cal, name="Cal", family_id=w.family_c),
                Group(id=w.group, name="School run", family_id=w.family_a),
                Group(id=w.lonely_group, name="Weekend club", family_id=w.family_a),
            ]
        )
        db.flush()
        db.add_all(
            [
                GroupFamilyMember(group_id=w.group, family_id=w.family_b),
                GroupScheduleConfig(group_id=w.group, schedule_hours=SCHEDULE_HOURS),
            ]
        )
        db.commit()
    return w


@pytest.fixture
def manager(session_factory, settings, world) -> AssignmentManager:
    return AssignmentManager(session_factory, settings, clock=fixed_clock)


@pytest.fixture
def queries(session_factory, settings, world) -> SlotQueryService:
    return SlotQueryService(session_factory, settings)


@pytest.fixture
def monday_slot(manager, world):
    """MONDAY 08:00 slot driven by Alice in the 4-seat van."""
    return manager.create_slot_with_vehicle(
        world.group, MONDAY_0800, world.van, driver_id=world.alice, caller_id=world.alice
    )
