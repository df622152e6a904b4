from __future__ import annotations

from conftest import MONDAY_0800

from carpool.engine.conflicts import (
    ConflictCandidate,
    ConflictType,
    Severity,
    blocking_conflicts,
    driver_conflicts_within,
    find_conflicts,
    overbooking_conflicts,
)
from carpool.engine.timing import parse_slot_datetime
from carpool.models import ScheduleSlotVehicle
from carpool.services.loading import load_slot

AT = parse_slot_datetime(MONDAY_0800)


def _find(session_factory, world, **candidate):
    # no exclusion: the candidate is checked against the existing slot itself
    with session_factory() as db:
        return find_conflicts(db, world.group, ConflictCandidate(AT, **candidate))


def test_no_slot_at_instant_means_no_conflicts(session_factory, world) -> None:
    assert _find(session_factory, world, vehicle_id=world.van) == []


def test_vehicle_double_booking_blocks_the_vehicle(session_factory, world, monday_slot) -> None:
    conflicts = _find(session_factory, world, vehicle_id=world.van)
    assert [c.type for c in conflicts] == [ConflictType.VEHICLE_DOUBLE_BOOKING]
    assert conflicts[0].severity == Severity.HIGH
    assert conflicts[0].details["conflicting_slot_id"] == monday_slot.id
    assert blocking_conflicts(conflicts, vehicle_id=world.van) == conflicts


def test_driver_double_booking(session_factory, world, monday_slot) -> None:
    conflicts = _find(session_factory, world, driver_id=world.alice)
    assert [c.type for c in conflicts] == [ConflictType.DRIVER_DOUBLE_BOOKING]
    assert blocking_conflicts(conflicts, driver_id=world.alice) == conflicts
    # a driver conflict does not block a vehicle mutation
    assert blocking_conflicts(conflicts, vehicle_id=world.sedan) == []


def test_child_double_booking_is_blocking(session_factory, world, manager, monday_slot) -> None:
    manager.assign_child(
        monday_slot.id, world.amy, monday_slot.vehicle_assignments[0].id, caller_id=world.alice
    )
    conflicts = _find(session_factory, world, child_id=world.amy)
    assert len(conflicts) == 1
    assert conflicts[0].type == ConflictType.CHILD_DOUBLE_BOOKING
    assert conflicts[0].severity == Severity.HIGH
    assert conflicts[0].scope == "child"
    assert blocking_conflicts(conflicts, child_id=world.amy) == conflicts


def test_family_conflict_is_advisory(session_factory, world, manager, monday_slot) -> None:
    manager.assign_child(
        monday_slot.id, world.amy, monday_slot.vehicle_assignments[0].id, caller_id=world.alice
    )
    # Ann is Amy's sister and rides in nobody's car yet
    conflicts = _find(session_factory, world, child_id=world.ann)
    assert len(conflicts) == 1
    assert conflicts[0].type == ConflictType.CHILD_DOUBLE_BOOKING
    assert conflicts[0].severity == Severity.MEDIUM
    assert conflicts[0].scope == "family"
    assert world.family_a in conflicts[0].details["family_ids"]
    assert blocking_conflicts(conflicts, child_id=world.ann) == []


def test_unrelated_family_has_no_conflict(session_factory, world, monday_slot) -> None:
    assert _find(session_factory, world, child_id=world.cal) == []


def test_exclusion_skips_the_slot_being_mutated(session_factory, world, monday_slot) -> None:
    with session_factory() as db:
        found = find_conflicts(
            db, world.group, ConflictCandidate(AT, vehicle_id=world.van), monday_slot.id
        )
    assert found == []


def test_overbooking_is_reported_as_critical(session_factory, world, manager, monday_slot) -> None:
    va_id = monday_slot.vehicle_assignments[0].id
    for child in (world.amy, world.ann, world.abe):
        manager.assign_child(monday_slot.id, child, va_id, caller_id=world.alice)

    # rows written around the manager, e.g. by an older release
    with session_factory() as db:
        db.get(ScheduleSlotVehicle, va_id).seat_override = 1
        db.commit()

    with session_factory() as db:
        conflicts = overbooking_conflicts(load_slot(db, monday_slot.id))
    assert len(conflicts) == 1
    assert conflicts[0].type == ConflictType.VEHICLE_OVERBOOKING
    assert conflicts[0].severity == Severity.CRITICAL
    assert conflicts[0].details == {
        "vehicle_id": world.van,
        "current_assignments": 3,
        "vehicle_capacity": 1,
        "overbooked_by": 2,
    }
    assert blocking_conflicts(conflicts) == conflicts


def test_driver_already_driving_in_the_same_slot(session_factory, world, monday_slot) -> None:
    van_assignment = monday_slot.vehicle_assignments[0]
    with session_factory() as db:
        slot = load_slot(db, monday_slot.id)
        conflicts = driver_conflicts_within(slot, world.alice)
        # the van's own assignment is skipped when re-checking its driver
        assert driver_conflicts_within(slot, world.alice, van_assignment.id) == []
        assert driver_conflicts_within(slot, world.bob) == []

    assert [c.type for c in conflicts] == [ConflictType.DRIVER_DOUBLE_BOOKING]
    assert conflicts[0].details["vehicle_id"] == world.van
    assert blocking_conflicts(conflicts, driver_id=world.alice) == conflicts
