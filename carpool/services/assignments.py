# carpool/services/assignments.py
"""Every slot mutation runs here, inside one serializable transaction.

Pattern per operation: cheap pre-checks outside the transaction, then re-read
slot + assignments inside it, re-validate uniqueness / capacity / blocking
conflicts against that snapshot, write, commit. Nothing decided from a read
taken before the transaction opened is trusted for capacity or uniqueness.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ..access import AccessPolicy, MembershipAccessPolicy
from ..database import serializable_session
from ..directory import Directory
from ..engine.capacity import (
    assignment_capacity,
    assignment_occupancy,
    can_seat,
    effective_capacity,
    validate_seat_override,
)
from ..engine.conflicts import (
    Conflict,
    ConflictCandidate,
    blocking_conflicts,
    driver_conflicts_within,
    find_conflicts,
)
from ..engine.timing import (
    parse_slot_datetime,
    utcnow,
    validate_against_schedule_config,
    validate_timing,
)
from ..errors import (
    CapacityConflict,
    DuplicateAssignment,
    NotFound,
    ScheduleConflict,
    TransientStoreError,
)
from ..models import (
    ScheduleSlot,
    ScheduleSlotChild,
    ScheduleSlotVehicle,
    User,
    Vehicle,
)
from ..settings import Settings
from .loading import load_assignment, load_slot

log = logging.getLogger(__name__)


class _SlotCreationRace(Exception):
    """Another transaction inserted the same (group, datetime) slot first."""


SERIALIZATION_FAILURE = "40001"


def _is_serialization_failure(exc: OperationalError) -> bool:
    return getattr(exc.orig, "sqlstate", None) == SERIALIZATION_FAILURE


class AssignmentManager:
    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        access: Optional[AccessPolicy] = None,
        directory: Optional[Directory] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.directory = directory or Directory()
        self.access = access or MembershipAccessPolicy(self.directory)
        self.clock = clock

    def _tx(self):
        return serializable_session(self.session_factory, self.settings.TX_TIMEOUT_SEC)

    # ------------------------------------------------------------------ lookups
    def _slot_for_caller(self, db: Session, slot_id: str, caller_id: str) -> ScheduleSlot:
        slot = load_slot(db, slot_id)
        if slot is None or not self.access.caller_has_slot_access(db, caller_id, slot.group_id):
            raise NotFound(f"Schedule slot {slot_id} not found")
        return slot

    def _vehicle(self, db: Session, vehicle_id: str) -> Vehicle:
        vehicle = self.directory.get_vehicle(db, vehicle_id)
        if vehicle is None:
            raise NotFound(f"Vehicle {vehicle_id} not found")
        return vehicle

    def _driver(self, db: Session, driver_id: Optional[str]) -> Optional[User]:
        if not driver_id:
            return None
        driver = self.directory.get_user(db, driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")
        return driver

    def _guard_not_past(self, db: Session, slot: ScheduleSlot, caller_id: str) -> None:
        tz = self.directory.resolve_timezone(
            db, caller_id, slot.group_id, self.settings.DEFAULT_TIMEZONE
        )
        validate_timing(slot.datetime, tz, self.clock(), action="modify")

    # ---------------------------------------------------------------- conflicts
    def _check_conflicts(
        self,
        db: Session,
        slot: ScheduleSlot,
        candidate: ConflictCandidate,
        skip_assignment_id: Optional[str] = None,
    ) -> List[Conflict]:
        conflicts = find_conflicts(db, slot.group_id, candidate, slot.id, self.directory)
        if candidate.driver_id:
            conflicts = (
                driver_conflicts_within(slot, candidate.driver_id, skip_assignment_id)
                + conflicts
            )
        blocking = blocking_conflicts(
            conflicts,
            vehicle_id=candidate.vehicle_id,
            driver_id=candidate.driver_id,
            child_id=candidate.child_id,
        )
        if blocking:
            raise ScheduleConflict(
                "Cannot assign to schedule slot due to conflicts: "
                + "; ".join(c.description for c in blocking),
                blocking,
                code=blocking[0].type.value,
            )
        advisory = [c for c in conflicts if c not in blocking]
        if advisory:
            log.info(
                "Advisory conflicts for slot %s: %s",
                slot.id,
                ", ".join(c.type.value for c in advisory),
            )
        return advisory

    def _attach_vehicle(
        self,
        db: Session,
        slot: ScheduleSlot,
        vehicle: Vehicle,
        driver: Optional[User],
        seat_override: Optional[int],
    ) -> ScheduleSlotVehicle:
        if any(va.vehicle_id == vehicle.id for va in slot.vehicle_assignments):
            raise DuplicateAssignment(
                f"Vehicle {vehicle.name} is already assigned to this schedule slot"
            )
        self._check_conflicts(
            db,
            slot,
            ConflictCandidate(
                slot.datetime,
                vehicle_id=vehicle.id,
                driver_id=driver.id if driver else None,
            ),
        )
        va = ScheduleSlotVehicle(vehicle=vehicle, driver=driver, seat_override=seat_override)
        slot.vehicle_assignments.append(va)
        db.add(va)
        return va

    # --------------------------------------------------------------- operations
    def create_slot_with_vehicle(
        self,
        group_id: str,
        slot_datetime,
        vehicle_id: str,
        driver_id: Optional[str] = None,
        seat_override: Optional[int] = None,
        *,
        caller_id: str,
    ) -> ScheduleSlot:
        dt = parse_slot_datetime(slot_datetime)
        seat_override = validate_seat_override(seat_override, self.settings.MAX_SEAT_CAPACITY)

        with self.session_factory() as db:
            group = self.directory.get_group(db, group_id)
            if group is None or not self.access.caller_has_slot_access(db, caller_id, group_id):
                raise NotFound(f"Group {group_id} not found")
            tz = self.directory.resolve_timezone(
                db, caller_id, group_id, self.settings.DEFAULT_TIMEZONE
            )
            validate_timing(dt, tz, self.clock(), action="create")
            validate_against_schedule_config(
                self.directory.get_schedule_config(db, group_id), dt
            )

        try:
            slot = self._create_or_join_slot(group_id, dt, vehicle_id, driver_id, seat_override)
        except _SlotCreationRace:
            log.info(
                "Slot for group %s at %s was created concurrently; assigning to it",
                group_id,
                dt.isoformat(),
            )
            try:
                slot = self._create_or_join_slot(
                    group_id, dt, vehicle_id, driver_id, seat_override
                )
            except _SlotCreationRace:
                raise TransientStoreError(
                    f"Schedule slot for group {group_id} at {dt.isoformat()} is being "
                    "created concurrently; retry the request"
                ) from None

        log.info("Vehicle %s assigned to slot %s (%s)", vehicle_id, slot.id, dt.isoformat())
        return slot

    def _create_or_join_slot(
        self,
        group_id: str,
        dt: datetime,
        vehicle_id: str,
        driver_id: Optional[str],
        seat_override: Optional[int],
    ) -> ScheduleSlot:
        with self._tx() as db:
            vehicle = self._vehicle(db, vehicle_id)
            driver = self._driver(db, driver_id)

            slot_id = db.execute(
                select(ScheduleSlot.id).where(
                    ScheduleSlot.group_id == group_id, ScheduleSlot.datetime == dt
                )
            ).scalar_one_or_none()

            if slot_id is None:
                slot = ScheduleSlot(group_id=group_id, datetime=dt)
                db.add(slot)
                try:
                    db.flush()
                except IntegrityError as exc:
                    raise _SlotCreationRace() from exc
                except OperationalError as exc:
                    # postgres reports a concurrent insert of a key this
                    # transaction already read as a serialization failure
                    if _is_serialization_failure(exc):
                        raise _SlotCreationRace() from exc
                    raise
            else:
                slot = load_slot(db, slot_id)

            self._attach_vehicle(db, slot, vehicle, driver, seat_override)
            db.flush()
            return load_slot(db, slot.id, refresh=True)

    def assign_vehicle(
        self,
        slot_id: str,
        vehicle_id: str,
        driver_id: Optional[str] = None,
        seat_override: Optional[int] = None,
        *,
        caller_id: str,
    ) -> ScheduleSlotVehicle:
        seat_override = validate_seat_override(seat_override, self.settings.MAX_SEAT_CAPACITY)

        with self._tx() as db:
            slot = self._slot_for_caller(db, slot_id, caller_id)
            self._guard_not_past(db, slot, caller_id)
            vehicle = self._vehicle(db, vehicle_id)
            driver = self._driver(db, driver_id)
            va = self._attach_vehicle(db, slot, vehicle, driver, seat_override)
            db.flush()
            va = load_assignment(db, va.id, refresh=True)

        log.info("Vehicle %s assigned to slot %s", vehicle_id, slot_id)
        return va

    def remove_vehicle(self, slot_id: str, vehicle_id: str, *, caller_id: str) -> dict:
        with self._tx() as db:
            slot = self._slot_for_caller(db, slot_id, caller_id)
            self._guard_not_past(db, slot, caller_id)
            va = next((a for a in slot.vehicle_assignments if a.vehicle_id == vehicle_id), None)
            if va is None:
                raise NotFound(
                    f"Vehicle {vehicle_id} is not assigned to schedule slot {slot_id}"
                )
            va_id = va.id
            dropped_children = len(va.child_assignments)

            slot.vehicle_assignments.remove(va)
            db.flush()

            # an empty slot must not outlive this transaction
            slot_deleted = not slot.vehicle_assignments
            if slot_deleted:
                db.delete(slot)

        log.info(
            "Vehicle %s removed from slot %s (children dropped=%d, slot deleted=%s)",
            vehicle_id,
            slot_id,
            dropped_children,
            slot_deleted,
        )
        return {"slot_deleted": slot_deleted, "vehicle_assignment_id": va_id}

    def update_driver(
        self,
        slot_id: str,
        vehicle_id: str,
        driver_id: Optional[str],
        *,
        caller_id: str,
    ) -> ScheduleSlotVehicle:
        with self._tx() as db:
            slot = self._slot_for_caller(db, slot_id, caller_id)
            self._guard_not_past(db, slot, caller_id)
            va = next((a for a in slot.vehicle_assignments if a.vehicle_id == vehicle_id), None)
            if va is None:
                raise NotFound(
                    f"Vehicle {vehicle_id} is not assigned to schedule slot {slot_id}"
                )
            driver = self._driver(db, driver_id)
            if driver is not None and driver.id != va.driver_id:
                self._check_conflicts(
                    db, slot, ConflictCandidate(slot.datetime, driver_id=driver.id), va.id
                )
            va.driver = driver
            db.flush()
            va = load_assignment(db, va.id, refresh=True)

        log.info("Driver of vehicle %s in slot %s set to %s", vehicle_id, slot_id, driver_id)
        return va

    def update_seat_override(
        self,
        vehicle_assignment_id: str,
        seat_override: Optional[int],
        *,
        caller_id: str,
    ) -> ScheduleSlotVehicle:
        seat_override = validate_seat_override(seat_override, self.settings.MAX_SEAT_CAPACITY)

        with self._tx() as db:
            va = load_assignment(db, vehicle_assignment_id)
            if va is None or not self.access.caller_has_slot_access(
                db, caller_id, va.slot.group_id
            ):
                raise NotFound(f"Vehicle assignment {vehicle_assignment_id} not found")
            self._guard_not_past(db, va.slot, caller_id)

            capacity = effective_capacity(seat_override, va.vehicle.capacity)
            occupancy = assignment_occupancy(va)
            if occupancy > capacity:
                # capacity is never violated retroactively; nobody gets dropped
                raise CapacityConflict(
                    f"Cannot reduce {va.vehicle.name} to {capacity} seats: "
                    f"{occupancy} children are already assigned ({occupancy}/{capacity})",
                    occupancy=occupancy,
                    capacity=capacity,
                )
            va.seat_override = seat_override
            db.flush()
            va = load_assignment(db, va.id, refresh=True)

        log.info("Seat override of assignment %s set to %s", vehicle_assignment_id, seat_override)
        return va

    def assign_child(
        self,
        slot_id: str,
        child_id: str,
        vehicle_assignment_id: str,
        *,
        caller_id: str,
    ) -> ScheduleSlotChild:
        with self._tx() as db:
            slot = self._slot_for_caller(db, slot_id, caller_id)
            child = self.directory.get_child(db, child_id)
            if child is None or not self.access.caller_is_family_member(
                db, caller_id, child_id=child_id
            ):
                raise NotFound(f"Child {child_id} not found")
            self._guard_not_past(db, slot, caller_id)

            va = next(
                (a for a in slot.vehicle_assignments if a.id == vehicle_assignment_id), None
            )
            if va is None:
                raise NotFound(
                    f"Vehicle assignment {vehicle_assignment_id} not found in this schedule slot"
                )

            if any(ca.child_id == child_id for ca in slot.child_assignments):
                raise DuplicateAssignment(
                    f"Child {child.name} is already assigned to this schedule slot"
                )

            capacity = assignment_capacity(va)
            occupancy = assignment_occupancy(va)
            if not can_seat(capacity, occupancy):
                raise CapacityConflict(
                    f"Vehicle {va.vehicle.name} is at full capacity ({occupancy}/{capacity})",
                    occupancy=occupancy,
                    capacity=capacity,
                )

            self._check_conflicts(db, slot, ConflictCandidate(slot.datetime, child_id=child_id))

            ca = ScheduleSlotChild(schedule_slot_id=slot.id, child=child, vehicle_assignment=va)
            db.add(ca)
            db.flush()

        log.info(
            "Child %s assigned to slot %s in vehicle assignment %s (%d/%d)",
            child_id,
            slot_id,
            vehicle_assignment_id,
            occupancy + 1,
            capacity,
        )
        return ca

    def remove_child(self, slot_id: str, child_id: str, *, caller_id: str) -> None:
        with self._tx() as db:
            slot = self._slot_for_caller(db, slot_id, caller_id)
            if not self.access.caller_is_family_member(db, caller_id, child_id=child_id):
                raise NotFound(f"Child {child_id} not found")
            self._guard_not_past(db, slot, caller_id)

            ca = next((c for c in slot.child_assignments if c.child_id == child_id), None)
            if ca is None:
                raise NotFound(f"Child {child_id} is not assigned to schedule slot {slot_id}")
            db.delete(ca)

        log.info("Child %s removed from slot %s", child_id, slot_id)
