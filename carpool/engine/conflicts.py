from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..directory import Directory
from ..models import ScheduleSlot, ScheduleSlotChild, ScheduleSlotVehicle
from .capacity import assignment_capacity, assignment_occupancy


class ConflictType(str, Enum):
    VEHICLE_OVERBOOKING = "VEHICLE_OVERBOOKING"
    VEHICLE_DOUBLE_BOOKING = "VEHICLE_DOUBLE_BOOKING"
    DRIVER_DOUBLE_BOOKING = "DRIVER_DOUBLE_BOOKING"
    CHILD_DOUBLE_BOOKING = "CHILD_DOUBLE_BOOKING"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class ConflictCandidate:
    datetime: datetime
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    child_id: Optional[str] = None


@dataclass
class Conflict:
    type: ConflictType
    severity: Severity
    description: str
    details: Dict[str, object] = field(default_factory=dict)

    @property
    def scope(self) -> str:
        return str(self.details.get("scope", "resource"))

    def key(self) -> tuple:
        return (
            self.type,
            self.scope,
            self.details.get("conflicting_slot_id"),
            self.details.get("vehicle_id"),
            self.details.get("driver_id"),
            self.details.get("child_id"),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "details": self.details,
        }


def slots_at_instant(
    db: Session, group_id: str, dt: datetime, exclude_slot_id: Optional[str] = None
) -> List[ScheduleSlot]:
    # slots are instants: equality, not interval overlap
    q = (
        select(ScheduleSlot)
        .where(ScheduleSlot.group_id == group_id, ScheduleSlot.datetime == dt)
        .options(
            selectinload(ScheduleSlot.vehicle_assignments).selectinload(
                ScheduleSlotVehicle.vehicle
            ),
            selectinload(ScheduleSlot.child_assignments).selectinload(
                ScheduleSlotChild.child
            ),
        )
    )
    if exclude_slot_id:
        q = q.where(ScheduleSlot.id != exclude_slot_id)
    return list(db.execute(q).scalars())


def affiliated_family_ids(
    db: Session, directory: Directory, candidate: ConflictCandidate
) -> Set[str]:
    family_ids: Set[str] = set()
    if candidate.driver_id:
        family_ids |= directory.family_ids_for_user(db, candidate.driver_id)
    if candidate.vehicle_id:
        vehicle = directory.get_vehicle(db, candidate.vehicle_id)
        if vehicle is not None:
            family_ids.add(vehicle.family_id)
    if candidate.child_id:
        child = directory.get_child(db, candidate.child_id)
        if child is not None:
            family_ids.add(child.family_id)
    return family_ids


def _at(slot: ScheduleSlot) -> str:
    return slot.datetime.isoformat()


def _exact_conflicts(slot: ScheduleSlot, candidate: ConflictCandidate) -> List[Conflict]:
    found: List[Conflict] = []
    for va in slot.vehicle_assignments:
        if candidate.vehicle_id and va.vehicle_id == candidate.vehicle_id:
            found.append(
                Conflict(
                    ConflictType.VEHICLE_DOUBLE_BOOKING,
                    Severity.HIGH,
                    f"Vehicle {va.vehicle.name} is already assigned to another "
                    f"schedule slot at {_at(slot)}",
                    {
                        "conflicting_slot_id": slot.id,
                        "datetime": _at(slot),
                        "vehicle_id": va.vehicle_id,
                    },
                )
            )
        if candidate.driver_id and va.driver_id == candidate.driver_id:
            found.append(
                Conflict(
                    ConflictType.DRIVER_DOUBLE_BOOKING,
                    Severity.HIGH,
                    f"Driver is already driving another schedule slot at {_at(slot)}",
                    {
                        "conflicting_slot_id": slot.id,
                        "datetime": _at(slot),
                        "driver_id": va.driver_id,
                    },
                )
            )
    if candidate.child_id:
        for ca in slot.child_assignments:
            if ca.child_id == candidate.child_id:
                found.append(
                    Conflict(
                        ConflictType.CHILD_DOUBLE_BOOKING,
                        Severity.HIGH,
                        f"Child {ca.child.name} is already assigned to another "
                        f"schedule slot at {_at(slot)}",
                        {
                            "conflicting_slot_id": slot.id,
                            "datetime": _at(slot),
                            "child_id": ca.child_id,
                            "scope": "child",
                        },
                    )
                )
    return found


def _family_conflict(
    slot: ScheduleSlot, family_ids: Set[str], family_member_ids: Set[str]
) -> Optional[Conflict]:
    involved = (
        any(va.driver_id in family_member_ids for va in slot.vehicle_assignments if va.driver_id)
        or any(va.vehicle.family_id in family_ids for va in slot.vehicle_assignments)
        or any(ca.child.family_id in family_ids for ca in slot.child_assignments)
    )
    if not involved:
        return None
    return Conflict(
        ConflictType.CHILD_DOUBLE_BOOKING,
        Severity.MEDIUM,
        f"A member of the same family is also committed to another schedule slot at {_at(slot)}",
        {
            "conflicting_slot_id": slot.id,
            "datetime": _at(slot),
            "family_ids": sorted(family_ids),
            "scope": "family",
        },
    )


def find_conflicts(
    db: Session,
    group_id: str,
    candidate: ConflictCandidate,
    exclude_slot_id: Optional[str] = None,
    directory: Optional[Directory] = None,
) -> List[Conflict]:
    """Slots of the same group at the same instant that already commit the
    candidate's vehicle, driver or child, or someone from an affiliated family."""
    directory = directory or Directory()
    others = slots_at_instant(db, group_id, candidate.datetime, exclude_slot_id)
    if not others:
        return []

    family_ids = affiliated_family_ids(db, directory, candidate)
    member_ids = directory.member_ids_of_families(db, family_ids)

    conflicts: List[Conflict] = []
    for slot in others:
        exact = _exact_conflicts(slot, candidate)
        if exact:
            conflicts.extend(exact)
            continue
        family = _family_conflict(slot, family_ids, member_ids)
        if family is not None:
            conflicts.append(family)
    return conflicts


def driver_conflicts_within(
    slot: ScheduleSlot, driver_id: str, skip_assignment_id: Optional[str] = None
) -> List[Conflict]:
    """One driver steers one vehicle per slot."""
    return [
        Conflict(
            ConflictType.DRIVER_DOUBLE_BOOKING,
            Severity.HIGH,
            f"Driver is already driving {va.vehicle.name} in this schedule slot",
            {
                "conflicting_slot_id": slot.id,
                "datetime": _at(slot),
                "driver_id": driver_id,
                "vehicle_id": va.vehicle_id,
            },
        )
        for va in slot.vehicle_assignments
        if va.driver_id == driver_id and va.id != skip_assignment_id
    ]


def overbooking_conflicts(slot: ScheduleSlot) -> List[Conflict]:
    out: List[Conflict] = []
    for va in slot.vehicle_assignments:
        capacity = assignment_capacity(va)
        occupancy = assignment_occupancy(va)
        if occupancy > capacity:
            out.append(
                Conflict(
                    ConflictType.VEHICLE_OVERBOOKING,
                    Severity.CRITICAL,
                    f"Vehicle {va.vehicle.name} exceeds capacity with current "
                    f"assignments ({occupancy}/{capacity})",
                    {
                        "vehicle_id": va.vehicle_id,
                        "current_assignments": occupancy,
                        "vehicle_capacity": capacity,
                        "overbooked_by": occupancy - capacity,
                    },
                )
            )
    return out


def slot_conflicts(
    db: Session, slot: ScheduleSlot, directory: Optional[Directory] = None
) -> List[Conflict]:
    """Full report for one slot: overbooking plus every cross-slot double-booking."""
    directory = directory or Directory()
    report: List[Conflict] = overbooking_conflicts(slot)

    candidates = [
        ConflictCandidate(slot.datetime, vehicle_id=va.vehicle_id, driver_id=va.driver_id)
        for va in slot.vehicle_assignments
    ]
    for va in slot.vehicle_assignments:
        candidates.extend(
            ConflictCandidate(slot.datetime, child_id=ca.child_id)
            for ca in va.child_assignments
        )

    seen = set()
    for candidate in candidates:
        for conflict in find_conflicts(db, slot.group_id, candidate, slot.id, directory):
            if conflict.key() in seen:
                continue
            seen.add(conflict.key())
            report.append(conflict)
    return report


def blocking_conflicts(
    conflicts: List[Conflict],
    *,
    vehicle_id: Optional[str] = None,
    driver_id: Optional[str] = None,
    child_id: Optional[str] = None,
) -> List[Conflict]:
    """Conflicts that stop a write: overbooking, or a double-booking of the
    exact resource being mutated. Family-scope conflicts stay advisory."""
    out = []
    for c in conflicts:
        if c.type == ConflictType.VEHICLE_OVERBOOKING:
            out.append(c)
        elif c.type == ConflictType.VEHICLE_DOUBLE_BOOKING and vehicle_id:
            if c.details.get("vehicle_id") == vehicle_id:
                out.append(c)
        elif c.type == ConflictType.DRIVER_DOUBLE_BOOKING and driver_id:
            if c.details.get("driver_id") == driver_id:
                out.append(c)
        elif c.type == ConflictType.CHILD_DOUBLE_BOOKING and child_id:
            if c.scope == "child" and c.details.get("child_id") == child_id:
                out.append(c)
    return out
