# carpool/schemas.py
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .engine.capacity import assignment_capacity, assignment_occupancy, available_seats


SeatOverride = Annotated[
    Optional[int],
    Field(description="Seats offered for this slot, 0 up to the MAX_SEAT_CAPACITY setting"),
]


# ================== requests ==================
class CreateSlotRequest(BaseModel):
    datetime: str = Field(description="ISO 8601 instant, e.g. 2026-03-02T08:00:00Z")
    vehicle_id: str
    driver_id: Optional[str] = None
    seat_override: SeatOverride = None


class AssignVehicleRequest(BaseModel):
    vehicle_id: str
    driver_id: Optional[str] = None
    seat_override: SeatOverride = None


class UpdateDriverRequest(BaseModel):
    driver_id: Optional[str] = None


class UpdateSeatOverrideRequest(BaseModel):
    seat_override: SeatOverride = None


class AssignChildRequest(BaseModel):
    child_id: str
    vehicle_assignment_id: str


# ================== responses ==================
class VehicleOut(BaseModel):
    id: str
    name: str
    capacity: int


class DriverOut(BaseModel):
    id: str
    name: str


class ChildOut(BaseModel):
    id: str
    name: str
    family_id: str


class ChildAssignmentOut(BaseModel):
    schedule_slot_id: str
    child_id: str
    vehicle_assignment_id: str
    assigned_at: datetime
    child: Optional[ChildOut] = None


class VehicleAssignmentOut(BaseModel):
    id: str
    schedule_slot_id: str
    vehicle: VehicleOut
    driver: Optional[DriverOut] = None
    seat_override: Optional[int] = None
    effective_capacity: int
    occupancy: int
    available_seats: int
    children: List[ChildAssignmentOut] = Field(default_factory=list)


class SlotOut(BaseModel):
    id: str
    group_id: str
    datetime: datetime
    vehicle_assignments: List[VehicleAssignmentOut]
    child_assignments: List[ChildAssignmentOut]
    total_capacity: int
    available_seats: int
    created_at: datetime
    updated_at: datetime


class RemoveVehicleOut(BaseModel):
    slot_deleted: bool
    vehicle_assignment_id: str


class ConflictOut(BaseModel):
    type: str
    severity: str
    description: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AvailableChildOut(BaseModel):
    id: str
    name: str
    family_id: str
    family_name: Optional[str] = None
    can_assign: bool
    conflict_reason: Optional[str] = None


class SlotStatsOut(BaseModel):
    schedule_slot_id: str
    datetime: datetime
    vehicle_count: int
    child_count: int
    total_capacity: int
    available_seats: int
    is_at_capacity: bool
    is_empty: bool
    has_vehicles_only: bool
    has_children_only: bool


# ================== builders ==================
def child_assignment_out(ca) -> ChildAssignmentOut:
    child = ca.child
    return ChildAssignmentOut(
        schedule_slot_id=ca.schedule_slot_id,
        child_id=ca.child_id,
        vehicle_assignment_id=ca.vehicle_assignment_id,
        assigned_at=ca.assigned_at,
        child=ChildOut(id=child.id, name=child.name, family_id=child.family_id)
        if child is not None
        else None,
    )


def vehicle_assignment_out(va) -> VehicleAssignmentOut:
    capacity = assignment_capacity(va)
    occupancy = assignment_occupancy(va)
    return VehicleAssignmentOut(
        id=va.id,
        schedule_slot_id=va.schedule_slot_id,
        vehicle=VehicleOut(id=va.vehicle.id, name=va.vehicle.name, capacity=va.vehicle.capacity),
        driver=DriverOut(id=va.driver.id, name=va.driver.name) if va.driver else None,
        seat_override=va.seat_override,
        effective_capacity=capacity,
        occupancy=occupancy,
        available_seats=available_seats(capacity, occupancy),
        children=[child_assignment_out(ca) for ca in va.child_assignments],
    )


def slot_out(slot) -> SlotOut:
    assignments = [vehicle_assignment_out(va) for va in slot.vehicle_assignments]
    total_capacity = sum(a.effective_capacity for a in assignments)
    occupancy = sum(a.occupancy for a in assignments)
    return SlotOut(
        id=slot.id,
        group_id=slot.group_id,
        datetime=slot.datetime,
        vehicle_assignments=assignments,
        child_assignments=[child_assignment_out(ca) for ca in slot.child_assignments],
        total_capacity=total_capacity,
        available_seats=available_seats(total_capacity, occupancy),
        created_at=slot.created_at,
        updated_at=slot.updated_at,
    )
