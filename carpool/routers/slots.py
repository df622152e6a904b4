# carpool/routers/slots.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from ..deps import get_assignment_manager, get_current_user, get_query_service
from ..schemas import (
    AssignChildRequest,
    AssignVehicleRequest,
    AvailableChildOut,
    ChildAssignmentOut,
    ConflictOut,
    CreateSlotRequest,
    RemoveVehicleOut,
    SlotOut,
    SlotStatsOut,
    UpdateDriverRequest,
    UpdateSeatOverrideRequest,
    VehicleAssignmentOut,
    child_assignment_out,
    slot_out,
    vehicle_assignment_out,
)
from ..services.assignments import AssignmentManager
from ..services.queries import SlotQueryService

groups_router = APIRouter(prefix="/groups", tags=["schedule"])
router = APIRouter(prefix="/schedule-slots", tags=["schedule-slots"])
assignments_router = APIRouter(prefix="/vehicle-assignments", tags=["schedule-slots"])


# === GROUP SCHEDULE ===
@groups_router.post("/{group_id}/schedule-slots", response_model=SlotOut, status_code=201)
def create_slot(
    group_id: str,
    payload: CreateSlotRequest,
    caller_id: str = Depends(get_current_user),
    manager: AssignmentManager = Depends(get_assignment_manager),
):
    slot = manager.create_slot_with_vehicle(
        group_id,
        payload.datetime,
        payload.vehicle_id,
        driver_id=payload.driver_id,
        seat_override=payload.seat_override,
        caller_id=caller_id,
    )
    return slot_out(slot)


@groups_router.get("/{group_id}/schedule", response_model=List[SlotOut])
def get_schedule(
    group_id: str,
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    caller_id: str = Depends(get_current_user),
    queries: SlotQueryService = Depends(get_query_service),
):
    slots = queries.get_schedule(group_id, start_date, end_date, caller_id=caller_id)
    return [slot_out(s) for s in slots]


# === SLOT ===
@router.get("/{slot_id}", response_model=SlotOut)
def get_slot(
    slot_id: str,
    caller_id: str = Depends(get_current_user),
    queries: SlotQueryService = Depends(get_query_service),
):
    return slot_out(queries.get_slot(slot_id, caller_id=caller_id))


@router.get("/{slot_id}/conflicts", response_model=List[ConflictOut])
def get_conflicts(
    slot_id: str,
    caller_id: str = Depends(get_current_user),
    queries: SlotQueryService = Depends(get_query_service),
):
    return [c.to_dict() for c in queries.get_conflicts(slot_id, caller_id=caller_id)]


@router.get("/{slot_id}/available-children", response_model=List[AvailableChildOut])
def get_available_children(
    slot_id: str,
    caller_id: str = Depends(get_current_user),
    queries: SlotQueryService = Depends(get_query_service),
):
    return [c.to_dict() for c in queries.get_available_children(slot_id, caller_id=caller_id)]


@router.get("/{slot_id}/stats", response_model=SlotStatsOut)
def get_slot_stats(
    slot_id: str,
    caller_id: str = Depends(get_current_user),
    queries: SlotQueryService = Depends(get_query_service),
):
    return queries.get_slot_stats(slot_id, caller_id=caller_id)


# === VEHICLES ===
@router.post("/{slot_id}/vehicles", response_model=VehicleAssignmentOut, status_code=201)
def assign_vehicle(
    slot_id: str,
    payload: AssignVehicleRequest,
    caller_id: str = Depends(get_current_user),
    manager: AssignmentManager = Depends(get_assignment_manager),
):
    va = manager.assign_vehicle(
        slot_id,
        payload.vehicle_id,
        driver_id=payload.driver_id,
        seat_override=payload.seat_override,
        caller_id=caller_id,
    )
    return vehicle_assignment_out(va)


@router.delete("/{slot_id}/vehicles/{vehicle_id}", response_model=RemoveVehicleOut)
def remove_vehicle(
    slot_id: str,
    vehicle_id: str,
    caller_id: str = Depends(get_current_user),
    manager: AssignmentManager = Depends(get_assignment_manager),
):
    return manager.remove_vehicle(slot_id, vehicle_id, caller_id=caller_id)


@router.patch("/{slot_id}/vehicles/{vehicle_id}/driver", response_model=VehicleAssignmentOut)
def update_driver(
    slot_id: str,
    vehicle_id: str,
    payload: UpdateDriverRequest,
    caller_id: str = Depends(get_current_user),
    manager: AssignmentManager = Depends(get_assignment_manager),
):
    va = manager.update_driver(slot_id, vehicle_id, payload.driver_id, caller_id=caller_id)
    return vehicle_assignment_out(va)


@assignments_router.patch("/{vehicle_assignment_id}/seat-override", response_model=VehicleAssignmentOut)
def update_seat_override(
    vehicle_assignment_id: str,
    payload: UpdateSeatOverrideRequest,
    caller_id: str = Depends(get_current_user),
    manager: AssignmentManager = Depends(get_assignment_manager),
):
    va = manager.update_seat_override(
        vehicle_assignment_id, payload.seat_override, caller_id=caller_id
    )
    return vehicle_assignment_out(va)


# === CHILDREN ===
@router.post("/{slot_id}/children", response_model=ChildAssignmentOut, status_code=201)
def assign_child(
    slot_id: str,
    payload: AssignChildRequest,
    caller_id: str = Depends(get_current_user),
    manager: AssignmentManager = Depends(get_assignment_manager),
):
    ca = manager.assign_child(
        slot_id, payload.child_id, payload.vehicle_assignment_id, caller_id=caller_id
    )
    return child_assignment_out(ca)


@router.delete("/{slot_id}/children/{child_id}", status_code=204)
def remove_child(
    slot_id: str,
    child_id: str,
    caller_id: str = Depends(get_current_user),
    manager: AssignmentManager = Depends(get_assignment_manager),
):
    manager.remove_child(slot_id, child_id, caller_id=caller_id)
    return Response(status_code=204)
