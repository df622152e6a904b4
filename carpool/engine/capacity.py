from typing import Dict, Optional

from ..errors import ValidationError

MAX_CAPACITY = 10


def effective_capacity(seat_override: Optional[int], base_capacity: int) -> int:
    """Seat override wins when set (0 is a real override), else the vehicle's seats."""
    return seat_override if seat_override is not None else base_capacity


def available_seats(capacity: int, occupancy: int) -> int:
    return max(0, capacity - occupancy)


def can_seat(capacity: int, occupancy: int) -> bool:
    return occupancy < capacity


def validate_seat_override(value, max_capacity: int = MAX_CAPACITY) -> Optional[int]:
    """Reject (never clamp) overrides outside [0, max_capacity]."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Seat override must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError("Seat override cannot be negative")
    if value > max_capacity:
        raise ValidationError(
            f"Seat override cannot exceed {max_capacity} seats (application limit)"
        )
    return value


def assignment_capacity(assignment) -> int:
    return effective_capacity(assignment.seat_override, assignment.vehicle.capacity)


def assignment_occupancy(assignment) -> int:
    return len(assignment.child_assignments)


def slot_stats(slot) -> Dict[str, object]:
    """Seat totals for one slot; expects vehicle assignments with vehicle + children loaded."""
    vehicle_count = len(slot.vehicle_assignments)
    child_count = sum(assignment_occupancy(va) for va in slot.vehicle_assignments)
    total_capacity = sum(assignment_capacity(va) for va in slot.vehicle_assignments)
    return {
        "schedule_slot_id": slot.id,
        "datetime": slot.datetime,
        "vehicle_count": vehicle_count,
        "child_count": child_count,
        "total_capacity": total_capacity,
        "available_seats": available_seats(total_capacity, child_count),
        "is_at_capacity": child_count >= total_capacity,
        "is_empty": vehicle_count == 0 and child_count == 0,
        "has_vehicles_only": vehicle_count > 0 and child_count == 0,
        "has_children_only": vehicle_count == 0 and child_count > 0,
    }
