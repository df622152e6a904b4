from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..models import ScheduleSlot, ScheduleSlotChild, ScheduleSlotVehicle


def slot_detail_options() -> list:
    return [
        selectinload(ScheduleSlot.vehicle_assignments).selectinload(ScheduleSlotVehicle.vehicle),
        selectinload(ScheduleSlot.vehicle_assignments).selectinload(ScheduleSlotVehicle.driver),
        selectinload(ScheduleSlot.vehicle_assignments)
        .selectinload(ScheduleSlotVehicle.child_assignments)
        .selectinload(ScheduleSlotChild.child),
        selectinload(ScheduleSlot.child_assignments).selectinload(ScheduleSlotChild.child),
    ]


def assignment_detail_options() -> list:
    return [
        selectinload(ScheduleSlotVehicle.vehicle),
        selectinload(ScheduleSlotVehicle.driver),
        selectinload(ScheduleSlotVehicle.slot),
        selectinload(ScheduleSlotVehicle.child_assignments).selectinload(ScheduleSlotChild.child),
    ]


def load_slot(db: Session, slot_id: str, refresh: bool = False) -> Optional[ScheduleSlot]:
    q = select(ScheduleSlot).where(ScheduleSlot.id == slot_id).options(*slot_detail_options())
    if refresh:
        q = q.execution_options(populate_existing=True)
    return db.execute(q).scalar_one_or_none()


def load_assignment(
    db: Session, vehicle_assignment_id: str, refresh: bool = False
) -> Optional[ScheduleSlotVehicle]:
    q = (
        select(ScheduleSlotVehicle)
        .where(ScheduleSlotVehicle.id == vehicle_assignment_id)
        .options(*assignment_detail_options())
    )
    if refresh:
        q = q.execution_options(populate_existing=True)
    return db.execute(q).scalar_one_or_none()


def load_group_slots(db: Session, group_id: str, start=None, end=None) -> List[ScheduleSlot]:
    q = (
        select(ScheduleSlot)
        .where(ScheduleSlot.group_id == group_id)
        .options(*slot_detail_options())
        .order_by(ScheduleSlot.datetime.asc())
    )
    if start is not None:
        q = q.where(ScheduleSlot.datetime >= start)
    if end is not None:
        q = q.where(ScheduleSlot.datetime < end)
    return list(db.execute(q).scalars())
