# carpool/services/queries.py
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..access import AccessPolicy, MembershipAccessPolicy
from ..directory import Directory
from ..engine.capacity import assignment_capacity, assignment_occupancy, can_seat, slot_stats
from ..engine.conflicts import Conflict, ConflictCandidate, find_conflicts, slot_conflicts
from ..engine.timing import parse_slot_datetime
from ..errors import NotFound, ValidationError
from ..models import ScheduleSlot
from ..settings import Settings
from .loading import load_group_slots, load_slot

log = logging.getLogger(__name__)


@dataclass
class AvailableChild:
    id: str
    name: str
    family_id: str
    family_name: Optional[str]
    can_assign: bool
    conflict_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "family_id": self.family_id,
            "family_name": self.family_name,
            "can_assign": self.can_assign,
            "conflict_reason": self.conflict_reason,
        }


class SlotQueryService:
    """Read side. Default isolation; nothing here writes."""

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        access: Optional[AccessPolicy] = None,
        directory: Optional[Directory] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.directory = directory or Directory()
        self.access = access or MembershipAccessPolicy(self.directory)

    def _slot(self, db: Session, slot_id: str, caller_id: str) -> ScheduleSlot:
        slot = load_slot(db, slot_id)
        if slot is None or not self.access.caller_has_slot_access(db, caller_id, slot.group_id):
            raise NotFound(f"Schedule slot {slot_id} not found")
        return slot

    def get_slot(self, slot_id: str, *, caller_id: str) -> ScheduleSlot:
        with self.session_factory() as db:
            return self._slot(db, slot_id, caller_id)

    def get_schedule(
        self, group_id: str, start=None, end=None, *, caller_id: str
    ) -> List[ScheduleSlot]:
        """Slots with start <= datetime < end, oldest first. A missing bound is open."""
        start_dt = parse_slot_datetime(start) if start is not None else None
        end_dt = parse_slot_datetime(end) if end is not None else None
        if start_dt is not None and end_dt is not None and start_dt > end_dt:
            raise ValidationError("Start date must be before end date")

        with self.session_factory() as db:
            if self.directory.get_group(db, group_id) is None or not (
                self.access.caller_has_slot_access(db, caller_id, group_id)
            ):
                raise NotFound(f"Group {group_id} not found")
            return load_group_slots(db, group_id, start_dt, end_dt)

    def get_conflicts(self, slot_id: str, *, caller_id: str) -> List[Conflict]:
        with self.session_factory() as db:
            slot = self._slot(db, slot_id, caller_id)
            return slot_conflicts(db, slot, self.directory)

    def get_slot_stats(self, slot_id: str, *, caller_id: str) -> dict:
        with self.session_factory() as db:
            return slot_stats(self._slot(db, slot_id, caller_id))

    def get_available_children(self, slot_id: str, *, caller_id: str) -> List[AvailableChild]:
        with self.session_factory() as db:
            slot = self._slot(db, slot_id, caller_id)

            family_ids = self.directory.group_family_ids(db, slot.group_id)
            family_names = self.directory.family_names(db, family_ids)
            assigned_here = {ca.child_id for ca in slot.child_assignments}

            open_seats = [
                (assignment_capacity(va), assignment_occupancy(va))
                for va in slot.vehicle_assignments
            ]
            has_seat = any(can_seat(cap, occ) for cap, occ in open_seats)
            total_capacity = sum(cap for cap, _ in open_seats)
            total_occupancy = sum(occ for _, occ in open_seats)

            out: List[AvailableChild] = []
            for child in self.directory.children_of_families(db, family_ids):
                if child.id in assigned_here:
                    continue

                reason = None
                if not self.access.caller_is_family_member(db, caller_id, child_id=child.id):
                    reason = "Only the child's own family can assign this child"
                elif not slot.vehicle_assignments:
                    reason = "No vehicle assigned to this slot"
                elif any(
                    c.details.get("scope") == "child"
                    for c in find_conflicts(
                        db,
                        slot.group_id,
                        ConflictCandidate(slot.datetime, child_id=child.id),
                        slot.id,
                        self.directory,
                    )
                ):
                    reason = "Already assigned to another slot at this time"
                elif not has_seat:
                    reason = f"No seats available ({total_occupancy}/{total_capacity})"

                out.append(
                    AvailableChild(
                        id=child.id,
                        name=child.name,
                        family_id=child.family_id,
                        family_name=family_names.get(child.family_id),
                        can_assign=reason is None,
                        conflict_reason=reason,
                    )
                )
            return out
