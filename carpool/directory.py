# carpool/directory.py
"""Read-only lookups into records owned by other services (users, families,
vehicles, children, groups, schedule config).

They share the slot store, so calling them with the session of an open
serializable transaction gives in-transaction re-reads.
"""
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import (
    Child,
    Family,
    FamilyMember,
    Group,
    GroupFamilyMember,
    GroupScheduleConfig,
    User,
    Vehicle,
)


class Directory:
    def get_user(self, db: Session, user_id: str) -> Optional[User]:
        return db.get(User, user_id)

    def get_vehicle(self, db: Session, vehicle_id: str) -> Optional[Vehicle]:
        return db.get(Vehicle, vehicle_id)

    def get_child(self, db: Session, child_id: str) -> Optional[Child]:
        return db.get(Child, child_id)

    def get_group(self, db: Session, group_id: str) -> Optional[Group]:
        return db.get(Group, group_id)

    def get_schedule_config(self, db: Session, group_id: str) -> Optional[Dict[str, List[str]]]:
        row = db.get(GroupScheduleConfig, group_id)
        return dict(row.schedule_hours) if row else None

    def family_ids_for_user(self, db: Session, user_id: str) -> Set[str]:
        rows = db.execute(
            select(FamilyMember.family_id).where(FamilyMember.user_id == user_id)
        ).scalars()
        return set(rows)

    def member_ids_of_families(self, db: Session, family_ids: Iterable[str]) -> Set[str]:
        family_ids = list(family_ids)
        if not family_ids:
            return set()
        rows = db.execute(
            select(FamilyMember.user_id).where(FamilyMember.family_id.in_(family_ids))
        ).scalars()
        return set(rows)

    def group_family_ids(self, db: Session, group_id: str) -> Set[str]:
        """Owning family plus member families."""
        group = db.get(Group, group_id)
        if group is None:
            return set()
        rows = db.execute(
            select(GroupFamilyMember.family_id).where(GroupFamilyMember.group_id == group_id)
        ).scalars()
        return {group.family_id, *rows}

    def children_of_families(self, db: Session, family_ids: Iterable[str]) -> List[Child]:
        family_ids = list(family_ids)
        if not family_ids:
            return []
        return list(
            db.execute(
                select(Child)
                .where(Child.family_id.in_(family_ids))
                .order_by(Child.name.asc())
            ).scalars()
        )

    def family_names(self, db: Session, family_ids: Iterable[str]) -> Dict[str, str]:
        family_ids = list(family_ids)
        if not family_ids:
            return {}
        rows = db.execute(select(Family.id, Family.name).where(Family.id.in_(family_ids)))
        return {fid: name for fid, name in rows}

    def resolve_timezone(
        self, db: Session, caller_id: Optional[str], group_id: str, default: str = "UTC"
    ) -> str:
        """Caller's zone, else the group's, else the configured default."""
        if caller_id:
            user = db.get(User, caller_id)
            if user is not None and user.timezone:
                return user.timezone
        group = db.get(Group, group_id)
        if group is not None and group.timezone:
            return group.timezone
        return default
