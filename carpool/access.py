# carpool/access.py
from typing import Optional

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from .directory import Directory
from .models import Child, FamilyMember, Group, GroupFamilyMember, Vehicle


class AccessPolicy:
    """Authorization answers consumed by the slot engine; the engine never re-derives them."""

    def caller_has_slot_access(self, db: Session, caller_id: str, group_id: str) -> bool:
        raise NotImplementedError

    def caller_is_family_member(
        self,
        db: Session,
        caller_id: str,
        child_id: Optional[str] = None,
        vehicle_id: Optional[str] = None,
    ) -> bool:
        raise NotImplementedError


class MembershipAccessPolicy(AccessPolicy):
    """Access through family membership: a caller sees a group when one of
    their families owns it or was admitted to it."""

    def __init__(self, directory: Optional[Directory] = None):
        self.directory = directory or Directory()

    def caller_has_slot_access(self, db: Session, caller_id: str, group_id: str) -> bool:
        if not caller_id:
            return False
        family_ids = self.directory.family_ids_for_user(db, caller_id)
        if not family_ids:
            return False
        q = select(
            exists().where(
                Group.id == group_id,
                or_(
                    Group.family_id.in_(family_ids),
                    exists().where(
                        GroupFamilyMember.group_id == Group.id,
                        GroupFamilyMember.family_id.in_(family_ids),
                    ),
                ),
            )
        )
        return bool(db.execute(q).scalar())

    def caller_is_family_member(
        self,
        db: Session,
        caller_id: str,
        child_id: Optional[str] = None,
        vehicle_id: Optional[str] = None,
    ) -> bool:
        if not caller_id:
            return False
        if child_id is not None:
            owner = db.get(Child, child_id)
        elif vehicle_id is not None:
            owner = db.get(Vehicle, vehicle_id)
        else:
            return False
        if owner is None:
            return False
        q = select(
            exists().where(
                FamilyMember.family_id == owner.family_id,
                FamilyMember.user_id == caller_id,
            )
        )
        return bool(db.execute(q).scalar())
