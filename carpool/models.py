from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _uuid() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Always binds UTC and always returns aware UTC datetimes (SQLite drops tzinfo)."""

    impl = DateTime
    cache_ok = True

    def __init__(self):
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ================== Directory (owned by collaborators) ==================
class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False)
    timezone: Mapped[str | None] = mapped_column(String)
    created_at = mapped_column(UTCDateTime(), nullable=False, default=utcnow)


class Family(Base):
    __tablename__ = "families"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False)

    members: Mapped[list["FamilyMember"]] = relationship(
        "FamilyMember", cascade="all, delete-orphan", back_populates="family"
    )


class FamilyMember(Base):
    __tablename__ = "family_members"
    family_id: Mapped[str] = mapped_column(
        String, ForeignKey("families.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String, nullable=False, default="MEMBER")

    family: Mapped[Family] = relationship("Family", back_populates="members")


class Vehicle(Base):
    __tablename__ = "vehicles"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    family_id: Mapped[str] = mapped_column(
        String, ForeignKey("families.id", ondelete="CASCADE"), nullable=False
    )


class Child(Base):
    __tablename__ = "children"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False)
    family_id: Mapped[str] = mapped_column(
        String, ForeignKey("families.id", ondelete="CASCADE"), nullable=False
    )

    family: Mapped[Family] = relationship("Family")


class Group(Base):
    __tablename__ = "groups"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String, nullable=False)
    family_id: Mapped[str] = mapped_column(
        String, ForeignKey("families.id", ondelete="CASCADE"), nullable=False
    )
    timezone: Mapped[str] = mapped_column(String, nullable=False, default="UTC")


class GroupFamilyMember(Base):
    __tablename__ = "group_family_members"
    group_id: Mapped[str] = mapped_column(
        String, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True
    )
    family_id: Mapped[str] = mapped_column(
        String, ForeignKey("families.id", ondelete="CASCADE"), primary_key=True
    )


class GroupScheduleConfig(Base):
    __tablename__ = "group_schedule_configs"
    group_id: Mapped[str] = mapped_column(
        String, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True
    )
    # {"MONDAY": ["07:30", "08:00"], ...}, times are UTC wall-clock
    schedule_hours: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


# ================== Schedule slots ==================
class ScheduleSlot(Base):
    __tablename__ = "schedule_slots"
    __table_args__ = (
        UniqueConstraint("group_id", "datetime", name="uq_schedule_slots_group_datetime"),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    datetime = mapped_column(UTCDateTime(), nullable=False)
    created_at = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow
    )

    vehicle_assignments: Mapped[list["ScheduleSlotVehicle"]] = relationship(
        "ScheduleSlotVehicle",
        cascade="all, delete-orphan",
        back_populates="slot",
        order_by="ScheduleSlotVehicle.created_at",
    )
    # written through ScheduleSlotVehicle.child_assignments
    child_assignments: Mapped[list["ScheduleSlotChild"]] = relationship(
        "ScheduleSlotChild", viewonly=True, order_by="ScheduleSlotChild.assigned_at"
    )


class ScheduleSlotVehicle(Base):
    __tablename__ = "schedule_slot_vehicles"
    __table_args__ = (
        UniqueConstraint(
            "schedule_slot_id", "vehicle_id", name="uq_schedule_slot_vehicles_slot_vehicle"
        ),
    )
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    schedule_slot_id: Mapped[str] = mapped_column(
        String, ForeignKey("schedule_slots.id", ondelete="CASCADE"), nullable=False
    )
    vehicle_id: Mapped[str] = mapped_column(
        String, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False
    )
    driver_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("users.id", ondelete="SET NULL")
    )
    seat_override: Mapped[int | None] = mapped_column(Integer)
    created_at = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    slot: Mapped[ScheduleSlot] = relationship(
        "ScheduleSlot", back_populates="vehicle_assignments"
    )
    vehicle: Mapped[Vehicle] = relationship("Vehicle")
    driver: Mapped[User | None] = relationship("User")
    child_assignments: Mapped[list["ScheduleSlotChild"]] = relationship(
        "ScheduleSlotChild",
        cascade="all, delete-orphan",
        back_populates="vehicle_assignment",
        order_by="ScheduleSlotChild.assigned_at",
    )


class ScheduleSlotChild(Base):
    __tablename__ = "schedule_slot_children"
    # one row per (slot, child): a child rides at most once per slot
    schedule_slot_id: Mapped[str] = mapped_column(
        String, ForeignKey("schedule_slots.id", ondelete="CASCADE"), primary_key=True
    )
    child_id: Mapped[str] = mapped_column(
        String, ForeignKey("children.id", ondelete="CASCADE"), primary_key=True
    )
    vehicle_assignment_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("schedule_slot_vehicles.id", ondelete="CASCADE"),
        nullable=False,
    )
    assigned_at = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    vehicle_assignment: Mapped[ScheduleSlotVehicle] = relationship(
        "ScheduleSlotVehicle", back_populates="child_assignments"
    )
    child: Mapped[Child] = relationship("Child")
