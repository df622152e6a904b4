# carpool/errors.py
"""Typed business errors for the slot engine.

Each error carries the HTTP status it maps to so the router layer never has
to inspect message strings.
"""
from typing import Any, List, Optional


class SlotEngineError(Exception):
    status_code: int = 500

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code()

    @classmethod
    def default_code(cls) -> str:
        return cls.__name__

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class NotFound(SlotEngineError):
    """Missing resource, or one the caller may not see (never distinguished)."""

    status_code = 404


class ValidationError(SlotEngineError):
    status_code = 400


class PastSlotError(ValidationError):
    pass


class UnconfiguredTimeError(ValidationError):
    pass


class CapacityConflict(SlotEngineError):
    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        occupancy: Optional[int] = None,
        capacity: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message, code=code)
        self.occupancy = occupancy
        self.capacity = capacity

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["occupancy"] = self.occupancy
        out["capacity"] = self.capacity
        return out


class DuplicateAssignment(SlotEngineError):
    status_code = 409

    @classmethod
    def default_code(cls) -> str:
        return "ALREADY_ASSIGNED"


class ScheduleConflict(SlotEngineError):
    """A blocking double-booking of the resource being mutated."""

    status_code = 409

    def __init__(self, message: str, conflicts: List[Any], *, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.conflicts = conflicts

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["conflicts"] = [c.to_dict() for c in self.conflicts]
        return out


class TransientStoreError(SlotEngineError):
    """Serialization failure or timeout; the caller may retry."""

    status_code = 503
