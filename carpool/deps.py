# carpool/deps.py
from typing import Optional

from fastapi import Header, HTTPException, Request

from .services.assignments import AssignmentManager
from .services.queries import SlotQueryService


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    # authentication happens upstream; the gateway forwards the caller id
    if not x_user_id:
        raise HTTPException(401, "Missing X-User-Id header")
    return x_user_id


def get_assignment_manager(request: Request) -> AssignmentManager:
    return request.app.state.assignments


def get_query_service(request: Request) -> SlotQueryService:
    return request.app.state.queries
