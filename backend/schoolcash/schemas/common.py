# ============================================================
# schoolcash/schemas/common.py
#
# Shapes shared by every endpoint of the desk API.
#
# Naming convention we follow:
#   SomethingRequest  → body for POST/PATCH requests
#   SomethingResponse → what the API returns
#   Something         → internal result object (also returned)
# ============================================================

from pydantic import BaseModel
from typing import Optional, Generic, TypeVar, List
from enum import Enum

T = TypeVar("T")


# ── Standard API response wrapper ────────────────────────────
class APIResponse(BaseModel, Generic[T]):
    """
    Every endpoint returns this shape:
    {
        "success": true,
        "message": "Installment selected",
        "data": { ... }
    }
    """
    success: bool = True
    message: str = "OK"
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    """Returned when something goes wrong."""
    success: bool = False
    message: str
    detail: Optional[List[str]] = None


# ── User-facing notices ──────────────────────────────────────
# The dashboard shows these as toasts. They never block anything
# by themselves; blocking conditions live in the batch validation.
class NoticeLevel(str, Enum):
    info        = "info"
    warning     = "warning"
    destructive = "destructive"
    success     = "success"


class Notice(BaseModel):
    level: NoticeLevel = NoticeLevel.info
    title: str = "Information"
    message: str
