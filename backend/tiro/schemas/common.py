"""Shared / common schemas: pagination, enums, base models."""
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


# ── Enums ──────────────────────────────────────────────────────────────

class ProjectStatus(str, Enum):
    STEP1 = "STEP1"  # new
    STEP2 = "STEP2"  # proposals sent to students
    STEP3 = "STEP3"  # awaiting entrepreneur selection
    STEP4 = "STEP4"  # awaiting payment
    STEP5 = "STEP5"  # active
    STEP6 = "STEP6"  # completed


class LegacyStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"


class UserRole(str, Enum):
    ADMIN = "admin"
    ENTREPRENEUR = "entrepreneur"
    STUDENT = "student"


class PaymentStatus(str, Enum):
    PROCESSING = "processing"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    CANCELED = "canceled"
    SUCCEEDED = "succeeded"

    @classmethod
    def _missing_(cls, value: object) -> "PaymentStatus | None":
        """Accept gateway statuses this enum does not list yet."""
        if isinstance(value, str):
            obj = str.__new__(cls, value)
            obj._value_ = value
            obj._name_ = value.upper()
            return obj
        return None


# ── Pagination ─────────────────────────────────────────────────────────

class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int


# ── Common Responses ───────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime


class UserSummary(BaseModel):
    id: str
    email: str
    name: str
    surname: str
    role: UserRole

    model_config = {"from_attributes": True}
