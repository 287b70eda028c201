"""Project schemas for request/response validation."""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from tiro.schemas.common import UserSummary


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    pack_id: str | None = None
    deadline: datetime | None = None


class PriceUpdate(BaseModel):
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


class DevisUpdate(BaseModel):
    devis: str = Field(..., min_length=1)


class ProjectTransfer(BaseModel):
    entrepreneur_id: str


class ProjectResponse(BaseModel):
    id: str
    title: str
    description: str | None
    devis: str | None
    price: Decimal | None
    status: str
    entrepreneur_id: str
    selected_student_id: str | None
    pack_id: str | None
    deadline: datetime | None
    stripe_payment_intent_id: str | None
    payment_status: str | None
    created_at: datetime
    updated_at: datetime
    # Computed (filled by the API layer)
    display_status: str = ""
    available_events: list[str] = []

    model_config = {"from_attributes": True}


class ProjectListItem(BaseModel):
    id: str
    title: str
    status: str
    price: Decimal | None
    entrepreneur_id: str
    selected_student_id: str | None
    created_at: datetime
    updated_at: datetime
    display_status: str = ""

    model_config = {"from_attributes": True}


class StudentSummary(BaseModel):
    id: str
    user_id: str
    specialty: str | None
    formation: str | None
    skills: list | None
    available: bool
    user: UserSummary | None = None

    model_config = {"from_attributes": True}
