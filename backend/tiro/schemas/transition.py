"""Lifecycle transition schemas."""
from datetime import datetime
from pydantic import BaseModel


class TransitionResponse(BaseModel):
    project_id: str
    event: str
    from_status: str
    to_status: str
    replayed: bool = False


class TransitionHistoryItem(BaseModel):
    id: str
    event: str
    from_status: str
    to_status: str
    actor_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
