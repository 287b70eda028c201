"""Conversation and message schemas."""
from datetime import datetime
from pydantic import BaseModel, Field
from tiro.schemas.common import UserSummary


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class MessageResponse(BaseModel):
    id: str
    group_id: str
    sender_id: str | None
    content: str
    read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class ConversationResponse(BaseModel):
    group_id: str
    project_id: str | None
    title: str
    participants: list[UserSummary]
    last_message: str | None
    last_message_at: datetime | None
    unread_count: int

    model_config = {"from_attributes": True}


class DirectConversationRequest(BaseModel):
    # required when a non-admin opens the conversation
    admin_id: str | None = None
    user_id: str | None = None


class DirectConversationResponse(BaseModel):
    group_id: str
    is_new: bool


class MarkReadResponse(BaseModel):
    marked: int
