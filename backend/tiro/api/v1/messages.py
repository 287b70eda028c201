"""Conversation endpoints: list, direct conversations, threads, read markers."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tiro.api.deps import get_current_user
from tiro.database import get_db
from tiro.models import MessageGroup, User
from tiro.schemas.message import (
    ConversationResponse,
    DirectConversationRequest,
    DirectConversationResponse,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
)
from tiro.services import messaging_service

router = APIRouter()


def _readable_group(db: Session, group_id: str, user: User) -> MessageGroup:
    group = messaging_service.get_group(db, group_id)
    if user.role != "admin" and not messaging_service.is_member(db, group_id, user.id):
        raise HTTPException(403, "You are not a member of this conversation")
    return group


@router.get("", response_model=list[ConversationResponse])
def list_conversations(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return [ConversationResponse.model_validate(s) for s in messaging_service.list_conversations(db, user.id)]


@router.post("/direct", response_model=DirectConversationResponse)
def open_direct_conversation(
    payload: DirectConversationRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if user.role == "admin":
        if not payload.user_id:
            raise HTTPException(422, "user_id is required")
        other_id, admin_id = payload.user_id, user.id
    else:
        if not payload.admin_id:
            raise HTTPException(422, "admin_id is required")
        other_id, admin_id = user.id, payload.admin_id

    admin = db.get(User, admin_id)
    if admin is None or admin.role != "admin":
        raise HTTPException(404, "Admin not found")
    if db.get(User, other_id) is None:
        raise HTTPException(404, "User not found")

    group, is_new = messaging_service.get_or_create_direct_conversation(db, other_id, admin_id)
    db.commit()
    return DirectConversationResponse(group_id=group.id, is_new=is_new)


@router.get("/{group_id}/messages", response_model=list[MessageResponse])
def list_messages(
    group_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _readable_group(db, group_id, user)
    return messaging_service.list_messages(db, group_id)


@router.post("/{group_id}/messages", response_model=MessageResponse, status_code=201)
def send_message(
    group_id: str,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    messaging_service.get_group(db, group_id)
    if not messaging_service.is_member(db, group_id, user.id):
        raise HTTPException(403, "You are not a member of this conversation")
    message = messaging_service.post_message(db, group_id, payload.content, sender_id=user.id)
    db.commit()
    db.refresh(message)
    return message


@router.post("/{group_id}/read", response_model=MarkReadResponse)
def mark_read(
    group_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _readable_group(db, group_id, user)
    marked = messaging_service.mark_read(db, group_id, user.id)
    db.commit()
    return MarkReadResponse(marked=marked)
