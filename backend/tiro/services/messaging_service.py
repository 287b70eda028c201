"""Message groups and messages.

The lifecycle only needs two operations from here (post a message into a
project's group, add a user to it). The rest backs the conversation list
and thread endpoints.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from tiro.exceptions import NotFoundError, PreconditionFailedError
from tiro.models import (
    Entrepreneur,
    Message,
    MessageGroup,
    MessageGroupMember,
    Project,
    User,
)

logger = logging.getLogger(__name__)


@dataclass
class ConversationSummary:
    group_id: str
    project_id: str | None
    title: str
    participants: list[User]
    last_message: str | None
    last_message_at: datetime | None
    unread_count: int


def create_project_group(db: Session, project: Project) -> MessageGroup:
    """Create the project's group with the owner and every admin as members."""
    group = MessageGroup(project_id=project.id)
    db.add(group)
    db.flush()

    member_ids: list[str] = []
    entrepreneur = db.get(Entrepreneur, project.entrepreneur_id)
    if entrepreneur is not None:
        member_ids.append(entrepreneur.user_id)
    member_ids.extend(
        r[0] for r in db.query(User.id).filter(User.role == "admin").all()
    )
    for user_id in dict.fromkeys(member_ids):
        db.add(MessageGroupMember(group_id=group.id, user_id=user_id))
    db.flush()
    logger.info("Created message group %s for project %s", group.id[:8], project.id[:8])
    return group


def get_project_group(db: Session, project_id: str) -> MessageGroup | None:
    return (
        db.query(MessageGroup)
        .filter(MessageGroup.project_id == project_id)
        .order_by(MessageGroup.created_at)
        .first()
    )


def ensure_project_group(db: Session, project: Project) -> MessageGroup:
    return get_project_group(db, project.id) or create_project_group(db, project)


def is_member(db: Session, group_id: str, user_id: str) -> bool:
    return (
        db.query(MessageGroupMember.id)
        .filter(MessageGroupMember.group_id == group_id, MessageGroupMember.user_id == user_id)
        .first()
        is not None
    )


def add_member(db: Session, group_id: str, user_id: str) -> bool:
    """Add ``user_id`` to the group. Returns False when already a member."""
    if is_member(db, group_id, user_id):
        return False
    try:
        with db.begin_nested():
            db.add(MessageGroupMember(group_id=group_id, user_id=user_id))
    except IntegrityError:
        # a concurrent insert won; membership holds either way
        return False
    logger.info("Added user %s to message group %s", user_id[:8], group_id[:8])
    return True


def post_message(db: Session, group_id: str, content: str, sender_id: str | None = None) -> Message:
    content = (content or "").strip()
    if not content:
        raise PreconditionFailedError("Message content cannot be empty")
    message = Message(group_id=group_id, sender_id=sender_id, content=content)
    db.add(message)
    db.flush()
    return message


def get_group(db: Session, group_id: str) -> MessageGroup:
    group = db.get(MessageGroup, group_id)
    if group is None:
        raise NotFoundError("Conversation not found")
    return group


def get_or_create_direct_conversation(db: Session, user_id: str, admin_id: str) -> tuple[MessageGroup, bool]:
    """Return the direct (non-project) conversation between a user and an admin."""
    user_group_ids = [
        r[0] for r in
        db.query(MessageGroupMember.group_id)
        .join(MessageGroup, MessageGroup.id == MessageGroupMember.group_id)
        .filter(MessageGroupMember.user_id == user_id, MessageGroup.project_id.is_(None))
        .all()
    ]
    if user_group_ids:
        existing = (
            db.query(MessageGroup)
            .join(MessageGroupMember, MessageGroupMember.group_id == MessageGroup.id)
            .filter(MessageGroup.id.in_(user_group_ids), MessageGroupMember.user_id == admin_id)
            .first()
        )
        if existing is not None:
            return existing, False

    group = MessageGroup(project_id=None)
    db.add(group)
    db.flush()
    for uid in dict.fromkeys([user_id, admin_id]):
        db.add(MessageGroupMember(group_id=group.id, user_id=uid))
    db.flush()
    logger.info("Created direct conversation %s", group.id[:8])
    return group, True


def list_messages(db: Session, group_id: str) -> list[Message]:
    return (
        db.query(Message)
        .filter(Message.group_id == group_id)
        .order_by(Message.created_at.asc())
        .all()
    )


def mark_read(db: Session, group_id: str, user_id: str) -> int:
    """Mark every message not sent by ``user_id`` as read; returns the count."""
    count = (
        db.query(Message)
        .filter(
            Message.group_id == group_id,
            Message.read.is_(False),
            (Message.sender_id.is_(None)) | (Message.sender_id != user_id),
        )
        .update({Message.read: True}, synchronize_session=False)
    )
    db.flush()
    return count


def list_conversations(db: Session, user_id: str) -> list[ConversationSummary]:
    """Conversations of ``user_id``, most recent activity first.

    Last message and unread count come from per-group subqueries joined onto
    the membership; members and their users load in one extra query.
    """
    unread_for_user = case(
        (and_(Message.read.is_(False), or_(Message.sender_id.is_(None), Message.sender_id != user_id)), 1),
        else_=0,
    )
    unread = (
        db.query(Message.group_id.label("group_id"), func.sum(unread_for_user).label("unread_count"))
        .group_by(Message.group_id)
        .subquery()
    )
    latest = (
        db.query(
            Message.group_id.label("group_id"),
            Message.content.label("content"),
            Message.created_at.label("created_at"),
            func.row_number().over(
                partition_by=Message.group_id,
                order_by=(Message.created_at.desc(), Message.id.desc()),
            ).label("recency"),
        )
        .subquery()
    )
    rows = (
        db.query(MessageGroup, latest.c.content, latest.c.created_at, unread.c.unread_count)
        .join(
            MessageGroupMember,
            and_(MessageGroupMember.group_id == MessageGroup.id, MessageGroupMember.user_id == user_id),
        )
        .outerjoin(latest, and_(latest.c.group_id == MessageGroup.id, latest.c.recency == 1))
        .outerjoin(unread, unread.c.group_id == MessageGroup.id)
        .options(
            joinedload(MessageGroup.project),
            selectinload(MessageGroup.members).joinedload(MessageGroupMember.user),
        )
        .all()
    )

    summaries: list[ConversationSummary] = []
    for group, last_content, last_at, unread_count in rows:
        participants = [m.user for m in group.members if m.user_id != user_id]
        if group.project is not None:
            title = group.project.title
        else:
            title = ", ".join(p.full_name or p.email for p in participants) or "Conversation"
        summaries.append(ConversationSummary(
            group_id=group.id,
            project_id=group.project_id,
            title=title,
            participants=participants,
            last_message=last_content,
            last_message_at=last_at,
            unread_count=int(unread_count or 0),
        ))

    def _sort_key(s: ConversationSummary) -> float:
        return s.last_message_at.timestamp() if s.last_message_at else 0.0

    return sorted(summaries, key=_sort_key, reverse=True)
