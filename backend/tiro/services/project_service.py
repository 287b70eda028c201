"""Project creation, visibility, and admin edits outside the status lifecycle."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Query, Session

from tiro.exceptions import NotFoundError, PermissionDeniedError, PreconditionFailedError
from tiro.models import Entrepreneur, Project, ProposalToStudent, ProposedStudent, Student, User
from tiro.schemas.common import ProjectStatus
from tiro.services import messaging_service
from tiro.utils.status import convert_status, normalize_status

logger = logging.getLogger(__name__)

_PRICE_LOCKED = {ProjectStatus.STEP5, ProjectStatus.STEP6}


def create_project(
    db: Session,
    entrepreneur: Entrepreneur,
    title: str,
    description: str | None = None,
    pack_id: str | None = None,
    deadline: datetime | None = None,
) -> Project:
    """Create a STEP1 project together with its message group."""
    project = Project(
        title=title.strip(),
        description=description,
        pack_id=pack_id,
        deadline=deadline,
        entrepreneur_id=entrepreneur.id,
        status=ProjectStatus.STEP1.value,
    )
    db.add(project)
    db.flush()
    messaging_service.create_project_group(db, project)
    db.commit()
    db.refresh(project)
    logger.info("Created project %s for entrepreneur %s", project.id[:8], entrepreneur.id[:8])
    return project


def visible_projects(db: Session, user: User) -> Query:
    """Projects ``user`` may see: all for admins, own for entrepreneurs,
    proposed-to or selected for students."""
    query = db.query(Project)
    if user.role == "admin":
        return query
    if user.role == "entrepreneur":
        return query.join(Entrepreneur, Entrepreneur.id == Project.entrepreneur_id).filter(
            Entrepreneur.user_id == user.id
        )
    student = db.query(Student).filter(Student.user_id == user.id).first()
    if student is None:
        return query.filter(Project.id.is_(None))
    proposed_to = select(ProposalToStudent.project_id).where(ProposalToStudent.student_id == student.id)
    put_forward = select(ProposedStudent.project_id).where(ProposedStudent.student_id == student.id)
    return query.filter(
        or_(
            Project.selected_student_id == student.id,
            Project.id.in_(proposed_to),
            Project.id.in_(put_forward),
        )
    )


def filter_by_status(query: Query, status: str) -> Query:
    """Filter by a step value or legacy alias."""
    return query.filter(Project.status.in_(sorted({status, convert_status(status)})))


def get_visible_project(db: Session, project_id: str, user: User) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    if visible_projects(db, user).filter(Project.id == project_id).first() is None:
        raise PermissionDeniedError("You do not have access to this project")
    return project


def _get(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    return project


def set_price(db: Session, project_id: str, price: Decimal) -> Project:
    project = _get(db, project_id)
    if price is None or price <= 0:
        raise PreconditionFailedError("Price must be greater than zero")
    if normalize_status(project.status) in _PRICE_LOCKED:
        raise PreconditionFailedError("Price cannot change after payment")
    project.price = price
    db.commit()
    db.refresh(project)
    logger.info("Project %s price set to %s", project.id[:8], price)
    return project


def set_devis(db: Session, project_id: str, devis: str) -> Project:
    project = _get(db, project_id)
    devis = (devis or "").strip()
    if not devis:
        raise PreconditionFailedError("Quote cannot be empty")
    project.devis = devis
    db.commit()
    db.refresh(project)
    return project


def transfer_project(db: Session, project_id: str, entrepreneur_id: str) -> Project:
    """Move a project to another entrepreneur, who joins its message group."""
    project = _get(db, project_id)
    target = db.get(Entrepreneur, entrepreneur_id)
    if target is None:
        raise NotFoundError("Entrepreneur not found")
    if target.id == project.entrepreneur_id:
        raise PreconditionFailedError("Project already belongs to this entrepreneur")
    previous = project.entrepreneur_id
    project.entrepreneur_id = target.id
    group = messaging_service.ensure_project_group(db, project)
    messaging_service.add_member(db, group.id, target.user_id)
    db.commit()
    db.refresh(project)
    logger.info("Transferred project %s from %s to %s", project.id[:8], previous[:8], target.id[:8])
    return project
