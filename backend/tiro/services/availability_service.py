"""Student availability bookkeeping around project staffing.

A student put forward to an entrepreneur is held (``available = False``)
until the entrepreneur chooses; the chosen one stays held for the project's
duration, everyone else is released.

These functions only flush. The caller owns the transaction, so the writes
of one lifecycle transition commit or roll back together.
"""
from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from tiro.exceptions import NotFoundError, PreconditionFailedError
from tiro.models import Project, ProposalToStudent, ProposedStudent, Student
from tiro.schemas.common import ProjectStatus
from tiro.utils.status import normalize_status

logger = logging.getLogger(__name__)

_SELECTION_STATUSES = {ProjectStatus.STEP3, ProjectStatus.STEP4}


def handle_student_selection(db: Session, project_id: str, selected_student_id: str) -> list[str]:
    """Mark the selected student unavailable and release the other proposed ones.

    Only valid while the project is at the selection step (STEP3, or STEP4
    when called from inside the transition) and for a student who was put
    forward: a proposed student, or an accepted one when nobody was proposed.

    Returns the ids of the students made available again.
    """
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found")
    if db.get(Student, selected_student_id) is None:
        raise NotFoundError(f"Student {selected_student_id} not found")
    if normalize_status(project.status) not in _SELECTION_STATUSES:
        raise PreconditionFailedError(
            f"Project {project_id} is not at the student selection step (status: {project.status})"
        )

    proposed_ids = [
        row[0] for row in
        db.query(ProposedStudent.student_id).filter(ProposedStudent.project_id == project_id).all()
    ]
    candidates = proposed_ids or [
        row[0] for row in
        db.query(ProposalToStudent.student_id)
        .filter(ProposalToStudent.project_id == project_id, ProposalToStudent.accepted.is_(True))
        .all()
    ]
    if selected_student_id not in candidates:
        raise PreconditionFailedError(
            f"Student {selected_student_id} was not proposed for project {project_id}"
        )
    released = [sid for sid in proposed_ids if sid != selected_student_id]

    if released:
        db.execute(
            update(Student)
            .where(Student.id.in_(released))
            .values(available=True)
            .execution_options(synchronize_session="fetch")
        )
    db.execute(
        update(Student)
        .where(Student.id == selected_student_id)
        .values(available=False)
        .execution_options(synchronize_session="fetch")
    )
    project.selected_student_id = selected_student_id
    db.flush()

    logger.info(
        "Project %s: selected student %s, released %d other proposed student(s)",
        project_id[:8], selected_student_id[:8], len(released),
    )
    return released


def handle_project_completion(db: Session, project_id: str) -> str | None:
    """Release the project's selected student, if any. Returns that student id."""
    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found")
    if not project.selected_student_id:
        logger.info("Project %s completed without a selected student", project_id[:8])
        return None

    db.execute(
        update(Student)
        .where(Student.id == project.selected_student_id)
        .values(available=True)
        .execution_options(synchronize_session="fetch")
    )
    db.flush()
    logger.info(
        "Project %s completed: student %s available again",
        project_id[:8], project.selected_student_id[:8],
    )
    return project.selected_student_id


def set_students_unavailable(db: Session, student_ids) -> None:
    """Hold students while an entrepreneur considers them."""
    ids = list(student_ids)
    if not ids:
        return
    db.execute(
        update(Student)
        .where(Student.id.in_(ids))
        .values(available=False)
        .execution_options(synchronize_session="fetch")
    )
    db.flush()
