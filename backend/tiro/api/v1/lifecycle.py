"""Lifecycle endpoints: proposals, student selection, and completion.

Every state-changing call accepts an optional ``Idempotency-Key`` header;
re-sending a request with the same key returns the recorded transition.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session, joinedload

from tiro.api.deps import get_current_user, get_lifecycle_service, get_student_profile, require_role
from tiro.database import get_db
from tiro.models import ProposalToStudent, ProposedStudent, Student, User
from tiro.schemas.proposal import (
    ProposalAnswer,
    ProposalResponse,
    ProposedStudentResponse,
    ProposeStudentsRequest,
    SelectStudentRequest,
    SendProposalsRequest,
)
from tiro.schemas.transition import TransitionResponse
from tiro.services import project_service
from tiro.services.lifecycle_service import ProjectLifecycleService, TransitionResult

router = APIRouter()
logger = logging.getLogger(__name__)


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        project_id=result.project.id,
        event=result.event.value,
        from_status=result.from_status,
        to_status=result.to_status,
        replayed=result.replayed,
    )


@router.post("/{project_id}/proposals", response_model=TransitionResponse)
def send_proposals(
    project_id: str,
    payload: SendProposalsRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    user: User = Depends(require_role("admin")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    result = lifecycle.send_proposals(project_id, payload.student_ids, user, idempotency_key)
    return _transition_response(result)


@router.post("/{project_id}/proposals/respond", response_model=ProposalResponse)
def respond_to_proposal(
    project_id: str,
    payload: ProposalAnswer,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("student")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    student = get_student_profile(db, user)
    return lifecycle.respond_to_proposal(project_id, student, payload.accepted)


@router.get("/{project_id}/proposals", response_model=list[ProposalResponse])
def list_proposals(
    project_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project_service.get_visible_project(db, project_id, user)
    query = (
        db.query(ProposalToStudent)
        .options(joinedload(ProposalToStudent.student).joinedload(Student.user))
        .filter(ProposalToStudent.project_id == project_id)
    )
    if user.role == "student":
        student = get_student_profile(db, user)
        query = query.filter(ProposalToStudent.student_id == student.id)
    return query.order_by(ProposalToStudent.created_at.asc()).all()


@router.post("/{project_id}/proposed-students", response_model=TransitionResponse)
def propose_to_entrepreneur(
    project_id: str,
    payload: ProposeStudentsRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    user: User = Depends(require_role("admin")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    result = lifecycle.propose_to_entrepreneur(project_id, payload.student_ids, user, idempotency_key)
    return _transition_response(result)


@router.get("/{project_id}/proposed-students", response_model=list[ProposedStudentResponse])
def list_proposed_students(
    project_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project_service.get_visible_project(db, project_id, user)
    return (
        db.query(ProposedStudent)
        .options(joinedload(ProposedStudent.student).joinedload(Student.user))
        .filter(ProposedStudent.project_id == project_id)
        .order_by(ProposedStudent.created_at.asc())
        .all()
    )


@router.post("/{project_id}/select-student", response_model=TransitionResponse)
def select_student(
    project_id: str,
    payload: SelectStudentRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    user: User = Depends(require_role("entrepreneur")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    result = lifecycle.select_student(project_id, payload.student_id, user, idempotency_key)
    return _transition_response(result)


@router.post("/{project_id}/complete", response_model=TransitionResponse)
def complete_project(
    project_id: str,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    user: User = Depends(require_role("admin")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    result = lifecycle.complete_project(project_id, user, idempotency_key)
    return _transition_response(result)
