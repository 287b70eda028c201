"""RPC-style endpoints kept for clients that call database procedures by name."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tiro.api.deps import require_role
from tiro.database import get_db
from tiro.models import User
from tiro.schemas.proposal import StudentSelectionRequest, StudentSelectionResponse
from tiro.services import availability_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/handle_student_selection", response_model=StudentSelectionResponse)
def handle_student_selection(
    payload: StudentSelectionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("admin")),
):
    """Apply the availability writes of a selection in one transaction."""
    try:
        released = availability_service.handle_student_selection(
            db, payload.project_id, payload.selected_student_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(
        "RPC selection: project %s -> student %s (%d released)",
        payload.project_id[:8], payload.selected_student_id[:8], len(released),
    )
    return StudentSelectionResponse(
        project_id=payload.project_id,
        selected_student_id=payload.selected_student_id,
        released_student_ids=released,
    )
