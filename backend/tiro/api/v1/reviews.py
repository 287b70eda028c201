"""Review endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tiro.api.deps import get_current_user, require_role
from tiro.database import get_db
from tiro.models import User
from tiro.schemas.review import ReviewCreate, ReviewResponse, StudentReviewsResponse
from tiro.services import project_service, review_service

router = APIRouter()


@router.post("/reviews", response_model=ReviewResponse, status_code=201)
def create_review(
    payload: ReviewCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("entrepreneur")),
):
    return review_service.create_review(
        db,
        payload.project_id,
        payload.student_id,
        payload.rating,
        user,
        comment=payload.comment,
    )


@router.get("/students/{student_id}/reviews", response_model=StudentReviewsResponse)
def student_reviews(
    student_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    reviews = review_service.list_student_reviews(db, student_id)
    summary = review_service.student_rating_summary(db, student_id)
    return StudentReviewsResponse(
        student_id=student_id,
        review_count=summary.review_count,
        average_rating=summary.average_rating,
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.get("/projects/{project_id}/reviews", response_model=list[ReviewResponse])
def project_reviews(
    project_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project_service.get_visible_project(db, project_id, user)
    return review_service.list_project_reviews(db, project_id)
