"""Reviews of students by the entrepreneurs they worked for."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tiro.exceptions import (
    DuplicateReviewError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from tiro.models import Entrepreneur, Project, Review, Student, User
from tiro.schemas.common import ProjectStatus
from tiro.utils.status import normalize_status

logger = logging.getLogger(__name__)


@dataclass
class RatingSummary:
    student_id: str
    review_count: int
    average_rating: float | None


def _entrepreneur_for(db: Session, user: User) -> Entrepreneur:
    entrepreneur = db.query(Entrepreneur).filter(Entrepreneur.user_id == user.id).first()
    if entrepreneur is None:
        raise PermissionDeniedError("Only entrepreneurs can review students")
    return entrepreneur


def create_review(
    db: Session,
    project_id: str,
    student_id: str,
    rating: int,
    actor: User,
    comment: str | None = None,
) -> Review:
    """Record the owner's rating of the student who completed ``project_id``.

    At most one review exists per (project, student, entrepreneur): the
    lookup below gives a clean error, and the unique constraint catches
    the race where two requests pass the lookup together.
    """
    if not 1 <= rating <= 5:
        raise PreconditionFailedError("Rating must be between 1 and 5")

    project = db.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")
    if db.get(Student, student_id) is None:
        raise NotFoundError("Student not found")

    entrepreneur = _entrepreneur_for(db, actor)
    if project.entrepreneur_id != entrepreneur.id:
        raise PermissionDeniedError("You can only review students on your own projects")
    if normalize_status(project.status) != ProjectStatus.STEP6:
        raise PreconditionFailedError("Reviews are only possible once the project is completed")
    if project.selected_student_id != student_id:
        raise PreconditionFailedError("This student did not work on the project")

    existing = get_review(db, project_id, student_id, entrepreneur.id)
    if existing is not None:
        raise DuplicateReviewError("You have already reviewed this student for this project")

    review = Review(
        project_id=project_id,
        student_id=student_id,
        entrepreneur_id=entrepreneur.id,
        rating=rating,
        comment=(comment or "").strip() or None,
    )
    db.add(review)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateReviewError("You have already reviewed this student for this project") from exc
    db.refresh(review)
    logger.info("Review %d/5 recorded for student %s on project %s", rating, student_id[:8], project_id[:8])
    return review


def get_review(db: Session, project_id: str, student_id: str, entrepreneur_id: str) -> Review | None:
    return (
        db.query(Review)
        .filter(
            Review.project_id == project_id,
            Review.student_id == student_id,
            Review.entrepreneur_id == entrepreneur_id,
        )
        .first()
    )


def list_student_reviews(db: Session, student_id: str) -> list[Review]:
    if db.get(Student, student_id) is None:
        raise NotFoundError("Student not found")
    return (
        db.query(Review)
        .filter(Review.student_id == student_id)
        .order_by(Review.created_at.desc())
        .all()
    )


def list_project_reviews(db: Session, project_id: str) -> list[Review]:
    if db.get(Project, project_id) is None:
        raise NotFoundError("Project not found")
    return (
        db.query(Review)
        .filter(Review.project_id == project_id)
        .order_by(Review.created_at.desc())
        .all()
    )


def student_rating_summary(db: Session, student_id: str) -> RatingSummary:
    count, average = (
        db.query(func.count(Review.id), func.avg(Review.rating))
        .filter(Review.student_id == student_id)
        .one()
    )
    return RatingSummary(
        student_id=student_id,
        review_count=count or 0,
        average_rating=round(float(average), 2) if average is not None else None,
    )
