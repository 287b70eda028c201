"""Tests for student reviews."""
import pytest

from tiro.exceptions import (
    DuplicateReviewError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from tiro.models import Review, User
from tiro.services import review_service


@pytest.fixture
def completed(db_session, factory):
    owner = factory.entrepreneur()
    student = factory.student()
    project = factory.project(entrepreneur=owner, status="STEP6", selected_student_id=student.id)
    return project, student, db_session.get(User, owner.user_id)


class TestCreateReview:
    def test_review_recorded(self, db_session, completed):
        project, student, owner = completed
        review = review_service.create_review(db_session, project.id, student.id, 5, owner, comment="  Great  ")
        assert review.rating == 5
        assert review.comment == "Great"

    def test_duplicate_rejected(self, db_session, completed):
        project, student, owner = completed
        review_service.create_review(db_session, project.id, student.id, 4, owner)
        with pytest.raises(DuplicateReviewError):
            review_service.create_review(db_session, project.id, student.id, 2, owner)
        assert db_session.query(Review).count() == 1

    def test_storage_constraint_catches_race(self, db_session, completed, monkeypatch):
        """Two requests pass the lookup together; the unique index decides."""
        project, student, owner = completed
        review_service.create_review(db_session, project.id, student.id, 4, owner)
        monkeypatch.setattr(review_service, "get_review", lambda *args, **kwargs: None)

        with pytest.raises(DuplicateReviewError):
            review_service.create_review(db_session, project.id, student.id, 3, owner)
        assert db_session.query(Review).count() == 1

    def test_project_must_be_completed(self, db_session, factory):
        owner = factory.entrepreneur()
        student = factory.student()
        project = factory.project(entrepreneur=owner, status="STEP5", selected_student_id=student.id)
        with pytest.raises(PreconditionFailedError):
            review_service.create_review(db_session, project.id, student.id, 5, db_session.get(User, owner.user_id))

    def test_only_selected_student(self, db_session, factory, completed):
        project, _, owner = completed
        other = factory.student()
        with pytest.raises(PreconditionFailedError):
            review_service.create_review(db_session, project.id, other.id, 5, owner)

    def test_only_owner(self, db_session, factory, completed):
        project, student, _ = completed
        stranger = factory.entrepreneur()
        with pytest.raises(PermissionDeniedError):
            review_service.create_review(
                db_session, project.id, student.id, 5, db_session.get(User, stranger.user_id),
            )

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_range(self, db_session, completed, rating):
        project, student, owner = completed
        with pytest.raises(PreconditionFailedError):
            review_service.create_review(db_session, project.id, student.id, rating, owner)

    def test_unknown_project(self, db_session, completed):
        _, student, owner = completed
        with pytest.raises(NotFoundError):
            review_service.create_review(db_session, "missing", student.id, 5, owner)


def test_rating_summary(db_session, factory):
    student = factory.student()
    for rating in (5, 4, 4):
        owner = factory.entrepreneur()
        project = factory.project(entrepreneur=owner, status="STEP6", selected_student_id=student.id)
        review_service.create_review(db_session, project.id, student.id, rating, db_session.get(User, owner.user_id))

    summary = review_service.student_rating_summary(db_session, student.id)
    assert summary.review_count == 3
    assert summary.average_rating == 4.33
    assert len(review_service.list_student_reviews(db_session, student.id)) == 3


def test_rating_summary_without_reviews(db_session, factory):
    student = factory.student()
    summary = review_service.student_rating_summary(db_session, student.id)
    assert summary.review_count == 0
    assert summary.average_rating is None
