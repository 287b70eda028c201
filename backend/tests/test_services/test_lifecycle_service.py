"""Tests for the lifecycle orchestration service."""
from decimal import Decimal

import pytest
from sqlalchemy import update

from tiro.exceptions import (
    ConcurrentUpdateError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    TransitionNotAllowedError,
)
from tiro.models import Invoice, Message, Project, ProjectTransition, ProposalToStudent, ProposedStudent, Student
from tiro.services import messaging_service
from tiro.services.lifecycle_service import PaymentIntentFacts, ProjectLifecycleService


@pytest.fixture
def service(db_session, dispatcher, publisher):
    return ProjectLifecycleService(db_session, dispatcher=dispatcher, publisher=publisher)


def _user_of(db, entrepreneur):
    from tiro.models import User
    return db.get(User, entrepreneur.user_id)


class TestStaffingScenario:
    def test_proposals_to_selection(self, db_session, factory, service, publisher):
        """Three students accept, admin proposes them, the owner picks B."""
        admin = factory.admin()
        owner = factory.entrepreneur()
        a, b, c = factory.student(), factory.student(), factory.student()
        project = factory.project(entrepreneur=owner, price="500.00")

        result = service.send_proposals(project.id, [a.id, b.id, c.id], admin)
        assert result.to_status == "STEP2"
        assert db_session.query(ProposalToStudent).filter_by(project_id=project.id).count() == 3

        for student in (a, b, c):
            service.respond_to_proposal(project.id, student, accepted=True)

        result = service.propose_to_entrepreneur(project.id, None, admin)
        assert result.to_status == "STEP3"
        assert db_session.query(ProposedStudent).filter_by(project_id=project.id).count() == 3
        db_session.expire_all()
        assert all(not db_session.get(Student, s.id).available for s in (a, b, c))

        result = service.select_student(project.id, b.id, _user_of(db_session, owner))
        assert result.to_status == "STEP4"

        db_session.expire_all()
        assert db_session.get(Student, b.id).available is False
        assert db_session.get(Student, a.id).available is True
        assert db_session.get(Student, c.id).available is True
        project = db_session.get(Project, project.id)
        assert project.selected_student_id == b.id
        assert project.status == "STEP4"

        group = messaging_service.get_project_group(db_session, project.id)
        assert messaging_service.is_member(db_session, group.id, b.user_id)
        assert [e["to_status"] for e in publisher.events] == ["STEP2", "STEP3", "STEP4"]

    def test_history_records_each_transition(self, db_session, factory, service):
        admin = factory.admin()
        student = factory.student()
        project = factory.project()

        service.send_proposals(project.id, [student.id], admin)
        history = service.history(project.id)
        assert [(h.event, h.from_status, h.to_status) for h in history] == [
            ("send_proposals", "STEP1", "STEP2"),
        ]
        assert history[0].actor_id == admin.id

    def test_send_proposals_queues_notifications(self, factory, service, dispatcher):
        admin = factory.admin()
        student = factory.student()
        project = factory.project()

        service.send_proposals(project.id, [student.id], admin)
        assert dispatcher.kinds == ["notify_students"]

    def test_unknown_student(self, factory, service):
        admin = factory.admin()
        project = factory.project()
        with pytest.raises(NotFoundError):
            service.send_proposals(project.id, ["missing"], admin)


class TestGuards:
    def test_respond_only_in_step2(self, factory, service):
        student = factory.student()
        project = factory.project(status="STEP3")
        factory.proposal(project, student)
        with pytest.raises(PreconditionFailedError):
            service.respond_to_proposal(project.id, student, accepted=True)

    def test_accepting_does_not_select(self, db_session, factory, service):
        student = factory.student()
        project = factory.project(status="STEP2")
        factory.proposal(project, student)
        service.respond_to_proposal(project.id, student, accepted=True)
        assert db_session.get(Project, project.id).selected_student_id is None

    def test_only_owner_selects(self, db_session, factory, service):
        student = factory.student()
        project = factory.project(status="STEP3")
        factory.proposed(project, student)
        stranger = factory.entrepreneur()
        with pytest.raises(PermissionDeniedError):
            service.select_student(project.id, student.id, _user_of(db_session, stranger))

    def test_cannot_skip_steps(self, factory, service):
        admin = factory.admin()
        project = factory.project(status="STEP1")
        with pytest.raises(TransitionNotAllowedError):
            service.complete_project(project.id, admin)

    def test_failed_guard_writes_nothing(self, db_session, factory, service, publisher):
        admin = factory.admin()
        project = factory.project(status="STEP2")
        with pytest.raises(PreconditionFailedError):
            service.propose_to_entrepreneur(project.id, None, admin)
        assert db_session.get(Project, project.id).status == "STEP2"
        assert db_session.query(ProjectTransition).count() == 0
        assert publisher.events == []

    def test_no_step4_without_selection(self, db_session, factory, service):
        owner = factory.entrepreneur()
        project = factory.project(entrepreneur=owner, status="STEP3")
        with pytest.raises(PreconditionFailedError):
            service.select_student(project.id, "", _user_of(db_session, owner))
        assert db_session.get(Project, project.id).status == "STEP3"


class TestIdempotencyAndConcurrency:
    def test_replayed_key_has_no_second_effect(self, db_session, factory, service, dispatcher):
        admin = factory.admin()
        student = factory.student()
        project = factory.project()

        first = service.send_proposals(project.id, [student.id], admin, idempotency_key="k1")
        second = service.send_proposals(project.id, [student.id], admin, idempotency_key="k1")

        assert first.replayed is False
        assert second.replayed is True
        assert second.to_status == "STEP2"
        assert db_session.query(ProjectTransition).count() == 1
        assert dispatcher.kinds == ["notify_students"]

    def test_key_reused_for_other_transition(self, factory, service):
        admin = factory.admin()
        student = factory.student()
        project = factory.project()
        service.send_proposals(project.id, [student.id], admin, idempotency_key="k1")
        with pytest.raises(PreconditionFailedError):
            service.complete_project(project.id, admin, idempotency_key="k1")

    def test_stale_status_raises_concurrent_update(self, db_session, factory, service, monkeypatch):
        admin = factory.admin()
        project = factory.project(status="STEP5")

        original = service._build_context

        def racing_build_context(p, actor, **facts):
            ctx = original(p, actor, **facts)
            # another writer moves the row after it was read
            db_session.execute(
                update(Project)
                .where(Project.id == p.id)
                .values(status="STEP6")
                .execution_options(synchronize_session=False)
            )
            return ctx

        monkeypatch.setattr(service, "_build_context", racing_build_context)
        with pytest.raises(ConcurrentUpdateError):
            service.complete_project(project.id, admin)
        assert db_session.query(ProjectTransition).count() == 0
        assert db_session.get(Project, project.id).status == "STEP5"


class TestPaymentAndCompletion:
    def _paid_ready(self, factory):
        owner = factory.entrepreneur()
        student = factory.student(available=False)
        project = factory.project(entrepreneur=owner, status="STEP4", price="500.00", selected_student_id=student.id)
        return project, student

    def test_confirm_payment_once(self, db_session, factory, service, dispatcher):
        project, student = self._paid_ready(factory)
        facts = PaymentIntentFacts(id="pi_1", status="succeeded", amount=50000, project_id=project.id)

        first = service.confirm_payment(project.id, facts)
        second = service.confirm_payment(project.id, facts)

        assert first.to_status == "STEP5"
        assert second.replayed is True
        invoices = db_session.query(Invoice).all()
        assert len(invoices) == 1
        assert invoices[0].amount_minor == 50000
        assert dispatcher.kinds == ["send_receipt"]

        project = db_session.get(Project, project.id)
        assert project.payment_status == "succeeded"
        assert project.stripe_payment_intent_id == "pi_1"
        group = messaging_service.get_project_group(db_session, project.id)
        assert messaging_service.is_member(db_session, group.id, student.user_id)

    def test_invoice_failure_keeps_status_change(self, db_session, factory, service, dispatcher, monkeypatch):
        project, _ = self._paid_ready(factory)

        def broken(*args, **kwargs):
            raise RuntimeError("numbering service down")

        monkeypatch.setattr("tiro.services.invoice_service.generate_invoice", broken)
        service.confirm_payment(
            project.id, PaymentIntentFacts(id="pi_9", status="succeeded", amount=50000, project_id=project.id),
        )
        assert db_session.get(Project, project.id).status == "STEP5"
        assert db_session.query(Invoice).count() == 0
        assert "send_receipt" not in dispatcher.kinds

    def test_complete_releases_student(self, db_session, factory, service):
        admin = factory.admin()
        student = factory.student(available=False)
        project = factory.project(status="STEP5", selected_student_id=student.id)

        result = service.complete_project(project.id, admin)

        assert result.to_status == "STEP6"
        db_session.expire_all()
        assert db_session.get(Student, student.id).available is True
        texts = [m.content for m in db_session.query(Message).all()]
        assert any("marked as completed" in t for t in texts)

    def test_available_events_respect_ownership(self, db_session, factory, service):
        owner = factory.entrepreneur()
        other = factory.entrepreneur()
        project = factory.project(entrepreneur=owner, status="STEP3")
        assert service.available_events(project, _user_of(db_session, owner)) == ["select_student"]
        assert service.available_events(project, _user_of(db_session, other)) == []


def test_price_is_decimal(factory):
    project = factory.project(price="19.99")
    assert project.price == Decimal("19.99")
