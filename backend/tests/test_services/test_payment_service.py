"""Tests for project payments and tips."""
from decimal import Decimal

import pytest

from tiro.exceptions import PaymentGatewayError, PermissionDeniedError, PreconditionFailedError
from tiro.models import Invoice, Project, User
from tiro.services.lifecycle_service import ProjectLifecycleService
from tiro.services.payment_gateway import PaymentIntent, WebhookEvent
from tiro.services.payment_service import PaymentService


@pytest.fixture
def payments(db_session, gateway, dispatcher, publisher):
    lifecycle = ProjectLifecycleService(db_session, dispatcher=dispatcher, publisher=publisher)
    return PaymentService(db_session, gateway, lifecycle)


@pytest.fixture
def awaiting_payment(db_session, factory):
    owner = factory.entrepreneur()
    student = factory.student(available=False)
    project = factory.project(entrepreneur=owner, status="STEP4", price="500.00", selected_student_id=student.id)
    return project, db_session.get(User, owner.user_id)


class TestCreatePaymentIntent:
    def test_amount_in_minor_units(self, db_session, payments, gateway, awaiting_payment):
        project, owner = awaiting_payment

        created = payments.create_payment_intent(project.id, owner)

        assert gateway.created[0].amount == 50000
        assert gateway.created[0].metadata["project_id"] == project.id
        assert created.amount == Decimal("500.00")
        project = db_session.get(Project, project.id)
        assert project.stripe_payment_intent_id == created.payment_intent_id
        assert project.payment_status == "processing"

    def test_reuses_pending_intent(self, payments, gateway, awaiting_payment):
        project, owner = awaiting_payment
        first = payments.create_payment_intent(project.id, owner)
        second = payments.create_payment_intent(project.id, owner)
        assert first.payment_intent_id == second.payment_intent_id
        assert len(gateway.created) == 1

    def test_new_intent_when_price_changed(self, db_session, payments, gateway, awaiting_payment):
        project, owner = awaiting_payment
        payments.create_payment_intent(project.id, owner)
        db_session.get(Project, project.id).price = Decimal("600.00")
        db_session.commit()

        payments.create_payment_intent(project.id, owner)
        assert [i.amount for i in gateway.created] == [50000, 60000]

    def test_already_paid_intent(self, payments, gateway, awaiting_payment):
        project, owner = awaiting_payment
        created = payments.create_payment_intent(project.id, owner)
        gateway.intents[created.payment_intent_id].status = "succeeded"
        with pytest.raises(PreconditionFailedError):
            payments.create_payment_intent(project.id, owner)

    def test_wrong_status(self, db_session, factory, payments):
        owner = factory.entrepreneur()
        project = factory.project(entrepreneur=owner, status="STEP3", price="10")
        with pytest.raises(PreconditionFailedError):
            payments.create_payment_intent(project.id, db_session.get(User, owner.user_id))

    def test_price_required(self, db_session, factory, payments):
        owner = factory.entrepreneur()
        project = factory.project(entrepreneur=owner, status="STEP4")
        with pytest.raises(PreconditionFailedError):
            payments.create_payment_intent(project.id, db_session.get(User, owner.user_id))

    def test_only_owner(self, db_session, factory, payments, awaiting_payment):
        project, _ = awaiting_payment
        stranger = factory.entrepreneur()
        with pytest.raises(PermissionDeniedError):
            payments.create_payment_intent(project.id, db_session.get(User, stranger.user_id))


class TestConfirmPayment:
    def test_success_moves_to_step5_with_one_invoice(self, db_session, payments, gateway, dispatcher, awaiting_payment):
        project, owner = awaiting_payment
        created = payments.create_payment_intent(project.id, owner)
        gateway.intents[created.payment_intent_id].status = "succeeded"

        first = payments.confirm_payment(created.payment_intent_id)
        second = payments.confirm_payment(created.payment_intent_id)

        assert first.project_status == "STEP5"
        assert first.already_confirmed is False
        assert second.already_confirmed is True
        invoices = db_session.query(Invoice).all()
        assert len(invoices) == 1
        assert invoices[0].amount_minor == 50000
        assert dispatcher.kinds == ["send_receipt"]

    @pytest.mark.parametrize("status", ["processing", "requires_payment_method", "canceled"])
    def test_unsuccessful_intent_leaves_status(self, db_session, payments, gateway, awaiting_payment, status):
        project, owner = awaiting_payment
        created = payments.create_payment_intent(project.id, owner)
        gateway.intents[created.payment_intent_id].status = status

        outcome = payments.confirm_payment(created.payment_intent_id)

        assert outcome.project_status == "STEP4"
        assert outcome.payment_status == status
        project = db_session.get(Project, project.id)
        assert project.status == "STEP4"
        assert project.payment_status == status
        assert db_session.query(Invoice).count() == 0

    def test_stale_intent_does_not_touch_paid_project(self, db_session, payments, gateway, awaiting_payment):
        project, _ = awaiting_payment
        gateway.add_intent("pi_new", "succeeded", 50000, project.id)
        payments.confirm_payment("pi_new")
        gateway.add_intent("pi_old", "requires_payment_method", 50000, project.id)

        outcome = payments.confirm_payment("pi_old")

        assert outcome.payment_status == "requires_payment_method"
        assert outcome.project_status == "STEP5"
        db_session.expire_all()
        project = db_session.get(Project, project.id)
        assert project.payment_status == "succeeded"
        assert project.stripe_payment_intent_id == "pi_new"

    def test_unknown_pending_intent_is_not_recorded(self, db_session, payments, gateway, awaiting_payment):
        project, owner = awaiting_payment
        payments.create_payment_intent(project.id, owner)
        gateway.add_intent("pi_other", "canceled", 50000, project.id)

        payments.confirm_payment("pi_other")

        db_session.expire_all()
        assert db_session.get(Project, project.id).payment_status == "processing"

    def test_second_succeeded_intent_is_acknowledged(self, db_session, payments, gateway, dispatcher, awaiting_payment):
        project, _ = awaiting_payment
        gateway.add_intent("pi_a", "succeeded", 50000, project.id)
        payments.confirm_payment("pi_a")
        gateway.add_intent("pi_b", "succeeded", 50000, project.id)

        outcome = payments.confirm_payment("pi_b")

        assert outcome.duplicate_charge is True
        assert outcome.success is False
        assert outcome.project_status == "STEP5"
        db_session.expire_all()
        assert db_session.get(Project, project.id).stripe_payment_intent_id == "pi_a"
        assert db_session.query(Invoice).count() == 1
        assert dispatcher.kinds == ["send_receipt"]

    def test_caller_status_is_never_trusted(self, db_session, payments, gateway, awaiting_payment):
        project, _ = awaiting_payment
        gateway.add_intent("pi_x", "processing", 50000, project.id)
        payments.confirm_payment("pi_x")
        assert db_session.get(Project, project.id).status == "STEP4"

    def test_intent_without_project(self, payments, gateway):
        gateway.add_intent("pi_orphan", "succeeded", 100, None)
        with pytest.raises(PreconditionFailedError):
            payments.confirm_payment("pi_orphan")

    def test_unknown_intent(self, payments):
        with pytest.raises(PaymentGatewayError):
            payments.confirm_payment("pi_missing")

    def test_amount_mismatch_rejected(self, db_session, payments, gateway, awaiting_payment):
        project, _ = awaiting_payment
        gateway.add_intent("pi_low", "succeeded", 100, project.id)
        with pytest.raises(PreconditionFailedError):
            payments.confirm_payment("pi_low")
        assert db_session.get(Project, project.id).status == "STEP4"


class TestWebhook:
    def test_succeeded_event_confirms(self, db_session, payments, gateway, awaiting_payment):
        project, _ = awaiting_payment
        intent = gateway.add_intent("pi_hook", "succeeded", 50000, project.id)
        gateway.webhook_event = WebhookEvent(type="payment_intent.succeeded", intent=intent)

        outcome = payments.handle_webhook(b"{}", "valid")

        assert outcome.project_status == "STEP5"

    def test_duplicate_charge_event_is_handled(self, payments, gateway, awaiting_payment):
        project, _ = awaiting_payment
        gateway.add_intent("pi_a", "succeeded", 50000, project.id)
        payments.confirm_payment("pi_a")
        intent = gateway.add_intent("pi_b", "succeeded", 50000, project.id)
        gateway.webhook_event = WebhookEvent(type="payment_intent.succeeded", intent=intent)

        outcome = payments.handle_webhook(b"{}", "valid")

        assert outcome is not None
        assert outcome.duplicate_charge is True

    def test_other_events_ignored(self, payments, gateway):
        gateway.webhook_event = WebhookEvent(type="charge.refunded")
        assert payments.handle_webhook(b"{}", "valid") is None

    def test_bad_signature(self, payments):
        with pytest.raises(PaymentGatewayError):
            payments.handle_webhook(b"{}", "forged")


class TestTips:
    def _active(self, db_session, factory, status="STEP5"):
        owner = factory.entrepreneur()
        student = factory.student()
        project = factory.project(entrepreneur=owner, status=status, price="100", selected_student_id=student.id)
        return project, db_session.get(User, owner.user_id)

    def test_checkout_created(self, db_session, factory, payments, gateway):
        project, owner = self._active(db_session, factory)
        url = payments.create_tip_checkout(project.id, "25.50", "Alice", owner)
        assert url.startswith("https://checkout.test/")
        assert gateway.checkouts[0]["amount_minor"] == 2550
        assert gateway.checkouts[0]["metadata"]["type"] == "tip"

    @pytest.mark.parametrize("amount", ["0.50", "10001", "abc"])
    def test_amount_bounds(self, db_session, factory, payments, amount):
        project, owner = self._active(db_session, factory)
        with pytest.raises(PreconditionFailedError):
            payments.create_tip_checkout(project.id, amount, "Alice", owner)

    def test_project_must_be_active(self, db_session, factory, payments):
        project, owner = self._active(db_session, factory, status="STEP4")
        with pytest.raises(PreconditionFailedError):
            payments.create_tip_checkout(project.id, "10", "Alice", owner)

    def test_needs_selected_student(self, db_session, factory, payments):
        owner = factory.entrepreneur()
        project = factory.project(entrepreneur=owner, status="STEP6")
        with pytest.raises(PreconditionFailedError):
            payments.create_tip_checkout(project.id, "10", "Alice", db_session.get(User, owner.user_id))


def test_intent_dataclass_defaults():
    intent = PaymentIntent(id="pi", status="succeeded", amount=1, currency="eur")
    assert intent.metadata == {}
    assert intent.client_secret is None
