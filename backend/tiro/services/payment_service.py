"""Project payments: intent creation, confirmation, webhooks, and tips.

Confirmation never trusts a caller-supplied status. It re-fetches the
intent from the gateway and only moves the project to STEP5 when the
gateway says ``succeeded``. The transition is keyed on the intent id, so
repeated confirmations (client redirect and webhook both firing, double
clicks) issue the invoice and receipt exactly once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from tiro.config import get_settings
from tiro.exceptions import (
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from tiro.models import Entrepreneur, Project, User
from tiro.schemas.common import PaymentStatus, ProjectStatus
from tiro.services.lifecycle import minor_units
from tiro.services.lifecycle_service import PaymentIntentFacts, ProjectLifecycleService
from tiro.services.payment_gateway import PaymentGateway, PaymentIntent
from tiro.utils.status import normalize_status

logger = logging.getLogger(__name__)

_PAID_STATUSES = {ProjectStatus.STEP5, ProjectStatus.STEP6}


@dataclass
class IntentCreated:
    client_secret: str | None
    payment_intent_id: str
    amount: Decimal


@dataclass
class ConfirmationOutcome:
    success: bool
    payment_status: str
    project_status: str
    project_id: str
    already_confirmed: bool = False
    duplicate_charge: bool = False


class PaymentService:
    def __init__(self, db: Session, gateway: PaymentGateway, lifecycle: ProjectLifecycleService):
        self.db = db
        self.gateway = gateway
        self.lifecycle = lifecycle

    def _owned_project(self, project_id: str, actor: User) -> Project:
        project = self.db.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")
        entrepreneur = self.db.get(Entrepreneur, project.entrepreneur_id)
        if entrepreneur is None or entrepreneur.user_id != actor.id:
            raise PermissionDeniedError("You can only pay for your own projects")
        return project

    # ── Project payment ────────────────────────────────────────────────

    def create_payment_intent(self, project_id: str, actor: User) -> IntentCreated:
        project = self._owned_project(project_id, actor)
        if normalize_status(project.status) != ProjectStatus.STEP4:
            raise PreconditionFailedError("Project is not in payment phase")
        if project.price is None or project.price <= 0:
            raise PreconditionFailedError("Project price must be set before payment")

        amount_minor = minor_units(project.price)
        intent = self._reusable_intent(project, amount_minor)
        if intent is None:
            settings = get_settings()
            intent = self.gateway.create_payment_intent(
                amount_minor,
                settings.PAYMENT_CURRENCY,
                {"project_id": project.id, "project_title": project.title},
            )

        project.stripe_payment_intent_id = intent.id
        project.payment_status = PaymentStatus.PROCESSING.value
        self.db.commit()
        logger.info("Payment intent %s ready for project %s (%d)", intent.id, project.id[:8], amount_minor)
        return IntentCreated(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            amount=project.price,
        )

    def _reusable_intent(self, project: Project, amount_minor: int) -> PaymentIntent | None:
        """The project's stored intent if it can still be paid at this amount."""
        if not project.stripe_payment_intent_id:
            return None
        try:
            intent = self.gateway.retrieve_payment_intent(project.stripe_payment_intent_id)
        except PaymentGatewayError as exc:
            logger.warning(
                "Stored intent %s unusable, creating a new one: %s",
                project.stripe_payment_intent_id, exc,
            )
            return None
        if intent.status == PaymentStatus.SUCCEEDED:
            raise PreconditionFailedError("Payment has already been completed")
        if intent.amount != amount_minor or intent.status == PaymentStatus.CANCELED:
            return None
        return intent

    def confirm_payment(self, payment_intent_id: str) -> ConfirmationOutcome:
        if not payment_intent_id:
            raise PreconditionFailedError("Payment Intent ID is required")

        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        project_id = intent.metadata.get("project_id")
        if not project_id:
            raise PreconditionFailedError("Invalid payment intent: no project ID")
        project = self.db.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")

        status = normalize_status(project.status)
        current = project.stripe_payment_intent_id == intent.id

        if intent.status != PaymentStatus.SUCCEEDED:
            # Only the pending intent of an unpaid project may move payment_status.
            if current and status == ProjectStatus.STEP4:
                project.payment_status = intent.status
                self.db.commit()
                logger.info("Intent %s for project %s is %s; status unchanged", intent.id, project.id[:8], intent.status)
            else:
                logger.info(
                    "Intent %s (%s) is not the pending payment of project %s; nothing recorded",
                    intent.id, intent.status, project.id[:8],
                )
            return ConfirmationOutcome(
                success=True,
                payment_status=intent.status,
                project_status=project.status,
                project_id=project.id,
            )

        if status in _PAID_STATUSES:
            if current:
                logger.info("Intent %s already confirmed for project %s", intent.id, project.id[:8])
                return ConfirmationOutcome(
                    success=True,
                    payment_status=intent.status,
                    project_status=project.status,
                    project_id=project.id,
                    already_confirmed=True,
                )
            logger.warning(
                "Project %s already paid with %s; second succeeded intent %s (%s) needs a refund",
                project.id[:8], project.stripe_payment_intent_id, intent.id, intent.amount,
            )
            return ConfirmationOutcome(
                success=False,
                payment_status=intent.status,
                project_status=project.status,
                project_id=project.id,
                duplicate_charge=True,
            )

        result = self.lifecycle.confirm_payment(
            project.id,
            PaymentIntentFacts(
                id=intent.id,
                status=intent.status,
                amount=intent.amount,
                project_id=project_id,
            ),
        )
        return ConfirmationOutcome(
            success=True,
            payment_status=intent.status,
            project_status=result.project.status,
            project_id=project.id,
            already_confirmed=result.replayed,
        )

    def handle_webhook(self, payload: bytes, signature: str) -> ConfirmationOutcome | None:
        event = self.gateway.construct_webhook_event(payload, signature)
        if event.type != "payment_intent.succeeded" or event.intent is None:
            logger.info("Ignoring webhook event %s", event.type)
            return None
        return self.confirm_payment(event.intent.id)

    # ── Tips ───────────────────────────────────────────────────────────

    def create_tip_checkout(
        self,
        project_id: str,
        amount: Decimal | float | str,
        student_name: str,
        actor: User,
    ) -> str:
        settings = get_settings()
        try:
            amount = Decimal(str(amount))
        except InvalidOperation as exc:
            raise PreconditionFailedError("Invalid tip amount") from exc
        if amount < settings.TIP_MIN_AMOUNT:
            raise PreconditionFailedError(f"Minimum tip is {settings.TIP_MIN_AMOUNT}")
        if amount > settings.TIP_MAX_AMOUNT:
            raise PreconditionFailedError(f"Maximum tip is {settings.TIP_MAX_AMOUNT}")

        project = self._owned_project(project_id, actor)
        if not project.selected_student_id:
            raise PreconditionFailedError("Project has no student to tip")
        if normalize_status(project.status) not in _PAID_STATUSES:
            raise PreconditionFailedError("Tips are only possible once the project is active")

        base = settings.FRONTEND_URL.rstrip("/")
        return self.gateway.create_tip_checkout(
            minor_units(amount),
            settings.PAYMENT_CURRENCY,
            f"Tip for {student_name}".strip(),
            success_url=f"{base}/projects/{project.id}?tip=success",
            cancel_url=f"{base}/projects/{project.id}?tip=cancelled",
            metadata={
                "project_id": project.id,
                "student_id": project.selected_student_id,
                "type": "tip",
            },
        )
