"""Payment endpoints: project payment intents, confirmation, webhook, tips."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from tiro.api.deps import get_current_user, get_payment_service, require_role
from tiro.models import User
from tiro.schemas.payment import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    PaymentIntentRequest,
    PaymentIntentResponse,
    TipRequest,
    TipResponse,
    WebhookAck,
)
from tiro.services.payment_service import PaymentService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/intents", response_model=PaymentIntentResponse)
def create_payment_intent(
    payload: PaymentIntentRequest,
    user: User = Depends(require_role("entrepreneur")),
    payments: PaymentService = Depends(get_payment_service),
):
    created = payments.create_payment_intent(payload.project_id, user)
    return PaymentIntentResponse(
        client_secret=created.client_secret,
        payment_intent_id=created.payment_intent_id,
        amount=created.amount,
    )


@router.post("/confirm", response_model=ConfirmPaymentResponse)
def confirm_payment(
    payload: ConfirmPaymentRequest,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
):
    outcome = payments.confirm_payment(payload.payment_intent_id)
    return ConfirmPaymentResponse(
        success=outcome.success,
        payment_status=outcome.payment_status,
        project_status=outcome.project_status,
        already_confirmed=outcome.already_confirmed,
        duplicate_charge=outcome.duplicate_charge,
    )


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    payments: PaymentService = Depends(get_payment_service),
):
    payload = await request.body()
    outcome = await run_in_threadpool(payments.handle_webhook, payload, stripe_signature)
    return WebhookAck(received=True, handled=outcome is not None)


@router.post("/tips", response_model=TipResponse)
def create_tip(
    payload: TipRequest,
    user: User = Depends(require_role("entrepreneur")),
    payments: PaymentService = Depends(get_payment_service),
):
    url = payments.create_tip_checkout(payload.project_id, payload.amount, payload.student_name, user)
    return TipResponse(url=url)
