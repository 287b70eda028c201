"""Stripe payment gateway adapter.

The lifecycle treats the gateway as an external collaborator: it asks for
payment intents, re-fetches them to learn their real status, and builds
checkout sessions for tips. Everything returned is a plain dataclass so the
rest of the code (and the tests) never touch Stripe objects.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import stripe

from tiro.config import Settings, get_settings
from tiro.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntent:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class WebhookEvent:
    type: str
    intent: PaymentIntent | None = None


class PaymentGateway(Protocol):
    def create_payment_intent(self, amount_minor: int, currency: str, metadata: dict[str, str]) -> PaymentIntent: ...

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent: ...

    def create_tip_checkout(
        self,
        amount_minor: int,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> str: ...

    def construct_webhook_event(self, payload: bytes, signature: str) -> WebhookEvent: ...


def _plain_dict(obj) -> dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _to_intent(obj) -> PaymentIntent:
    return PaymentIntent(
        id=obj.id,
        status=obj.status,
        amount=int(obj.amount),
        currency=getattr(obj, "currency", None) or "",
        client_secret=getattr(obj, "client_secret", None),
        metadata={k: str(v) for k, v in _plain_dict(getattr(obj, "metadata", None)).items()},
    )


class StripeGateway:
    """``PaymentGateway`` backed by the Stripe API."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def _check_configured(self) -> None:
        if not self.settings.stripe_configured:
            raise PaymentGatewayError("STRIPE_SECRET_KEY not configured")
        stripe.api_key = self.settings.STRIPE_SECRET_KEY
        stripe.api_version = self.settings.STRIPE_API_VERSION

    def create_payment_intent(self, amount_minor: int, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        self._check_configured()
        try:
            obj = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent creation failed: {e}")
            raise PaymentGatewayError(str(e)) from e
        logger.info("Created payment intent %s (%d %s)", obj.id, amount_minor, currency)
        return _to_intent(obj)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        self._check_configured()
        try:
            obj = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent retrieval failed for {intent_id}: {e}")
            raise PaymentGatewayError(str(e)) from e
        return _to_intent(obj)

    def create_tip_checkout(
        self,
        amount_minor: int,
        currency: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> str:
        self._check_configured()
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": description},
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                }],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise PaymentGatewayError(str(e)) from e
        return session.url

    def construct_webhook_event(self, payload: bytes, signature: str) -> WebhookEvent:
        if not self.settings.STRIPE_WEBHOOK_SECRET:
            raise PaymentGatewayError("STRIPE_WEBHOOK_SECRET not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.settings.STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Rejected Stripe webhook: %s", e)
            raise PaymentGatewayError("Invalid webhook payload or signature") from e

        intent = None
        obj = event.data.object
        if getattr(obj, "object", None) == "payment_intent":
            intent = _to_intent(obj)
        return WebhookEvent(type=event.type, intent=intent)
