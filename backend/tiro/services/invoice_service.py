"""Invoice generation for captured project payments.

One invoice per payment intent: ``generate_invoice`` returns the existing
row when called again for the same intent, and the unique column on
``payment_intent_id`` backs that up at the storage level.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from tiro.config import get_settings
from tiro.models import Entrepreneur, Invoice, Project, User

logger = logging.getLogger(__name__)


def get_invoice_for_intent(db: Session, payment_intent_id: str) -> Invoice | None:
    return db.query(Invoice).filter(Invoice.payment_intent_id == payment_intent_id).first()


def _next_number(db: Session, year: int) -> str:
    prefix = f"{get_settings().INVOICE_PREFIX}-{year}-"
    issued = db.query(func.count(Invoice.id)).filter(Invoice.number.like(f"{prefix}%")).scalar() or 0
    return f"{prefix}{issued + 1:06d}"


def generate_invoice(
    db: Session,
    project: Project,
    payment_intent_id: str,
    amount_minor: int,
    currency: str | None = None,
) -> Invoice:
    """Create (or return the existing) invoice for a captured payment intent."""
    existing = get_invoice_for_intent(db, payment_intent_id)
    if existing is not None:
        logger.info("Invoice %s already issued for intent %s", existing.number, payment_intent_id)
        return existing

    recipient = (
        db.query(User.email)
        .join(Entrepreneur, Entrepreneur.user_id == User.id)
        .filter(Entrepreneur.id == project.entrepreneur_id)
        .scalar()
    )
    invoice = Invoice(
        number=_next_number(db, datetime.now(timezone.utc).year),
        project_id=project.id,
        payment_intent_id=payment_intent_id,
        amount_minor=amount_minor,
        currency=(currency or get_settings().PAYMENT_CURRENCY).lower(),
        recipient_email=recipient,
    )
    db.add(invoice)
    db.flush()
    logger.info(
        "Issued invoice %s for project %s (%d %s)",
        invoice.number, project.id[:8], amount_minor, invoice.currency,
    )
    return invoice


def format_amount(amount_minor: int, currency: str) -> str:
    major = (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))
    return f"{major} {currency.upper()}"


def render_receipt(invoice: Invoice, project: Project) -> tuple[str, str]:
    """Return the (subject, plain-text body) of the payment receipt e-mail."""
    subject = f"Payment receipt {invoice.number} - {project.title}"
    issued = invoice.created_at.strftime("%Y-%m-%d") if invoice.created_at else ""
    body = "\n".join([
        "Hello,",
        "",
        f"We have received your payment for the project \"{project.title}\".",
        "",
        f"Invoice number: {invoice.number}",
        f"Date: {issued}",
        f"Amount paid: {format_amount(invoice.amount_minor, invoice.currency)}",
        f"Payment reference: {invoice.payment_intent_id}",
        "",
        "Your project is now active and the selected student has joined the project conversation.",
        "",
        "The Tiro team",
    ])
    return subject, body
