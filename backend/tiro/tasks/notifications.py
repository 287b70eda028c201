"""Celery tasks for lifecycle notifications.

Receipts and proposal notifications run outside the transition's
transaction: a failed e-mail is logged and reported in the task result, it
never rolls back a status change.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from tiro.celery_app import celery_app
from tiro.database import SessionLocal
from tiro.models import Project, Student, User
from tiro.services.email_service import send_email
from tiro.services.invoice_service import get_invoice_for_intent, render_receipt

logger = logging.getLogger(__name__)

Sender = Callable[[str, str, str], None]


def deliver_payment_receipt(db: Session, payment_intent_id: str, send: Sender = send_email) -> dict:
    """E-mail the receipt for the invoice of ``payment_intent_id`` once."""
    invoice = get_invoice_for_intent(db, payment_intent_id)
    if invoice is None:
        logger.warning("No invoice for payment intent %s; receipt not sent", payment_intent_id)
        return {"sent": False, "reason": "no_invoice"}
    if invoice.emailed_at is not None:
        return {"sent": False, "reason": "already_sent", "invoice": invoice.number}
    if not invoice.recipient_email:
        logger.warning("Invoice %s has no recipient e-mail", invoice.number)
        return {"sent": False, "reason": "no_recipient", "invoice": invoice.number}

    project = db.get(Project, invoice.project_id)
    subject, body = render_receipt(invoice, project)
    send(invoice.recipient_email, subject, body)
    invoice.emailed_at = datetime.now(timezone.utc)
    db.commit()
    return {"sent": True, "invoice": invoice.number}


def deliver_proposal_notifications(
    db: Session,
    project_id: str,
    student_ids: list[str],
    send: Sender = send_email,
) -> dict:
    """Tell each student a project has been proposed to them."""
    project = db.get(Project, project_id)
    if project is None:
        logger.warning("Proposal notification for unknown project %s", project_id)
        return {"sent": 0, "failed": len(student_ids)}

    rows = (
        db.query(Student.id, User.email, User.name)
        .join(User, User.id == Student.user_id)
        .filter(Student.id.in_(student_ids))
        .all()
    )
    sent, failed = 0, 0
    for student_id, email, name in rows:
        subject = f"New project proposal: {project.title}"
        body = (
            f"Hello {name or ''},\n\n"
            f"You have been proposed for the project \"{project.title}\".\n"
            "Log in to Tiro to accept or decline the proposal.\n\n"
            "The Tiro team"
        )
        try:
            send(email, subject, body)
            sent += 1
        except Exception as exc:
            failed += 1
            logger.error("Could not notify student %s: %s", student_id[:8], exc)
    return {"sent": sent, "failed": failed}


@celery_app.task(name="notifications.send_payment_receipt")
def send_payment_receipt(payment_intent_id: str):
    db = SessionLocal()
    try:
        return deliver_payment_receipt(db, payment_intent_id)
    except Exception as e:
        logger.exception(f"Receipt e-mail failed for intent {payment_intent_id}: {e}")
        db.rollback()
        return {"error": str(e)}
    finally:
        db.close()


@celery_app.task(name="notifications.notify_students_of_proposal")
def notify_students_of_proposal(project_id: str, student_ids: list[str]):
    db = SessionLocal()
    try:
        return deliver_proposal_notifications(db, project_id, student_ids)
    except Exception as e:
        logger.exception(f"Proposal notification failed for project {project_id}: {e}")
        return {"error": str(e)}
    finally:
        db.close()
