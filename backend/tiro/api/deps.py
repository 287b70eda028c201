"""Shared FastAPI dependencies: acting user, role checks, service wiring."""
from __future__ import annotations

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from tiro.config import get_settings
from tiro.database import get_db
from tiro.models import Entrepreneur, Student, User
from tiro.services.event_publisher import LifecycleEventPublisher
from tiro.services.lifecycle_service import ProjectLifecycleService
from tiro.services.payment_gateway import StripeGateway
from tiro.services.payment_service import PaymentService
from tiro.services.side_effects import CeleryDispatcher


def get_current_user(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the acting user from the ``X-User-Id`` header."""
    if not x_user_id:
        raise HTTPException(401, "Missing X-User-Id header")
    user = db.get(User, x_user_id)
    if user is None:
        raise HTTPException(401, "Unknown user")
    return user


def require_role(*roles: str):
    """Dependency factory rejecting users whose role is not in ``roles``."""

    def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(403, f"Requires role: {', '.join(roles)}")
        return user

    return _check


def get_entrepreneur_profile(db: Session, user: User) -> Entrepreneur:
    entrepreneur = db.query(Entrepreneur).filter(Entrepreneur.user_id == user.id).first()
    if entrepreneur is None:
        raise HTTPException(403, "No entrepreneur profile for this user")
    return entrepreneur


def get_student_profile(db: Session, user: User) -> Student:
    student = db.query(Student).filter(Student.user_id == user.id).first()
    if student is None:
        raise HTTPException(403, "No student profile for this user")
    return student


def get_event_publisher() -> LifecycleEventPublisher | None:
    settings = get_settings()
    if not settings.LIFECYCLE_EVENTS_ENABLED:
        return None
    return LifecycleEventPublisher(settings.REDIS_URL)


def get_dispatcher() -> CeleryDispatcher:
    return CeleryDispatcher()


def get_payment_gateway() -> StripeGateway:
    return StripeGateway()


def get_lifecycle_service(
    db: Session = Depends(get_db),
    dispatcher: CeleryDispatcher = Depends(get_dispatcher),
    publisher: LifecycleEventPublisher | None = Depends(get_event_publisher),
) -> ProjectLifecycleService:
    return ProjectLifecycleService(db, dispatcher=dispatcher, publisher=publisher)


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
) -> PaymentService:
    return PaymentService(db, gateway, lifecycle)
