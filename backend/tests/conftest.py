"""Test configuration and fixtures."""
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import tiro.models  # noqa: F401  (register mappers)
from tiro.database import Base, enable_sqlite_pragmas
from tiro.exceptions import PaymentGatewayError
from tiro.models import Entrepreneur, Project, ProposalToStudent, ProposedStudent, Student, User
from tiro.services.payment_gateway import PaymentIntent, WebhookEvent


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_pragmas(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """Create an in-memory SQLite database for tests."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


class Factory:
    """Builds committed rows with sensible defaults."""

    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def user(self, role: str = "admin", **kwargs) -> User:
        n = self._next()
        user = User(
            email=kwargs.pop("email", f"{role}{n}@example.com"),
            name=kwargs.pop("name", f"{role.title()}{n}"),
            surname=kwargs.pop("surname", "Test"),
            role=role,
            **kwargs,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def admin(self) -> User:
        return self.user("admin")

    def entrepreneur(self, **kwargs) -> Entrepreneur:
        user = self.user("entrepreneur")
        entrepreneur = Entrepreneur(user_id=user.id, company_name=kwargs.pop("company_name", "Acme"), **kwargs)
        self.db.add(entrepreneur)
        self.db.commit()
        return entrepreneur

    def student(self, available: bool = True, **kwargs) -> Student:
        user = self.user("student")
        student = Student(user_id=user.id, available=available, specialty=kwargs.pop("specialty", "web"), **kwargs)
        self.db.add(student)
        self.db.commit()
        return student

    def project(
        self,
        entrepreneur: Entrepreneur | None = None,
        status: str = "STEP1",
        price: Decimal | str | None = None,
        **kwargs,
    ) -> Project:
        entrepreneur = entrepreneur or self.entrepreneur()
        project = Project(
            title=kwargs.pop("title", f"Project {self._next()}"),
            entrepreneur_id=entrepreneur.id,
            status=status,
            price=Decimal(str(price)) if price is not None else None,
            **kwargs,
        )
        self.db.add(project)
        self.db.commit()
        return project

    def proposal(self, project: Project, student: Student, accepted: bool | None = None) -> ProposalToStudent:
        proposal = ProposalToStudent(project_id=project.id, student_id=student.id, accepted=accepted)
        self.db.add(proposal)
        self.db.commit()
        return proposal

    def proposed(self, project: Project, student: Student) -> ProposedStudent:
        row = ProposedStudent(project_id=project.id, student_id=student.id)
        self.db.add(row)
        self.db.commit()
        return row


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


class FakeDispatcher:
    def __init__(self):
        self.dispatched: list[tuple[str, list]] = []

    def dispatch(self, project_id, effects):
        self.dispatched.append((project_id, list(effects)))

    @property
    def kinds(self) -> list[str]:
        return [e.kind for _, effects in self.dispatched for e in effects]


class FakePublisher:
    def __init__(self):
        self.events: list[dict] = []

    def publish(self, project_id, event, from_status, to_status, extra=None):
        self.events.append({
            "project_id": project_id,
            "event": event,
            "from_status": from_status,
            "to_status": to_status,
        })


class FakeGateway:
    """In-memory stand-in for the Stripe adapter."""

    def __init__(self):
        self.intents: dict[str, PaymentIntent] = {}
        self.created: list[PaymentIntent] = []
        self.checkouts: list[dict] = []
        self.webhook_event: WebhookEvent | None = None

    def add_intent(self, intent_id, status, amount, project_id, currency="eur") -> PaymentIntent:
        intent = PaymentIntent(
            id=intent_id,
            status=status,
            amount=amount,
            currency=currency,
            client_secret=f"{intent_id}_secret",
            metadata={"project_id": project_id} if project_id else {},
        )
        self.intents[intent_id] = intent
        return intent

    def create_payment_intent(self, amount_minor, currency, metadata):
        intent = PaymentIntent(
            id=f"pi_{len(self.intents) + 1}",
            status="requires_payment_method",
            amount=amount_minor,
            currency=currency,
            client_secret=f"pi_{len(self.intents) + 1}_secret",
            metadata=dict(metadata),
        )
        self.intents[intent.id] = intent
        self.created.append(intent)
        return intent

    def retrieve_payment_intent(self, intent_id):
        if intent_id not in self.intents:
            raise PaymentGatewayError(f"No such payment_intent: {intent_id}")
        return self.intents[intent_id]

    def create_tip_checkout(self, amount_minor, currency, description, success_url, cancel_url, metadata):
        self.checkouts.append({
            "amount_minor": amount_minor,
            "currency": currency,
            "description": description,
            "metadata": metadata,
        })
        return f"https://checkout.test/{len(self.checkouts)}"

    def construct_webhook_event(self, payload, signature):
        if signature != "valid":
            raise PaymentGatewayError("Invalid webhook payload or signature")
        return self.webhook_event


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def gateway():
    return FakeGateway()
