"""Project model: the aggregate root whose ``status`` drives the lifecycle."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Text, Numeric, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tiro.database import Base


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    devis: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="STEP1")  # STEP1 .. STEP6
    entrepreneur_id: Mapped[str] = mapped_column(String(36), ForeignKey("entrepreneurs.id"), nullable=False)
    selected_student_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("students.id"), nullable=True)
    pack_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    entrepreneur = relationship("Entrepreneur")
    selected_student = relationship("Student")
    proposals = relationship("ProposalToStudent", back_populates="project", cascade="all, delete-orphan", lazy="dynamic")
    proposed_students = relationship("ProposedStudent", back_populates="project", cascade="all, delete-orphan", lazy="dynamic")
    transitions = relationship("ProjectTransition", back_populates="project", cascade="all, delete-orphan", lazy="dynamic")

    __table_args__ = (
        Index("ix_projects_status", "status"),
        Index("ix_projects_entrepreneur_id", "entrepreneur_id"),
        Index("ix_projects_payment_intent", "stripe_payment_intent_id"),
    )

    def __repr__(self) -> str:
        return f"<Project {self.title!r} ({self.id[:8]}, {self.status})>"
