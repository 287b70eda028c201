"""Junction tables linking students to projects during staffing."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tiro.database import Base


class ProposalToStudent(Base):
    """A project offered to a student; ``accepted`` is None while pending."""

    __tablename__ = "proposal_to_student"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    accepted: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    project = relationship("Project", back_populates="proposals")
    student = relationship("Student")

    __table_args__ = (
        UniqueConstraint("project_id", "student_id", name="uq_proposal_to_student"),
        Index("ix_proposal_to_student_student_id", "student_id"),
    )

    def __repr__(self) -> str:
        return f"<ProposalToStudent {self.project_id[:8]}/{self.student_id[:8]} accepted={self.accepted}>"


class ProposedStudent(Base):
    """A student put forward by an admin for the entrepreneur's final choice."""

    __tablename__ = "proposed_student"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    project = relationship("Project", back_populates="proposed_students")
    student = relationship("Student")

    __table_args__ = (
        UniqueConstraint("project_id", "student_id", name="uq_proposed_student"),
    )

    def __repr__(self) -> str:
        return f"<ProposedStudent {self.project_id[:8]}/{self.student_id[:8]}>"
