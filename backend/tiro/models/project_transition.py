"""ProjectTransition model: persisted history of lifecycle status changes.

The unique ``idempotency_key`` makes re-submitting the same transition a
no-op (payment confirmations use the payment intent id as key).
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tiro.database import Base


class ProjectTransition(Base):
    __tablename__ = "project_transitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    event: Mapped[str] = mapped_column(String(40), nullable=False)
    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    project = relationship("Project", back_populates="transitions")

    __table_args__ = (Index("ix_project_transitions_project_id", "project_id"),)

    def __repr__(self) -> str:
        return f"<ProjectTransition {self.event} {self.from_status}->{self.to_status}>"
