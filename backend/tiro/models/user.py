"""User model plus the role-specific profiles (entrepreneur, student)."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, Boolean, DateTime, JSON, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tiro.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    surname: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # admin | entrepreneur | student
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("ix_users_role", "role"),)

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}".strip()

    def __repr__(self) -> str:
        return f"<User {self.email!r} ({self.role})>"


class Entrepreneur(Base):
    __tablename__ = "entrepreneurs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_role: Mapped[str | None] = mapped_column(String(255), nullable=True)
    siret: Mapped[str | None] = mapped_column(String(20), nullable=True)

    user = relationship("User")

    def __repr__(self) -> str:
        return f"<Entrepreneur {self.company_name!r} ({self.id[:8]})>"


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    biography: Mapped[str | None] = mapped_column(Text, nullable=True)
    skills: Mapped[list | None] = mapped_column(JSON, nullable=True)
    specialty: Mapped[str | None] = mapped_column(String(255), nullable=True)
    formation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    user = relationship("User")

    __table_args__ = (Index("ix_students_available", "available"),)

    def __repr__(self) -> str:
        return f"<Student {self.id[:8]} (available={self.available})>"
