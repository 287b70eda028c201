"""SQLAlchemy ORM models package."""
from tiro.models.user import User, Entrepreneur, Student
from tiro.models.project import Project
from tiro.models.proposal import ProposalToStudent, ProposedStudent
from tiro.models.messaging import MessageGroup, MessageGroupMember, Message
from tiro.models.review import Review
from tiro.models.invoice import Invoice
from tiro.models.project_transition import ProjectTransition

__all__ = [
    "User",
    "Entrepreneur",
    "Student",
    "Project",
    "ProposalToStudent",
    "ProposedStudent",
    "MessageGroup",
    "MessageGroupMember",
    "Message",
    "Review",
    "Invoice",
    "ProjectTransition",
]
