"""Project lifecycle orchestration.

Applies the transitions planned by ``tiro.services.lifecycle`` against the
database. Each transition is one unit of work:

  1. replay check on the idempotency key (a seen key returns the recorded
     outcome and fires nothing),
  2. load the project and the facts its guards need,
  3. plan the transition (pure),
  4. conditional status update (``WHERE status = <read value>``) so a
     concurrent writer is detected instead of silently overwritten,
  5. run the transactional side effects and record a ``ProjectTransition``,
  6. commit, then hand deferred side effects to the dispatcher and publish
     the lifecycle event.

Any exception before the commit rolls the whole transition back.

Usage:
    service = ProjectLifecycleService(db, dispatcher=CeleryDispatcher())
    result = service.select_student(project_id, student_id, actor=user)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tiro.exceptions import (
    ConcurrentUpdateError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from tiro.models import (
    Entrepreneur,
    Project,
    ProjectTransition,
    ProposalToStudent,
    ProposedStudent,
    Student,
    User,
)
from tiro.schemas.common import ProjectStatus
from tiro.services import availability_service, invoice_service, messaging_service
from tiro.services.event_publisher import LifecycleEventPublisher
from tiro.services.lifecycle import (
    SYSTEM_ROLE,
    AddStudentToGroup,
    CreateProposals,
    GenerateInvoice,
    LifecycleEvent,
    PostMessage,
    ProposeStudents,
    RecordPayment,
    ReleaseStudent,
    SelectStudent,
    SendReceipt,
    SetStudentsUnavailable,
    SideEffect,
    TransitionContext,
    apply_transition,
    available_events,
)
from tiro.services.side_effects import SideEffectDispatcher
from tiro.utils.status import normalize_status

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntentFacts:
    """The subset of a gateway payment intent the confirmation guard reads."""
    id: str
    status: str
    amount: int | None
    project_id: str | None


@dataclass
class TransitionResult:
    project: Project
    event: LifecycleEvent
    from_status: str
    to_status: str
    replayed: bool = False
    effects: list[SideEffect] = field(default_factory=list)


class ProjectLifecycleService:
    """Runs lifecycle transitions as single transactions."""

    def __init__(
        self,
        db: Session,
        dispatcher: SideEffectDispatcher | None = None,
        publisher: LifecycleEventPublisher | None = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.publisher = publisher

    # ── Queries ────────────────────────────────────────────────────────

    def get_project(self, project_id: str, for_update: bool = False) -> Project:
        query = self.db.query(Project).filter(Project.id == project_id)
        if for_update:
            query = query.with_for_update()
        project = query.first()
        if project is None:
            raise NotFoundError("Project not found")
        return project

    def available_events(self, project: Project, user: User) -> list[str]:
        role = user.role
        if role == "entrepreneur" and not self._owns(project, user):
            return []
        return [e.value for e in available_events(project.status, role)]

    def history(self, project_id: str) -> list[ProjectTransition]:
        self.get_project(project_id)
        return (
            self.db.query(ProjectTransition)
            .filter(ProjectTransition.project_id == project_id)
            .order_by(ProjectTransition.created_at.asc())
            .all()
        )

    # ── Transitions ────────────────────────────────────────────────────

    def send_proposals(
        self,
        project_id: str,
        student_ids: list[str],
        actor: User,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """STEP1 → STEP2: offer the project to a shortlist of students."""
        self._check_students_exist(student_ids)
        return self._run(
            project_id, LifecycleEvent.SEND_PROPOSALS, actor, idempotency_key,
            requested_student_ids=tuple(student_ids),
        )

    def propose_to_entrepreneur(
        self,
        project_id: str,
        student_ids: list[str] | None,
        actor: User,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """STEP2 → STEP3: put accepted students forward to the entrepreneur."""
        return self._run(
            project_id, LifecycleEvent.PROPOSE_TO_ENTREPRENEUR, actor, idempotency_key,
            requested_student_ids=tuple(student_ids or ()),
        )

    def select_student(
        self,
        project_id: str,
        student_id: str,
        actor: User,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """STEP3 → STEP4: the owning entrepreneur picks the student."""
        project = self.get_project(project_id)
        if actor.role == "entrepreneur" and not self._owns(project, actor):
            raise PermissionDeniedError("Only the project owner can select a student")
        return self._run(
            project_id, LifecycleEvent.SELECT_STUDENT, actor, idempotency_key,
            chosen_student_id=student_id,
        )

    def confirm_payment(self, project_id: str, intent: PaymentIntentFacts) -> TransitionResult:
        """STEP4 → STEP5, keyed on the payment intent id so it applies once."""
        return self._run(
            project_id, LifecycleEvent.CONFIRM_PAYMENT, None, intent.id,
            payment_intent_id=intent.id,
            payment_status=intent.status,
            payment_amount=intent.amount,
            payment_project_id=intent.project_id,
        )

    def complete_project(
        self,
        project_id: str,
        actor: User,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """STEP5 → STEP6: release the student and announce completion."""
        return self._run(project_id, LifecycleEvent.COMPLETE, actor, idempotency_key)

    def respond_to_proposal(self, project_id: str, student: Student, accepted: bool) -> ProposalToStudent:
        """Record a student's own answer to a proposal (no status change)."""
        project = self.get_project(project_id)
        if normalize_status(project.status) != ProjectStatus.STEP2:
            raise PreconditionFailedError(
                "Proposals can only be answered while the project awaits student acceptance"
            )
        proposal = (
            self.db.query(ProposalToStudent)
            .filter(ProposalToStudent.project_id == project_id, ProposalToStudent.student_id == student.id)
            .first()
        )
        if proposal is None:
            raise NotFoundError("No proposal for this student on this project")
        proposal.accepted = accepted
        self.db.commit()
        self.db.refresh(proposal)
        logger.info(
            "Student %s %s proposal for project %s",
            student.id[:8], "accepted" if accepted else "declined", project_id[:8],
        )
        return proposal

    # ── Internals ──────────────────────────────────────────────────────

    def _run(
        self,
        project_id: str,
        event: LifecycleEvent,
        actor: User | None,
        idempotency_key: str | None,
        **request_facts,
    ) -> TransitionResult:
        try:
            replay = self._replay(project_id, event, idempotency_key)
            if replay is not None:
                return replay

            project = self.get_project(project_id, for_update=True)
            from_status = project.status
            ctx = self._build_context(project, actor, **request_facts)
            new_status, effects = apply_transition(from_status, event, ctx)

            updated = self.db.execute(
                update(Project)
                .where(Project.id == project.id, Project.status == from_status)
                .values(status=new_status.value, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            ).rowcount
            if updated != 1:
                raise ConcurrentUpdateError("Project status changed concurrently; reload and retry")
            self.db.expire(project, ["status", "updated_at"])

            invoiced = True
            for effect in effects:
                if not effect.transactional:
                    continue
                done = self._execute(project, effect, actor)
                if isinstance(effect, GenerateInvoice):
                    invoiced = done

            self.db.add(ProjectTransition(
                project_id=project.id,
                event=event.value,
                from_status=from_status,
                to_status=new_status.value,
                actor_id=actor.id if actor else None,
                idempotency_key=idempotency_key,
            ))
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("Transition %s on %s hit a constraint: %s", event.value, project_id[:8], exc)
            raise ConcurrentUpdateError("Transition was applied concurrently") from exc
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(project)
        logger.info(
            "Project %s: %s %s -> %s (actor=%s)",
            project.id[:8], event.value, from_status, new_status.value,
            actor.id[:8] if actor else SYSTEM_ROLE,
        )

        deferred = [e for e in effects if not e.transactional]
        if not invoiced:
            deferred = [e for e in deferred if not isinstance(e, SendReceipt)]
            logger.warning("Project %s: no invoice, receipt e-mail skipped", project.id[:8])
        if deferred and self.dispatcher is not None:
            self.dispatcher.dispatch(project.id, deferred)
        if self.publisher is not None:
            self.publisher.publish(project.id, event.value, from_status, new_status.value)

        return TransitionResult(
            project=project,
            event=event,
            from_status=from_status,
            to_status=new_status.value,
            effects=effects,
        )

    def _replay(
        self,
        project_id: str,
        event: LifecycleEvent,
        idempotency_key: str | None,
    ) -> TransitionResult | None:
        if not idempotency_key:
            return None
        prior = (
            self.db.query(ProjectTransition)
            .filter(ProjectTransition.idempotency_key == idempotency_key)
            .first()
        )
        if prior is None:
            return None
        if prior.project_id != project_id or prior.event != event.value:
            raise PreconditionFailedError("Idempotency key was already used for a different transition")
        logger.info("Replaying %s for project %s (key %s)", event.value, project_id[:8], idempotency_key)
        return TransitionResult(
            project=self.get_project(project_id),
            event=event,
            from_status=prior.from_status,
            to_status=prior.to_status,
            replayed=True,
        )

    def _build_context(self, project: Project, actor: User | None, **request_facts) -> TransitionContext:
        proposals = (
            self.db.query(ProposalToStudent.student_id, ProposalToStudent.accepted)
            .filter(ProposalToStudent.project_id == project.id)
            .all()
        )
        proposed = (
            self.db.query(ProposedStudent.student_id)
            .filter(ProposedStudent.project_id == project.id)
            .all()
        )
        return TransitionContext(
            project_id=project.id,
            actor_role=actor.role if actor else SYSTEM_ROLE,
            project_title=project.title,
            price=project.price,
            selected_student_id=project.selected_student_id,
            proposal_student_ids=frozenset(sid for sid, _ in proposals),
            accepted_student_ids=frozenset(sid for sid, accepted in proposals if accepted is True),
            proposed_student_ids=frozenset(r[0] for r in proposed),
            **request_facts,
        )

    def _execute(self, project: Project, effect: SideEffect, actor: User | None) -> bool | None:
        handler: Callable[[Project, SideEffect, User | None], bool | None] = {
            CreateProposals: self._create_proposals,
            ProposeStudents: self._propose_students,
            SetStudentsUnavailable: self._set_unavailable,
            PostMessage: self._post_message,
            SelectStudent: self._select_student,
            AddStudentToGroup: self._add_student_to_group,
            RecordPayment: self._record_payment,
            GenerateInvoice: self._generate_invoice,
            ReleaseStudent: self._release_student,
        }[type(effect)]
        return handler(project, effect, actor)

    def _create_proposals(self, project: Project, effect: CreateProposals, actor: User | None) -> None:
        for student_id in effect.student_ids:
            self.db.add(ProposalToStudent(project_id=project.id, student_id=student_id, accepted=None))
        self.db.flush()

    def _propose_students(self, project: Project, effect: ProposeStudents, actor: User | None) -> None:
        existing = {
            r[0] for r in
            self.db.query(ProposedStudent.student_id).filter(ProposedStudent.project_id == project.id).all()
        }
        for student_id in effect.student_ids:
            if student_id not in existing:
                self.db.add(ProposedStudent(project_id=project.id, student_id=student_id))
        self.db.flush()

    def _set_unavailable(self, project: Project, effect: SetStudentsUnavailable, actor: User | None) -> None:
        availability_service.set_students_unavailable(self.db, effect.student_ids)

    def _post_message(self, project: Project, effect: PostMessage, actor: User | None) -> None:
        group = messaging_service.ensure_project_group(self.db, project)
        messaging_service.post_message(self.db, group.id, effect.text, sender_id=actor.id if actor else None)

    def _select_student(self, project: Project, effect: SelectStudent, actor: User | None) -> None:
        availability_service.handle_student_selection(self.db, project.id, effect.student_id)

    def _add_student_to_group(self, project: Project, effect: AddStudentToGroup, actor: User | None) -> None:
        student = self.db.get(Student, effect.student_id)
        if student is None:
            raise NotFoundError(f"Student {effect.student_id} not found")
        group = messaging_service.ensure_project_group(self.db, project)
        messaging_service.add_member(self.db, group.id, student.user_id)

    def _record_payment(self, project: Project, effect: RecordPayment, actor: User | None) -> None:
        project.stripe_payment_intent_id = effect.payment_intent_id
        project.payment_status = effect.status
        self.db.flush()

    def _generate_invoice(self, project: Project, effect: GenerateInvoice, actor: User | None) -> bool:
        # Savepoint: a failed invoice must not cost the status change.
        try:
            with self.db.begin_nested():
                invoice_service.generate_invoice(
                    self.db, project, effect.payment_intent_id, effect.amount_minor,
                )
        except Exception as exc:
            logger.error(
                "Invoice generation failed for project %s (intent %s): %s",
                project.id[:8], effect.payment_intent_id, exc,
            )
            return False
        return True

    def _release_student(self, project: Project, effect: ReleaseStudent, actor: User | None) -> None:
        availability_service.handle_project_completion(self.db, project.id)

    def _check_students_exist(self, student_ids: list[str]) -> None:
        ids = set(student_ids)
        if not ids:
            return
        found = {r[0] for r in self.db.query(Student.id).filter(Student.id.in_(sorted(ids))).all()}
        missing = ids - found
        if missing:
            raise NotFoundError(f"Unknown students: {', '.join(sorted(missing))}")

    def _owns(self, project: Project, user: User) -> bool:
        entrepreneur = self.db.get(Entrepreneur, project.entrepreneur_id)
        return entrepreneur is not None and entrepreneur.user_id == user.id
