"""Project lifecycle state machine.

Pure functions only: given the current status, an event, and the facts the
guards need (``TransitionContext``), decide whether the transition is legal
and which side effects it implies. Nothing here touches the database or the
network; ``ProjectLifecycleService`` executes the returned commands.

    STEP1 ──send_proposals──▶ STEP2 ──propose_to_entrepreneur──▶ STEP3
    STEP3 ──select_student──▶ STEP4 ──confirm_payment──▶ STEP5 ──complete──▶ STEP6

Usage:
    if can_transition(project.status, LifecycleEvent.COMPLETE):
        new_status, effects = apply_transition(project.status, LifecycleEvent.COMPLETE, ctx)
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Callable, ClassVar

from tiro.exceptions import (
    PermissionDeniedError,
    PreconditionFailedError,
    TransitionNotAllowedError,
)
from tiro.schemas.common import ProjectStatus, UserRole
from tiro.utils.status import normalize_status

# Role used for transitions driven by the payment gateway, not a person.
SYSTEM_ROLE = "system"


class LifecycleEvent(str, Enum):
    SEND_PROPOSALS = "send_proposals"
    PROPOSE_TO_ENTREPRENEUR = "propose_to_entrepreneur"
    SELECT_STUDENT = "select_student"
    CONFIRM_PAYMENT = "confirm_payment"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Transition:
    event: LifecycleEvent
    source: ProjectStatus
    target: ProjectStatus
    roles: frozenset[str]


TRANSITIONS: dict[LifecycleEvent, Transition] = {
    t.event: t
    for t in (
        Transition(LifecycleEvent.SEND_PROPOSALS, ProjectStatus.STEP1, ProjectStatus.STEP2,
                   frozenset({UserRole.ADMIN.value})),
        Transition(LifecycleEvent.PROPOSE_TO_ENTREPRENEUR, ProjectStatus.STEP2, ProjectStatus.STEP3,
                   frozenset({UserRole.ADMIN.value})),
        Transition(LifecycleEvent.SELECT_STUDENT, ProjectStatus.STEP3, ProjectStatus.STEP4,
                   frozenset({UserRole.ENTREPRENEUR.value})),
        Transition(LifecycleEvent.CONFIRM_PAYMENT, ProjectStatus.STEP4, ProjectStatus.STEP5,
                   frozenset({SYSTEM_ROLE})),
        Transition(LifecycleEvent.COMPLETE, ProjectStatus.STEP5, ProjectStatus.STEP6,
                   frozenset({UserRole.ADMIN.value})),
    )
}


# ── Side-effect commands ───────────────────────────────────────────────
#
# ``transactional`` commands are database writes applied inside the same
# transaction as the status change. The others run after commit and may
# fail without undoing the transition.

@dataclass(frozen=True)
class SideEffect:
    kind: ClassVar[str] = "side_effect"
    transactional: ClassVar[bool] = True


@dataclass(frozen=True)
class CreateProposals(SideEffect):
    kind: ClassVar[str] = "create_proposals"
    student_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class NotifyStudents(SideEffect):
    kind: ClassVar[str] = "notify_students"
    transactional: ClassVar[bool] = False
    student_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProposeStudents(SideEffect):
    kind: ClassVar[str] = "propose_students"
    student_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class SetStudentsUnavailable(SideEffect):
    kind: ClassVar[str] = "set_students_unavailable"
    student_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class PostMessage(SideEffect):
    kind: ClassVar[str] = "post_message"
    text: str = ""


@dataclass(frozen=True)
class SelectStudent(SideEffect):
    kind: ClassVar[str] = "select_student"
    student_id: str = ""


@dataclass(frozen=True)
class AddStudentToGroup(SideEffect):
    kind: ClassVar[str] = "add_student_to_group"
    student_id: str = ""


@dataclass(frozen=True)
class RecordPayment(SideEffect):
    kind: ClassVar[str] = "record_payment"
    payment_intent_id: str = ""
    status: str = ""


@dataclass(frozen=True)
class GenerateInvoice(SideEffect):
    kind: ClassVar[str] = "generate_invoice"
    payment_intent_id: str = ""
    amount_minor: int = 0


@dataclass(frozen=True)
class SendReceipt(SideEffect):
    kind: ClassVar[str] = "send_receipt"
    transactional: ClassVar[bool] = False
    payment_intent_id: str = ""


@dataclass(frozen=True)
class ReleaseStudent(SideEffect):
    kind: ClassVar[str] = "release_student"


@dataclass
class TransitionContext:
    """Facts read by the guards. Built by the orchestration service."""

    project_id: str
    actor_role: str
    project_title: str = ""
    price: Decimal | None = None
    selected_student_id: str | None = None
    proposal_student_ids: frozenset[str] = frozenset()
    accepted_student_ids: frozenset[str] = frozenset()
    proposed_student_ids: frozenset[str] = frozenset()
    # Input of the triggering request
    requested_student_ids: tuple[str, ...] = ()
    chosen_student_id: str | None = None
    # Payment confirmation (values re-fetched from the gateway)
    payment_intent_id: str | None = None
    payment_status: str | None = None
    payment_amount: int | None = None
    payment_project_id: str | None = None


def minor_units(price: Decimal | float | int | str) -> int:
    """Convert a major-unit price to minor units (cents), rounding half up."""
    amount = Decimal(str(price)) * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def can_transition(current: str | ProjectStatus, event: LifecycleEvent | str) -> bool:
    """True when ``event`` is defined from ``current`` (legacy aliases accepted)."""
    try:
        status = normalize_status(current)
        transition = TRANSITIONS[LifecycleEvent(event)]
    except (ValueError, KeyError):
        return False
    return transition.source == status


def available_events(current: str | ProjectStatus, role: str) -> list[LifecycleEvent]:
    """Events the given role may fire from ``current``."""
    return [
        t.event for t in TRANSITIONS.values()
        if role in t.roles and can_transition(current, t.event)
    ]


def apply_transition(
    current: str | ProjectStatus,
    event: LifecycleEvent | str,
    ctx: TransitionContext,
) -> tuple[ProjectStatus, list[SideEffect]]:
    """Validate ``event`` against ``current`` and plan its side effects.

    Returns the target status and the ordered side-effect commands. Raises
    ``TransitionNotAllowedError`` for an illegal event,
    ``PermissionDeniedError`` for the wrong actor role, and
    ``PreconditionFailedError`` when a guard fails.
    """
    event = LifecycleEvent(event)
    if not can_transition(current, event):
        raise TransitionNotAllowedError(str(current), event.value)

    transition = TRANSITIONS[event]
    if ctx.actor_role not in transition.roles:
        raise PermissionDeniedError(
            f"Role '{ctx.actor_role}' cannot perform '{event.value}'"
        )

    effects = _PLANNERS[event](ctx)
    return transition.target, effects


# ── Per-event guards and plans ─────────────────────────────────────────

def _dedupe(ids) -> tuple[str, ...]:
    return tuple(dict.fromkeys(i for i in ids if i))


def _plan_send_proposals(ctx: TransitionContext) -> list[SideEffect]:
    new_ids = tuple(s for s in _dedupe(ctx.requested_student_ids) if s not in ctx.proposal_student_ids)
    if not new_ids and not ctx.proposal_student_ids:
        raise PreconditionFailedError("Select at least one student to propose")
    effects: list[SideEffect] = []
    if new_ids:
        effects.append(CreateProposals(student_ids=new_ids))
        effects.append(NotifyStudents(student_ids=new_ids))
    return effects


def _plan_propose_to_entrepreneur(ctx: TransitionContext) -> list[SideEffect]:
    if not ctx.accepted_student_ids:
        raise PreconditionFailedError("No student has accepted the proposal yet")
    chosen = _dedupe(ctx.requested_student_ids) or tuple(sorted(ctx.accepted_student_ids))
    not_accepted = [s for s in chosen if s not in ctx.accepted_student_ids]
    if not_accepted:
        raise PreconditionFailedError(
            f"Students have not accepted the proposal: {', '.join(not_accepted)}"
        )
    count = len(chosen)
    text = (
        f"{count} student{'s' if count > 1 else ''} accepted to work on "
        f"\"{ctx.project_title}\" and {'have' if count > 1 else 'has'} been proposed to you. "
        "Please choose the student you want to work with."
    )
    return [
        ProposeStudents(student_ids=chosen),
        SetStudentsUnavailable(student_ids=chosen),
        PostMessage(text=text),
    ]


def _plan_select_student(ctx: TransitionContext) -> list[SideEffect]:
    student_id = ctx.chosen_student_id
    if not student_id:
        raise PreconditionFailedError("A student must be chosen")
    candidates = ctx.proposed_student_ids or ctx.accepted_student_ids
    if student_id not in candidates:
        raise PreconditionFailedError("The chosen student was not proposed for this project")
    return [
        SelectStudent(student_id=student_id),
        AddStudentToGroup(student_id=student_id),
    ]


def _plan_confirm_payment(ctx: TransitionContext) -> list[SideEffect]:
    if ctx.payment_status != "succeeded":
        raise PreconditionFailedError(f"Payment has not succeeded (status: {ctx.payment_status})")
    if not ctx.payment_intent_id:
        raise PreconditionFailedError("Missing payment intent")
    if ctx.payment_project_id != ctx.project_id:
        raise PreconditionFailedError("Payment intent belongs to another project")
    if not ctx.selected_student_id:
        raise PreconditionFailedError("Project has no selected student")
    if ctx.price is not None and ctx.payment_amount is not None:
        if ctx.payment_amount != minor_units(ctx.price):
            raise PreconditionFailedError("Captured amount does not match the project price")
    amount = ctx.payment_amount if ctx.payment_amount is not None else minor_units(ctx.price or 0)
    return [
        RecordPayment(payment_intent_id=ctx.payment_intent_id, status=ctx.payment_status),
        GenerateInvoice(payment_intent_id=ctx.payment_intent_id, amount_minor=amount),
        AddStudentToGroup(student_id=ctx.selected_student_id),
        SendReceipt(payment_intent_id=ctx.payment_intent_id),
    ]


def _plan_complete(ctx: TransitionContext) -> list[SideEffect]:
    return [
        ReleaseStudent(),
        PostMessage(text=f"The project \"{ctx.project_title}\" has been marked as completed. Thank you!"),
    ]


_PLANNERS: dict[LifecycleEvent, Callable[[TransitionContext], list[SideEffect]]] = {
    LifecycleEvent.SEND_PROPOSALS: _plan_send_proposals,
    LifecycleEvent.PROPOSE_TO_ENTREPRENEUR: _plan_propose_to_entrepreneur,
    LifecycleEvent.SELECT_STUDENT: _plan_select_student,
    LifecycleEvent.CONFIRM_PAYMENT: _plan_confirm_payment,
    LifecycleEvent.COMPLETE: _plan_complete,
}
