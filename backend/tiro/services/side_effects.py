"""Dispatch of non-transactional lifecycle side effects.

Runs after the transition has committed. Each command is handed to a
Celery task; a dispatch failure (broker down) is logged and swallowed so
the caller still sees the committed transition.
"""
from __future__ import annotations

import logging
from typing import Iterable, Protocol

from tiro.services.lifecycle import NotifyStudents, SendReceipt, SideEffect

logger = logging.getLogger(__name__)


class SideEffectDispatcher(Protocol):
    def dispatch(self, project_id: str, effects: Iterable[SideEffect]) -> None: ...


class CeleryDispatcher:
    """Maps deferred commands onto Celery tasks."""

    def dispatch(self, project_id: str, effects: Iterable[SideEffect]) -> None:
        from tiro.tasks.notifications import notify_students_of_proposal, send_payment_receipt

        for effect in effects:
            try:
                if isinstance(effect, SendReceipt):
                    send_payment_receipt.delay(effect.payment_intent_id)
                elif isinstance(effect, NotifyStudents):
                    notify_students_of_proposal.delay(project_id, list(effect.student_ids))
                else:
                    logger.warning("No dispatcher for side effect '%s'", effect.kind)
                    continue
                logger.info("Queued %s for project %s", effect.kind, project_id[:8])
            except Exception as exc:
                logger.error("Failed to queue %s for project %s: %s", effect.kind, project_id[:8], exc)
