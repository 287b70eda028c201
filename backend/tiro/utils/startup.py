"""Startup maintenance shared between FastAPI lifespan and Celery worker_init.

Both the API server and the task worker call ``backfill_legacy_statuses()``
on startup so every project row carries a STEP status before any
transition reads it.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def backfill_statuses(db: Session) -> int:
    """Rewrite legacy status values to their STEP equivalent.

    Returns the number of rows changed. Unknown values are left alone and
    logged; a transition on such a row fails with a clear error instead.
    """
    from tiro.models import Project
    from tiro.utils.status import LEGACY_VALUES, STEP_VALUES, convert_status

    count = 0
    rows = db.query(Project).filter(Project.status.notin_(sorted(STEP_VALUES))).all()
    for project in rows:
        if project.status not in LEGACY_VALUES:
            logger.warning("Project %s has unknown status %r; left as is", project.id[:8], project.status)
            continue
        new_status = convert_status(project.status)
        logger.info("Backfilling project %s: %s -> %s", project.id[:8], project.status, new_status)
        project.status = new_status
        count += 1
    if count:
        db.commit()
        logger.info("Backfilled %d legacy project status(es)", count)
    return count


def backfill_legacy_statuses() -> int:
    """Run ``backfill_statuses`` in its own session; never fails startup."""
    from tiro.database import SessionLocal

    db = SessionLocal()
    try:
        return backfill_statuses(db)
    except Exception as exc:
        db.rollback()
        logger.warning("Could not backfill legacy statuses: %s", exc)
        return 0
    finally:
        db.close()
