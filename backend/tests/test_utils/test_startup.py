"""Tests for the legacy status backfill run at startup."""
from tiro.models import Project
from tiro.utils.startup import backfill_statuses


def test_aliases_rewritten_once(db_session, factory):
    legacy = {
        "draft": factory.project(status="draft"),
        "open": factory.project(status="open"),
        "review": factory.project(status="review"),
        "completed": factory.project(status="completed"),
    }
    current = factory.project(status="STEP3")

    assert backfill_statuses(db_session) == 4
    assert backfill_statuses(db_session) == 0

    db_session.expire_all()
    assert db_session.get(Project, legacy["draft"].id).status == "STEP1"
    assert db_session.get(Project, legacy["open"].id).status == "STEP2"
    assert db_session.get(Project, legacy["review"].id).status == "STEP5"
    assert db_session.get(Project, legacy["completed"].id).status == "STEP6"
    assert db_session.get(Project, current.id).status == "STEP3"


def test_unknown_status_left_alone(db_session, factory):
    odd = factory.project(status="archived")
    assert backfill_statuses(db_session) == 0
    assert db_session.get(Project, odd.id).status == "archived"
