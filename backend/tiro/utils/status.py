"""Project status helpers bridging the STEP1-STEP6 values and legacy aliases.

Older rows used ``draft``/``open``/``in_progress``/``review``/``completed``.
``backfill_legacy_statuses`` (see ``tiro.utils.startup``) rewrites those
once; these helpers remain for reading data from older clients.
"""
from __future__ import annotations

from tiro.schemas.common import LegacyStatus, ProjectStatus

_OLD_TO_NEW: dict[str, str] = {
    "draft": "STEP1",
    "open": "STEP2",
    "in_progress": "STEP5",
    "review": "STEP5",
    "completed": "STEP6",
}

_NEW_TO_OLD: dict[str, str] = {
    "STEP1": "draft",
    "STEP2": "open",
    "STEP3": "open",
    "STEP4": "open",
    "STEP5": "in_progress",
    "STEP6": "completed",
}

_DISPLAY_NAMES: dict[str, str] = {
    "STEP1": "New Project",
    "STEP2": "Awaiting Student Acceptance",
    "STEP3": "Awaiting Entrepreneur Selection",
    "STEP4": "Awaiting Payment",
    "STEP5": "In Progress",
    "STEP6": "Completed",
    "draft": "Draft",
    "open": "Open",
    "in_progress": "In Progress",
    "review": "Under Review",
    "completed": "Completed",
}

STEP_VALUES = frozenset(s.value for s in ProjectStatus)
LEGACY_VALUES = frozenset(s.value for s in LegacyStatus)


def convert_status(status: str, to_new_format: bool = True) -> str:
    """Convert between legacy and STEP formats; unknown values pass through."""
    mapping = _OLD_TO_NEW if to_new_format else _NEW_TO_OLD
    return mapping.get(status, status)


def is_known_status(status: str | None) -> bool:
    return status in STEP_VALUES or status in LEGACY_VALUES


def normalize_status(status: str | ProjectStatus) -> ProjectStatus:
    """Return the canonical step for a step value or legacy alias."""
    if isinstance(status, ProjectStatus):
        return status
    if status not in STEP_VALUES and status not in LEGACY_VALUES:
        raise ValueError(f"Unknown project status: {status!r}")
    return ProjectStatus(convert_status(status, to_new_format=True))


def display_name(status: str) -> str:
    """Human-readable label for a status value."""
    return _DISPLAY_NAMES.get(status, status)


def is_project_in_stage(status: str, stage: str) -> bool:
    """True when ``status`` matches ``stage`` directly or across formats.

    A legacy ``open`` covers the three staffing steps, and ``in_progress``
    and ``review`` both correspond to the active step.
    """
    if status == stage:
        return True
    compat: dict[str, set[str]] = {
        "draft": {"STEP1"},
        "open": {"STEP2", "STEP3", "STEP4"},
        "in_progress": {"STEP5"},
        "review": {"STEP5"},
        "completed": {"STEP6"},
        "STEP1": {"draft"},
        "STEP2": {"open"},
        "STEP3": {"open"},
        "STEP4": {"open"},
        "STEP5": {"in_progress", "review"},
        "STEP6": {"completed"},
    }
    return status in compat.get(stage, set())
