"""Project CRUD and admin edit endpoints."""
from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tiro.api.deps import (
    get_current_user,
    get_entrepreneur_profile,
    get_lifecycle_service,
    require_role,
)
from tiro.database import get_db
from tiro.models import Project, User
from tiro.schemas.common import PaginatedResponse
from tiro.schemas.project import (
    DevisUpdate,
    PriceUpdate,
    ProjectCreate,
    ProjectListItem,
    ProjectResponse,
    ProjectTransfer,
)
from tiro.schemas.transition import TransitionHistoryItem
from tiro.services import project_service
from tiro.services.lifecycle_service import ProjectLifecycleService
from tiro.utils.status import display_name

router = APIRouter()
logger = logging.getLogger(__name__)


def _enrich_project(project: Project, user: User, lifecycle: ProjectLifecycleService) -> ProjectResponse:
    resp = ProjectResponse.model_validate(project)
    resp.display_status = display_name(project.status)
    resp.available_events = lifecycle.available_events(project, user)
    return resp


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    payload: ProjectCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("entrepreneur")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    entrepreneur = get_entrepreneur_profile(db, user)
    project = project_service.create_project(
        db,
        entrepreneur,
        title=payload.title,
        description=payload.description,
        pack_id=payload.pack_id,
        deadline=payload.deadline,
    )
    return _enrich_project(project, user, lifecycle)


@router.get("", response_model=PaginatedResponse[ProjectListItem])
def list_projects(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    status: str | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = project_service.visible_projects(db, user)
    if status:
        query = project_service.filter_by_status(query, status)
    total = query.count()
    projects = (
        query.order_by(Project.updated_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    items = []
    for p in projects:
        item = ProjectListItem.model_validate(p)
        item.display_status = display_name(p.status)
        items.append(item)
    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    project = project_service.get_visible_project(db, project_id, user)
    return _enrich_project(project, user, lifecycle)


@router.patch("/{project_id}/price", response_model=ProjectResponse)
def update_price(
    project_id: str,
    payload: PriceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("admin")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    project = project_service.set_price(db, project_id, payload.price)
    return _enrich_project(project, user, lifecycle)


@router.patch("/{project_id}/devis", response_model=ProjectResponse)
def update_devis(
    project_id: str,
    payload: DevisUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("admin")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    project = project_service.set_devis(db, project_id, payload.devis)
    return _enrich_project(project, user, lifecycle)


@router.post("/{project_id}/transfer", response_model=ProjectResponse)
def transfer_project(
    project_id: str,
    payload: ProjectTransfer,
    db: Session = Depends(get_db),
    user: User = Depends(require_role("admin")),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    project = project_service.transfer_project(db, project_id, payload.entrepreneur_id)
    return _enrich_project(project, user, lifecycle)


@router.get("/{project_id}/history", response_model=list[TransitionHistoryItem])
def project_history(
    project_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    lifecycle: ProjectLifecycleService = Depends(get_lifecycle_service),
):
    project_service.get_visible_project(db, project_id, user)
    return lifecycle.history(project_id)
