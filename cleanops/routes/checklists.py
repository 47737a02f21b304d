"""
Checklist templates, their items and per-site overrides.
Supervisory roles manage these; cleaners see them as job tasks.
"""
from datetime import datetime
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import ChecklistTemplate, ChecklistTemplateItem, Site, SiteChecklistOverride, User
from ..auth.security import require_permissions
from ..schemas.checklists import (
    OverrideResponse,
    OverrideUpsert,
    TemplateCreate,
    TemplateItemCreate,
    TemplateItemResponse,
    TemplateItemUpdate,
    TemplateResponse,
    TemplateUpdate,
)
from ..services.checklists import effective_checklist, get_site_override, list_template_items


router = APIRouter(prefix="/checklists", tags=["checklists"])


def _get_template_or_404(db: Session, template_id: uuid.UUID) -> ChecklistTemplate:
    template = db.query(ChecklistTemplate).filter(ChecklistTemplate.id == template_id).first()
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


def _get_item_or_404(db: Session, item_id: uuid.UUID) -> ChecklistTemplateItem:
    item = db.query(ChecklistTemplateItem).filter(ChecklistTemplateItem.id == item_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


# ----- Templates -----
@router.get("/templates", response_model=List[TemplateResponse])
def list_templates(
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    return db.query(ChecklistTemplate).order_by(ChecklistTemplate.name.asc()).all()


@router.post("/templates", response_model=TemplateResponse)
def create_template(
    payload: TemplateCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("operations:manage")),
):
    template = ChecklistTemplate(name=payload.name.strip(), created_by=user.id)
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


@router.patch("/templates/{template_id}", response_model=TemplateResponse)
def rename_template(
    template_id: uuid.UUID,
    payload: TemplateUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    template = _get_template_or_404(db, template_id)
    template.name = payload.name.strip()
    template.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(template)
    return template


@router.get("/templates/{template_id}/items", response_model=List[TemplateItemResponse])
def template_items(
    template_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    _get_template_or_404(db, template_id)
    return list_template_items(db, template_id)


@router.get("/templates/{template_id}/effective")
def effective_items(
    template_id: uuid.UUID,
    site_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    """The task list a new job at `site_id` would receive."""
    _get_template_or_404(db, template_id)
    return effective_checklist(db, template_id, site_id)


# ----- Items -----
@router.post("/items", response_model=TemplateItemResponse)
def create_item(
    payload: TemplateItemCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    _get_template_or_404(db, payload.template_id)
    item = ChecklistTemplateItem(**payload.model_dump())
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@router.patch("/items/{item_id}", response_model=TemplateItemResponse)
def update_item(
    item_id: uuid.UUID,
    payload: TemplateItemUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    item = _get_item_or_404(db, item_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(item, key, value)
    db.commit()
    db.refresh(item)
    return item


@router.delete("/items/{item_id}")
def delete_item(
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    item = _get_item_or_404(db, item_id)
    db.delete(item)
    db.commit()
    return {"status": "deleted", "id": str(item_id)}


# ----- Site overrides -----
@router.get("/overrides", response_model=Optional[OverrideResponse])
def get_override(
    site_id: uuid.UUID,
    template_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    return get_site_override(db, site_id, template_id)


@router.post("/overrides", response_model=OverrideResponse)
def upsert_override(
    payload: OverrideUpsert,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("operations:manage")),
):
    if not db.query(Site).filter(Site.id == payload.site_id).first():
        raise HTTPException(status_code=404, detail="Site not found")
    _get_template_or_404(db, payload.template_id)

    override = get_site_override(db, payload.site_id, payload.template_id)
    if override is None:
        override = SiteChecklistOverride(site_id=payload.site_id, template_id=payload.template_id)
        db.add(override)
    override.overrides_json = payload.overrides_json.model_dump(mode="json")
    override.updated_by = user.id
    override.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(override)
    return override
