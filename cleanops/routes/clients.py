from datetime import datetime
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Client, Site, User
from ..auth.security import get_current_user, require_permissions
from ..schemas.clients import (
    ClientCreate,
    ClientResponse,
    SiteCreate,
    SiteUpdate,
    SiteResponse,
)


router = APIRouter(tags=["clients"])


@router.get("/clients", response_model=List[ClientResponse])
def list_clients(
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    return db.query(Client).order_by(Client.name.asc()).all()


@router.post("/clients", response_model=ClientResponse)
def create_client(
    payload: ClientCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("operations:manage")),
):
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    client = Client(
        name=name,
        billing_email=payload.billing_email,
        notes=payload.notes,
        created_by=user.id,
    )
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


@router.get("/sites", response_model=List[SiteResponse])
def list_sites(
    client_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    query = db.query(Site)
    if client_id:
        query = query.filter(Site.client_id == client_id)
    return query.order_by(Site.name.asc()).all()


@router.post("/sites", response_model=SiteResponse)
def create_site(
    payload: SiteCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("operations:manage")),
):
    client = db.query(Client).filter(Client.id == payload.client_id).first()
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    site = Site(**payload.model_dump(), created_by=user.id)
    db.add(site)
    db.commit()
    db.refresh(site)
    return site


@router.patch("/sites/{site_id}", response_model=SiteResponse)
def update_site(
    site_id: uuid.UUID,
    payload: SiteUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("operations:manage")),
):
    site = db.query(Site).filter(Site.id == site_id).first()
    if not site:
        raise HTTPException(status_code=404, detail="Site not found")
    # Coordinates changes apply to future clock events only
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(site, key, value)
    site.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(site)
    return site
