"""
Checklist templates and the per-job task lists copied from them.
"""
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import ChecklistTemplateItem, Job, JobTask, SiteChecklistOverride, User
from .time_rules import ensure_utc


logger = structlog.get_logger(__name__)


def get_site_override(db: Session, site_id, template_id) -> Optional[SiteChecklistOverride]:
    return db.query(SiteChecklistOverride).filter(
        SiteChecklistOverride.site_id == site_id,
        SiteChecklistOverride.template_id == template_id,
    ).first()


def list_template_items(db: Session, template_id) -> List[ChecklistTemplateItem]:
    return (
        db.query(ChecklistTemplateItem)
        .filter(ChecklistTemplateItem.template_id == template_id)
        .order_by(ChecklistTemplateItem.sort_order.asc(), ChecklistTemplateItem.title.asc())
        .all()
    )


def effective_checklist(db: Session, template_id, site_id=None) -> List[Dict]:
    """
    Template items in sort order with the site's override applied: removed
    item ids are dropped and added items follow the template items.
    """
    items = list_template_items(db, template_id)
    override = get_site_override(db, site_id, template_id) if site_id else None
    overrides = (override.overrides_json if override else None) or {}
    removed = {str(item_id) for item_id in overrides.get("removed_item_ids") or []}

    lines = [
        {"title": item.title, "required_photo": bool(item.required_photo), "sort_order": item.sort_order or 0}
        for item in items
        if str(item.id) not in removed
    ]
    next_order = max([line["sort_order"] for line in lines], default=-1) + 1
    for offset, added in enumerate(overrides.get("added_items") or []):
        title = (added.get("title") or "").strip()
        if not title:
            continue
        lines.append({
            "title": title,
            "required_photo": bool(added.get("required_photo")),
            "sort_order": next_order + offset,
        })
    return lines


def copy_checklist_to_job(db: Session, job: Job, template_id) -> List[JobTask]:
    """Add the site's effective checklist to `job` as uncompleted tasks. Caller commits."""
    tasks = []
    for line in effective_checklist(db, template_id, job.site_id):
        task = JobTask(
            job_id=job.id,
            title=line["title"],
            required_photo=line["required_photo"],
            sort_order=line["sort_order"],
        )
        db.add(task)
        tasks.append(task)
    return tasks


def list_job_tasks(db: Session, job_id) -> List[JobTask]:
    return (
        db.query(JobTask)
        .filter(JobTask.job_id == job_id)
        .order_by(JobTask.sort_order.asc())
        .all()
    )


def update_job_task(task: JobTask, changes: Dict, actor: User) -> JobTask:
    """
    Apply a partial update. Only keys present in `changes` are touched;
    completing stamps the actor, reopening clears both completion fields.
    """
    if "completed_at" in changes:
        completed_at: Optional[datetime] = changes["completed_at"]
        if completed_at is None:
            task.completed_at = None
            task.completed_by = None
        else:
            task.completed_at = ensure_utc(completed_at)
            task.completed_by = actor.id
    if "notes" in changes:
        task.notes = changes["notes"] or None
    logger.info(
        "job_task_updated",
        task_id=str(task.id),
        job_id=str(task.job_id),
        completed=task.completed_at is not None,
        actor_id=str(actor.id),
    )
    return task


def checklist_progress(tasks: List[JobTask]) -> Dict:
    done = sum(1 for task in tasks if task.completed_at is not None)
    return {"total": len(tasks), "completed": done, "remaining": len(tasks) - done}
