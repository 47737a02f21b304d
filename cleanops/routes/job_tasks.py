import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Job, JobTask, User
from ..auth.security import get_current_user
from ..schemas.checklists import JobTaskResponse, JobTaskUpdate
from ..services.checklists import checklist_progress, list_job_tasks, update_job_task
from ..services.permissions import can_act_on_job


router = APIRouter(tags=["job-tasks"])


def _get_job_for(db: Session, job_id, user: User) -> Job:
    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if not can_act_on_job(user, job):
        raise HTTPException(status_code=403, detail="Forbidden")
    return job


@router.get("/jobs/{job_id}/tasks")
def job_tasks(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    job = _get_job_for(db, job_id, user)
    tasks = list_job_tasks(db, job.id)
    return {
        "tasks": [JobTaskResponse.model_validate(t).model_dump(mode="json") for t in tasks],
        "progress": checklist_progress(tasks),
    }


@router.patch("/job-tasks/{task_id}", response_model=JobTaskResponse)
def update_task(
    task_id: uuid.UUID,
    payload: JobTaskUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Tick off or reopen a checklist task; cleaners only on their own jobs."""
    task = db.query(JobTask).filter(JobTask.id == task_id).first()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    _get_job_for(db, task.job_id, user)

    update_job_task(task, payload.model_dump(exclude_unset=True), user)
    db.commit()
    db.refresh(task)
    return task
