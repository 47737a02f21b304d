from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..auth.security import require_permissions
from ..schemas.jobs import RecurringScheduleCreate, RecurringScheduleResult
from ..services.scheduling import schedule_recurring_jobs
from .jobs import workflow_call


router = APIRouter(prefix="/schedule", tags=["schedule"])


@router.post("/recurring", response_model=RecurringScheduleResult)
def create_recurring_schedule(
    payload: RecurringScheduleCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("operations:manage")),
):
    jobs = workflow_call(schedule_recurring_jobs, db, payload, user)
    return RecurringScheduleResult(count=len(jobs), job_ids=[job.id for job in jobs])
