"""
Permission checking service for jobs and timesheets.
"""
from typing import Optional, Set

from ..models.models import User
from .job_status import Role


# Highest-privilege role wins when a user holds several
ROLE_PRECEDENCE = (Role.HR, Role.SUPERVISOR, Role.CLEANER)


def role_names(user: User) -> Set[str]:
    return {(r.name or "").upper() for r in getattr(user, "roles", [])}


def get_user_role(user: User) -> Optional[str]:
    """Get user's primary role."""
    names = role_names(user)
    for role in ROLE_PRECEDENCE:
        if role.value in names:
            return role.value
    return None


def is_hr(user: User) -> bool:
    return Role.HR.value in role_names(user)


def is_supervisor(user: User) -> bool:
    return Role.SUPERVISOR.value in role_names(user)


def is_cleaner(user: User) -> bool:
    return get_user_role(user) == Role.CLEANER.value


def can_manage_users(user: User) -> bool:
    return is_hr(user)


def can_manage_operations(user: User) -> bool:
    """Clients, sites and the job schedule."""
    return is_hr(user) or is_supervisor(user)


def can_approve_timesheets(user: User) -> bool:
    return is_hr(user)


def can_review_jobs(user: User) -> bool:
    return is_hr(user) or is_supervisor(user)


def can_view_timesheet_entry(user: User, cleaner_id) -> bool:
    """
    - HR and supervisors can view any entry
    - Cleaners can only view their own entries
    """
    if is_cleaner(user):
        return str(user.id) == str(cleaner_id)
    return get_user_role(user) is not None


def can_act_on_job(user: User, job) -> bool:
    """Cleaners may only record events and status changes on jobs assigned to them."""
    if is_cleaner(user):
        return job.assigned_cleaner_id is not None and str(job.assigned_cleaner_id) == str(user.id)
    return get_user_role(user) is not None


# Named permissions checked by the `require_permissions` route dependency
PERMISSION_CHECKS = {
    "users:admin": can_manage_users,
    "operations:manage": can_manage_operations,
    "jobs:review": can_review_jobs,
    "timesheets:approve": can_approve_timesheets,
}


def has_permission(user: User, permission: str) -> bool:
    check = PERMISSION_CHECKS.get(permission)
    return bool(check and check(user))
