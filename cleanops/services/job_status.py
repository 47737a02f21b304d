"""
Job lifecycle state machine.

The transition table is the single source of truth for which edges exist; the
role layer narrows it per actor and is always evaluated on top of it.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union


class JobStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED_PENDING_REVIEW = "COMPLETED_PENDING_REVIEW"
    APPROVED = "APPROVED"
    REWORK_REQUIRED = "REWORK_REQUIRED"
    CANCELLED = "CANCELLED"


class Role(str, Enum):
    HR = "HR"
    SUPERVISOR = "SUPERVISOR"
    CLEANER = "CLEANER"


ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.DRAFT: frozenset({JobStatus.PUBLISHED, JobStatus.CANCELLED}),
    JobStatus.PUBLISHED: frozenset({JobStatus.IN_PROGRESS, JobStatus.CANCELLED}),
    JobStatus.IN_PROGRESS: frozenset({
        JobStatus.COMPLETED_PENDING_REVIEW,
        JobStatus.REWORK_REQUIRED,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED_PENDING_REVIEW: frozenset({JobStatus.APPROVED, JobStatus.REWORK_REQUIRED}),
    JobStatus.REWORK_REQUIRED: frozenset({
        JobStatus.IN_PROGRESS,
        JobStatus.COMPLETED_PENDING_REVIEW,
        JobStatus.CANCELLED,
    }),
    JobStatus.APPROVED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Field workers drive the job through the site visit only
CLEANER_TRANSITIONS = frozenset({
    (JobStatus.PUBLISHED, JobStatus.IN_PROGRESS),
    (JobStatus.IN_PROGRESS, JobStatus.COMPLETED_PENDING_REVIEW),
    (JobStatus.REWORK_REQUIRED, JobStatus.IN_PROGRESS),
})

SUPERVISORY_ROLES = frozenset({Role.HR, Role.SUPERVISOR})

INVALID_TRANSITION = "Invalid job status transition"
FORBIDDEN = "Forbidden"

StatusLike = Union[JobStatus, str]
RoleLike = Union[Role, str]


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    reason: Optional[str] = None


def _coerce_status(value: Optional[StatusLike]) -> Optional[JobStatus]:
    try:
        return JobStatus(value)
    except ValueError:
        return None


def _coerce_role(value: Optional[RoleLike]) -> Optional[Role]:
    try:
        return Role(str(getattr(value, "value", value) or "").upper())
    except ValueError:
        return None


def is_valid_status_transition(from_status: StatusLike, to_status: StatusLike) -> bool:
    """True for self-transitions and for edges in the transition table."""
    current = _coerce_status(from_status)
    target = _coerce_status(to_status)
    if current is None or target is None:
        return False
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def can_role_transition(role: RoleLike, from_status: StatusLike, to_status: StatusLike) -> bool:
    actor = _coerce_role(role)
    current = _coerce_status(from_status)
    target = _coerce_status(to_status)
    if actor is None or current is None or target is None:
        return False
    if current == target:
        return True
    if actor in SUPERVISORY_ROLES:
        return True
    return (current, target) in CLEANER_TRANSITIONS


def check_transition(from_status: StatusLike, to_status: StatusLike, role: RoleLike) -> TransitionDecision:
    if not is_valid_status_transition(from_status, to_status):
        return TransitionDecision(allowed=False, reason=INVALID_TRANSITION)
    if not can_role_transition(role, from_status, to_status):
        return TransitionDecision(allowed=False, reason=FORBIDDEN)
    return TransitionDecision(allowed=True)


def is_terminal(status: StatusLike) -> bool:
    return _coerce_status(status) in TERMINAL_STATUSES
