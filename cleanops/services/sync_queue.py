"""
Retry policy for mutations queued by offline devices.
Decides whether a failed replay should be retried with backoff or parked for
a human to look at.
"""
from dataclasses import dataclass
from typing import Optional

from .job_status import RoleLike, StatusLike, check_transition


MAX_RETRIES = 5
BASE_DELAY_MS = 2000

PENDING = "PENDING"
NEEDS_ATTENTION = "NEEDS_ATTENTION"

# Server rejections that will never succeed on replay
PERMANENT_ERROR_MARKERS = (
    "Invalid job status transition",
    "Forbidden",
    "Unauthorized",
    "permission",
    "not allowed",
)


@dataclass(frozen=True)
class QueueOutcome:
    status: str
    retry_count: int
    next_attempt_delay_ms: Optional[int]


def next_attempt_delay_ms(retry_count: int) -> int:
    return BASE_DELAY_MS * (2 ** retry_count)


def should_stop_retry(error_message: Optional[str]) -> bool:
    if not error_message:
        return False
    return any(marker in error_message for marker in PERMANENT_ERROR_MARKERS)


def classify_failure(retry_count: int, error_message: Optional[str]) -> QueueOutcome:
    """
    Classify a failed replay of a queued item.

    Args:
        retry_count: attempts made before this failure
        error_message: server error text, if any

    Returns:
        QueueOutcome with the incremented retry count; the delay is None when
        the item is parked as NEEDS_ATTENTION
    """
    attempts = retry_count + 1
    if should_stop_retry(error_message) or attempts >= MAX_RETRIES:
        return QueueOutcome(status=NEEDS_ATTENTION, retry_count=attempts, next_attempt_delay_ms=None)
    return QueueOutcome(status=PENDING, retry_count=attempts, next_attempt_delay_ms=next_attempt_delay_ms(attempts))


def is_status_mutation_retryable(current: StatusLike, requested: StatusLike, role: RoleLike) -> bool:
    """A queued status change is only worth replaying if the job could still accept it."""
    return check_transition(current, requested, role).allowed
