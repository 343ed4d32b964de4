from __future__ import annotations

from enum import Enum
from typing import Optional


class NormalizedStatus(str, Enum):
    QUEUED = "QUEUED"
    STARTED = "STARTED"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CANCELLED = "CANCELLED"
    SKIPPED = "SKIPPED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_finished(self) -> bool:
        return self in _FINISHED


_FINISHED = frozenset(
    {
        NormalizedStatus.SUCCESS,
        NormalizedStatus.FAILURE,
        NormalizedStatus.CANCELLED,
        NormalizedStatus.SKIPPED,
    }
)

_QUEUED_STATUSES = {"queued", "requested", "waiting", "pending"}
_FAILURE_CONCLUSIONS = {"failure", "timed_out", "action_required", "stale"}


def normalize(status: Optional[str], conclusion: Optional[str]) -> NormalizedStatus:
    """Map a provider (status, conclusion) pair onto a lifecycle status.

    Total and case-insensitive. Unrecognized conclusions of a completed
    entity count as SUCCESS.
    """
    if status is None:
        return NormalizedStatus.UNKNOWN
    s = status.lower()
    if s in _QUEUED_STATUSES:
        return NormalizedStatus.QUEUED
    if s == "in_progress":
        return NormalizedStatus.STARTED
    if s == "completed":
        return _from_conclusion(conclusion)
    return NormalizedStatus.UNKNOWN


def _from_conclusion(conclusion: Optional[str]) -> NormalizedStatus:
    if conclusion is None:
        return NormalizedStatus.SUCCESS
    c = conclusion.lower()
    if c in _FAILURE_CONCLUSIONS:
        return NormalizedStatus.FAILURE
    if c == "cancelled":
        return NormalizedStatus.CANCELLED
    if c == "skipped":
        return NormalizedStatus.SKIPPED
    return NormalizedStatus.SUCCESS


def is_finished(status: NormalizedStatus) -> bool:
    return status.is_finished
