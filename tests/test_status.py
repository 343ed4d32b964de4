from __future__ import annotations

import itertools

from runwatch.status import NormalizedStatus, is_finished, normalize


def test_queued_family():
    for raw in ("queued", "requested", "waiting", "pending", "QUEUED", "Pending"):
        assert normalize(raw, None) is NormalizedStatus.QUEUED


def test_in_progress_is_started():
    assert normalize("in_progress", None) is NormalizedStatus.STARTED
    assert normalize("IN_PROGRESS", "success") is NormalizedStatus.STARTED


def test_completed_conclusions():
    cases = {
        None: NormalizedStatus.SUCCESS,
        "success": NormalizedStatus.SUCCESS,
        "failure": NormalizedStatus.FAILURE,
        "timed_out": NormalizedStatus.FAILURE,
        "action_required": NormalizedStatus.FAILURE,
        "stale": NormalizedStatus.FAILURE,
        "cancelled": NormalizedStatus.CANCELLED,
        "skipped": NormalizedStatus.SKIPPED,
        "neutral": NormalizedStatus.SUCCESS,
        "something_new": NormalizedStatus.SUCCESS,
    }
    for conclusion, expected in cases.items():
        assert normalize("completed", conclusion) is expected
        if conclusion is not None:
            assert normalize("Completed", conclusion.upper()) is expected


def test_unknown_status():
    assert normalize(None, None) is NormalizedStatus.UNKNOWN
    assert normalize(None, "success") is NormalizedStatus.UNKNOWN
    assert normalize("exploded", None) is NormalizedStatus.UNKNOWN
    assert normalize("", "failure") is NormalizedStatus.UNKNOWN


def test_total_and_finished_iff_terminal():
    statuses = [None, "queued", "in_progress", "completed", "waiting", "weird", "COMPLETED"]
    conclusions = [None, "success", "failure", "cancelled", "skipped", "stale", "neutral", "SKIPPED"]
    terminal = {
        NormalizedStatus.SUCCESS,
        NormalizedStatus.FAILURE,
        NormalizedStatus.CANCELLED,
        NormalizedStatus.SKIPPED,
    }
    for s, c in itertools.product(statuses, conclusions):
        result = normalize(s, c)
        assert result is normalize(s, c)
        assert is_finished(result) == (result in terminal)
