from __future__ import annotations

import datetime as _dt
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from .github_client import ProviderClient
from .ledger import DedupLedger
from .schemas import Job, Level, Run, Step, TickOutcome, WorkflowEvent, utc_now
from .settings import settings
from .sink import EventSink
from .status import NormalizedStatus
from .storage import StateStore

log = logging.getLogger(__name__)


@dataclass
class _ActiveRun:
    updated_at: _dt.datetime
    unchanged_since: _dt.datetime
    stale_warned: bool = False


class ReconciliationEngine:
    """Turns polled workflow-run snapshots into lifecycle events.

    One ``tick`` scans runs updated after the watermark, drills into jobs
    and steps, re-fetches runs still in flight, then checkpoints the ledger
    and watermark. Every event passes the dedup ledger before the sink, so
    repeating work within or across ticks is harmless.
    """

    def __init__(
        self,
        client: ProviderClient,
        store: StateStore,
        sink: EventSink,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        stale_after: Optional[_dt.timedelta] = None,
        clock: Callable[[], _dt.datetime] = utc_now,
    ) -> None:
        self.client = client
        self.store = store
        self.sink = sink
        self.page_size = int(page_size or settings.github.get("page_size", 100))
        self.max_pages = int(max_pages or settings.github.get("max_pages", 10))
        if stale_after is None:
            stale_after = _dt.timedelta(seconds=float(settings.monitor.get("stale_after_s", 3600)))
        self.stale_after = stale_after
        self._clock = clock

        state = store.load()
        self.watermark: _dt.datetime = state.last_run_time
        self.ledger = DedupLedger(state.already_seen_keys)
        self._active: Dict[int, _ActiveRun] = {}
        self._emitted = 0
        self._lock = threading.Lock()

    @property
    def active_run_ids(self) -> Set[int]:
        return set(self._active)

    def tick(self) -> TickOutcome:
        self._emitted = 0
        scanned = backfilled = 0
        error: Optional[str] = None
        try:
            handled: Set[int] = set()
            for run in self._scan_runs(self.watermark):
                self._process_run(run)
                handled.add(run.id)
                self._track(run)
                self._advance(run.updated_at)
                scanned += 1

            # Intra-run progress does not always bump updated_at before the next tick
            for run_id in list(self._active):
                if run_id in handled:
                    continue
                run = self.client.get_run(run_id)
                self._process_run(run)
                self._track(run)
                self._advance(run.updated_at)
                backfilled += 1

            self._warn_stalled()
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            log.exception("Error processing tick: %s", exc)

        persisted = self.persist()
        return TickOutcome(
            status="faulted" if error else "completed",
            runs_scanned=scanned,
            runs_backfilled=backfilled,
            events_emitted=self._emitted,
            watermark=self.watermark,
            error=error,
            persisted=persisted,
        )

    def persist(self) -> bool:
        # May run on the shutdown thread while a tick is still emitting
        with self._lock:
            return self.store.save(self.watermark, self.ledger)

    # Polling

    def _scan_runs(self, since: _dt.datetime) -> List[Run]:
        collected: List[Run] = []
        page = 1
        while True:
            page_runs = self.client.list_runs(page, self.page_size)
            if not page_runs:
                break
            fresh = [r for r in page_runs if r.updated_at > since]
            # Runs are listed newest first: nothing fresh here means nothing fresh later
            if not fresh:
                break
            collected.extend(fresh)
            if len(page_runs) < self.page_size:
                break
            page += 1
            if page > self.max_pages:
                log.warning(
                    "Too many new runs. Only the latest %d runs are retrieved.",
                    self.max_pages * self.page_size,
                )
                break
        collected.sort(key=lambda r: r.updated_at)
        return collected

    def _track(self, run: Run) -> None:
        if run.normalized_status.is_finished:
            self._active.pop(run.id, None)
            return
        entry = self._active.get(run.id)
        if entry is None or entry.updated_at != run.updated_at:
            self._active[run.id] = _ActiveRun(updated_at=run.updated_at, unchanged_since=self._clock())

    def _advance(self, updated_at: _dt.datetime) -> None:
        if updated_at > self.watermark:
            self.watermark = updated_at

    def _warn_stalled(self) -> None:
        now = self._clock()
        for run_id, entry in self._active.items():
            if entry.stale_warned or now - entry.unchanged_since <= self.stale_after:
                continue
            log.warning(
                "Run %s still active but unchanged since %s; it will keep being polled",
                run_id,
                entry.updated_at.isoformat(),
            )
            entry.stale_warned = True

    # Lifecycle mapping

    def _process_run(self, run: Run) -> None:
        status = run.normalized_status
        if status in (NormalizedStatus.QUEUED, NormalizedStatus.UNKNOWN):
            self._report(self._run_event(run, status, run.created_at))
            return

        self._report(self._run_event(run, NormalizedStatus.STARTED, run.created_at))

        for job in self.client.get_jobs(run.id):
            if job.started_at is None:
                continue
            self._process_job(run, job)

        if status.is_finished:
            self._report(self._run_event(run, status, run.updated_at))

    def _process_job(self, run: Run, job: Job) -> None:
        self._report(self._job_event(run, job, NormalizedStatus.STARTED, job.started_at))

        for step in job.steps:
            # Steps run in order; nothing after an unstarted step has begun
            if step.started_at is None:
                break
            self._process_step(run, job, step)

        status = job.normalized_status
        if status.is_finished:
            self._report(self._job_event(run, job, status, job.completed_at or job.started_at))

    def _process_step(self, run: Run, job: Job, step: Step) -> None:
        self._report(self._step_event(run, job, step, NormalizedStatus.STARTED, step.started_at))

        status = step.normalized_status
        if status.is_finished:
            self._report(self._step_event(run, job, step, status, step.completed_at or step.started_at))

    def _report(self, event: WorkflowEvent) -> None:
        with self._lock:
            is_new = self.ledger.is_new_event(event.key, event.time)
        if not is_new:
            return
        self.sink.write(event)
        self._emitted += 1

    @staticmethod
    def _run_event(run: Run, status: NormalizedStatus, time: _dt.datetime) -> WorkflowEvent:
        return WorkflowEvent(
            entity_id=str(run.id),
            time=time,
            level=Level.RUN,
            status=status,
            branch=run.head_branch,
            sha=run.head_sha,
            name=run.name,
        )

    @staticmethod
    def _job_event(run: Run, job: Job, status: NormalizedStatus, time: _dt.datetime) -> WorkflowEvent:
        return WorkflowEvent(
            entity_id=str(job.id),
            time=time,
            level=Level.JOB,
            status=status,
            branch=run.head_branch,
            sha=run.head_sha,
            name=job.name,
        )

    @staticmethod
    def _step_event(run: Run, job: Job, step: Step, status: NormalizedStatus, time: _dt.datetime) -> WorkflowEvent:
        return WorkflowEvent(
            entity_id=f"{job.id}:{step.number}",
            time=time,
            level=Level.STEP,
            status=status,
            branch=run.head_branch,
            sha=run.head_sha,
            name=step.name,
        )
