"""Durable job queue and the enrichment pipeline that drains it."""

from __future__ import annotations

import uuid
from concurrent.futures import as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from ..errors import ConflictError, NotFoundError
from ..infra.storage import Store
from ..logging_conf import component_logger
from ..models import Item, Job, JobResult, JobStatus, utcnow
from ..ports import DocumentExporter, ExportReference, Notifier, Summarizer, Summary
from .thread_pool import ThreadPoolManager


@dataclass(slots=True)
class BatchReport:
    processed: int = 0
    succeeded: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"processed": self.processed, "success": self.succeeded, "errors": list(self.errors)}


class JobStateMachine:
    """``pending -> processing -> done | failed`` with at-most-once claims.

    Every transition is a conditional update on the expected prior state, so
    two workers racing for the same row cannot both win.
    """

    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock
        self.logger = component_logger("jobs")

    def enqueue(self, item_id: str) -> Job | None:
        existing = self.store.get_job_for_item(item_id)
        if existing is not None:
            if existing.status is JobStatus.FAILED:
                return self.retry(existing.id)
            self.logger.debug("job_exists", item_id=item_id, job_id=existing.id, status=existing.status.value)
            return None
        job = Job(
            id=f"job_{uuid.uuid4().hex[:16]}",
            item_id=item_id,
            status=JobStatus.PENDING,
            created_at=self.clock(),
        )
        try:
            self.store.insert_job(job)
        except ConflictError:
            # Another invocation enqueued the same item first.
            self.logger.debug("job_enqueue_conflict", item_id=item_id)
            return None
        self.logger.info("job_enqueued", item_id=item_id, job_id=job.id)
        return job

    def retry(self, job_id: str) -> Job:
        """Reset a failed job to pending (operator retry)."""

        self._transition(
            job_id,
            JobStatus.FAILED,
            JobStatus.PENDING,
            started_at=None,
            finished_at=None,
            error=None,
        )
        self.logger.info("job_requeued", job_id=job_id)
        return self.get(job_id)

    def claim_batch(self, limit: int) -> list[Job]:
        claimed: list[Job] = []
        for job_id in self.store.pending_job_ids(limit):
            won = self.store.transition_job(
                job_id, JobStatus.PENDING, JobStatus.PROCESSING, started_at=self.clock()
            )
            if not won:
                self.logger.debug("job_claim_lost", job_id=job_id)
                continue
            job = self.store.get_job(job_id)
            if job is not None:
                claimed.append(job)
        return claimed

    def complete(self, job_id: str, result: JobResult) -> Job:
        self._transition(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.DONE,
            finished_at=self.clock(),
            summary_text=result.summary_text,
            key_points=result.key_points,
            doc_url=result.doc_url,
            doc_id=result.doc_id,
            notified_at=result.notified_at,
            error=None,
        )
        return self.get(job_id)

    def fail(self, job_id: str, error: str) -> Job:
        self._transition(
            job_id, JobStatus.PROCESSING, JobStatus.FAILED, finished_at=self.clock(), error=error
        )
        return self.get(job_id)

    def requeue_stale(self, older_than: timedelta) -> int:
        cutoff = self.clock() - older_than
        moved = 0
        for job_id in self.store.stale_job_ids(cutoff):
            if self.store.transition_job(
                job_id, JobStatus.PROCESSING, JobStatus.PENDING, started_at=None
            ):
                moved += 1
                self.logger.warning("job_reclaimed", job_id=job_id)
        return moved

    def get(self, job_id: str) -> Job:
        job = self.store.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {job_id}")
        return job

    def list_jobs(self, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        return self.store.list_jobs(status=status, limit=limit)

    def _transition(self, job_id: str, expected: JobStatus, target: JobStatus, **fields) -> None:
        if self.store.transition_job(job_id, expected, target, **fields):
            return
        current = self.get(job_id)
        raise ConflictError(
            f"Job {job_id} is {current.status.value}, expected {expected.value}"
        )


class JobProcessor:
    """Run claimed jobs through summarize, export and notify."""

    def __init__(
        self,
        machine: JobStateMachine,
        summarizer: Summarizer,
        exporter: DocumentExporter | None = None,
        notifier: Notifier | None = None,
        pools: ThreadPoolManager | None = None,
        max_workers: int = 2,
    ) -> None:
        self.machine = machine
        self.store = machine.store
        self.summarizer = summarizer
        self.exporter = exporter
        self.notifier = notifier
        self.pools = pools or ThreadPoolManager()
        self.max_workers = max_workers
        self.logger = component_logger("jobs")

    def run_batch(self, limit: int) -> BatchReport:
        report = BatchReport()
        jobs = self.machine.claim_batch(limit)
        if not jobs:
            return report
        executor = self.pools.get("jobs", self.max_workers)
        futures = {executor.submit(self.process, job): job for job in jobs}
        for future in as_completed(futures):
            job = futures[future]
            report.processed += 1
            try:
                finished = future.result()
            except Exception as exc:  # noqa: BLE001
                self.logger.error("job_crashed", job_id=job.id, error=str(exc))
                report.errors.append(f"{job.id}: {exc}")
                continue
            if finished is not None and finished.status is JobStatus.DONE:
                report.succeeded += 1
            elif finished is None:
                report.errors.append(f"{job.id}: ownership lost")
            else:
                report.errors.append(f"{job.id}: {finished.error}")
        self.logger.info(
            "job_batch_finished",
            processed=report.processed,
            succeeded=report.succeeded,
            failed=len(report.errors),
        )
        return report

    def process(self, job: Job) -> Job | None:
        """Process one claimed job; returns the final job, or None if another worker took it."""

        log = self.logger.bind(job_id=job.id, item_id=job.item_id)
        item = self.store.get_item(job.item_id)
        if item is None:
            return self._fail(job, f"Item not found: {job.item_id}")

        try:
            summary = self.summarizer.summarize(item)
        except Exception as exc:  # noqa: BLE001
            log.error("summarize_failed", error=str(exc))
            return self._fail(job, str(exc) or exc.__class__.__name__)

        export = self._export(item, summary, log)
        notified_at = self._notify(item, summary, export, log)

        result = JobResult(
            summary_text=summary.text,
            key_points=list(summary.key_points),
            doc_url=export.doc_url if export else None,
            doc_id=export.doc_id if export else None,
            notified_at=notified_at,
        )
        try:
            finished = self.machine.complete(job.id, result)
        except ConflictError as exc:
            log.warning("job_complete_conflict", error=str(exc))
            return None
        log.info("job_done", doc_id=result.doc_id)
        return finished

    def _export(self, item: Item, summary: Summary, log) -> ExportReference | None:
        if self.exporter is None:
            return None
        try:
            return self.exporter.export(item, summary)
        except Exception as exc:  # noqa: BLE001
            log.warning("export_failed", error=str(exc))
            return None

    def _notify(self, item: Item, summary: Summary, export: ExportReference | None, log) -> datetime | None:
        if self.notifier is None:
            return None
        try:
            self.notifier.notify(item, summary, export)
        except Exception as exc:  # noqa: BLE001
            log.warning("notify_failed", error=str(exc))
            return None
        return self.machine.clock()

    def _fail(self, job: Job, error: str) -> Job | None:
        try:
            return self.machine.fail(job.id, error)
        except ConflictError as exc:
            self.logger.warning("job_fail_conflict", job_id=job.id, error=str(exc))
            return None


__all__ = ["BatchReport", "JobProcessor", "JobStateMachine"]
