# copyflow/bulk.py
"""
Bulk job pipeline.

A job is submitted as ``pending`` and handed to a dispatcher; one worker then
claims it (``pending`` -> ``processing``), walks the items strictly in input
order and checkpoints after every item: the item row and the job counters are
written in one transaction. A restarted worker resumes at the first position
without an item row, so finished items are never regenerated.

The claiming worker holds a lease (``worker_token`` plus ``heartbeat_at``,
refreshed on every checkpoint). Every write after the claim is conditional on
that token, so once another worker takes over an expired lease the old one
can no longer advance, complete or fail the job.
"""
import datetime
import time
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from copyflow import monitoring
from copyflow.db import Database, utcnow
from copyflow.errors import ITEM_FAILURES, CopyFlowError, ValidationError
from copyflow.models import BulkJob, BulkJobItem, Generation, Tenant
from copyflow.processors.content_generator import ContentGenerator
from copyflow.schemas import (
    MAX_BULK_ITEMS, GenerationItem, ItemOutcome, JobSnapshot, JobStatus,
)

log = monitoring.get_logger("bulk")

DEFAULT_LEASE_SECONDS = 300


class _LeaseLost(Exception):
    """Another worker took over the job; stop without touching it."""


def _public_error(e: Exception) -> str:
    # raw driver and SQL text stays in the logs
    if isinstance(e, CopyFlowError):
        return e.message
    return "Internal processing error"


def _validation_message(e: PydanticValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "Invalid item"


def parse_item(raw: Any) -> GenerationItem:
    if not isinstance(raw, dict):
        raise ValidationError("Item must be an object")
    try:
        return GenerationItem.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(_validation_message(e)) from e


def _snapshot(job: BulkJob, results: Optional[List[ItemOutcome]] = None) -> JobSnapshot:
    return JobSnapshot(
        jobId=job.id,
        name=job.name,
        status=JobStatus(job.status),
        totalItems=job.total_items,
        processed=job.processed,
        successful=job.successful,
        failed=job.failed,
        createdAt=job.created_at,
        completedAt=job.completed_at,
        results=results,
        error=(job.error_log or {}).get("error"),
    )


class BulkJobPipeline:
    def __init__(self, db: Database, generator: ContentGenerator,
                 dispatcher=None, notifier=None, lease_seconds: int = DEFAULT_LEASE_SECONDS):
        self.db = db
        self.lease_seconds = lease_seconds
        self.generator = generator
        self.dispatcher = dispatcher
        self.notifier = notifier

    # -----------------------------------------------------------------------
    # Submission
    # -----------------------------------------------------------------------
    def submit(self, tenant_id: str, name: str, items: List[Dict[str, Any]],
               credential_id: Optional[str] = None) -> JobSnapshot:
        if not name or not name.strip():
            raise ValidationError("Job name is required")
        if not isinstance(items, list) or not items:
            raise ValidationError("At least one item is required")
        if len(items) > MAX_BULK_ITEMS:
            raise ValidationError(f"Maximum {MAX_BULK_ITEMS} items per batch")

        with self.db.session() as s:
            job = BulkJob(
                tenant_id=tenant_id,
                api_key_id=credential_id,
                name=name.strip(),
                status=JobStatus.PENDING.value,
                total_items=len(items),
                input_data=items,
            )
            s.add(job)
            s.flush()
        log.info("Bulk job submitted", extra={"job_id": job.id, "tenant_id": tenant_id,
                                              "total_items": job.total_items})
        self._dispatch(job.id)
        return _snapshot(job)

    def _dispatch(self, job_id: str) -> None:
        if self.dispatcher is None:
            log.warning("No dispatcher configured; job left pending", extra={"job_id": job_id})
            return
        try:
            self.dispatcher.dispatch(job_id)
        except Exception:
            # the job stays pending and is picked up by resume_interrupted()
            log.exception("Failed to dispatch bulk job", extra={"job_id": job_id})

    def resume_interrupted(self) -> List[str]:
        """
        Re-dispatch every job that never reached a terminal state and is not
        held by a live worker (pending, or processing with an expired lease).
        """
        with self.db.session() as s:
            job_ids = list(s.scalars(
                select(BulkJob.id)
                .where(self._claimable(utcnow()))
                .order_by(BulkJob.created_at)
            ))
        for job_id in job_ids:
            log.info("Resuming bulk job", extra={"job_id": job_id})
            self._dispatch(job_id)
        return job_ids

    # -----------------------------------------------------------------------
    # Processing
    # -----------------------------------------------------------------------
    def _claimable(self, now: datetime.datetime):
        cutoff = now - datetime.timedelta(seconds=self.lease_seconds)
        stale = or_(BulkJob.heartbeat_at.is_(None), BulkJob.heartbeat_at <= cutoff)
        return or_(
            BulkJob.status == JobStatus.PENDING.value,
            and_(BulkJob.status == JobStatus.PROCESSING.value, stale),
        )

    def _claim(self, job_id: str) -> Tuple[Optional[BulkJob], Set[int], Optional[str]]:
        """
        Take the lease on a pending job, or on a processing job whose worker
        stopped heartbeating. Returns (job, finished positions, lease token).
        """
        token = str(uuid.uuid4())
        now = utcnow()
        with self.db.session() as s:
            claimed = s.execute(
                update(BulkJob)
                .where(BulkJob.id == job_id, self._claimable(now))
                .values(status=JobStatus.PROCESSING.value, worker_token=token, heartbeat_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount
            job = s.get(BulkJob, job_id)
            if job is None:
                log.error("Bulk job not found", extra={"job_id": job_id})
                return None, set(), None
            if claimed != 1:
                log.info("Bulk job not claimable", extra={"job_id": job_id, "status": job.status})
                return None, set(), None
            done = set(s.scalars(select(BulkJobItem.position).where(BulkJobItem.job_id == job_id)))
        return job, done, token

    def _owned(self, job_id: str, token: str):
        return and_(BulkJob.id == job_id,
                    BulkJob.status == JobStatus.PROCESSING.value,
                    BulkJob.worker_token == token)

    def _run_item(self, raw: Any) -> Tuple[ItemOutcome, Optional[GenerationItem]]:
        item = None
        try:
            item = parse_item(raw)
            result = self.generator.generate(item)
        except ITEM_FAILURES as e:
            return ItemOutcome(success=False, error=e.message), item
        return ItemOutcome(success=True, data=result.model_dump()), item

    def _checkpoint(self, job: BulkJob, token: str, position: int, outcome: ItemOutcome,
                    item: Optional[GenerationItem]) -> None:
        with self.db.session() as s:
            advanced = s.execute(
                update(BulkJob)
                .where(self._owned(job.id, token))
                .values(
                    processed=BulkJob.processed + 1,
                    successful=BulkJob.successful + (1 if outcome.success else 0),
                    failed=BulkJob.failed + (0 if outcome.success else 1),
                    heartbeat_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            if advanced != 1:
                raise _LeaseLost(job.id)

            result = outcome.data
            if outcome.success:
                generation = Generation(
                    id=str(uuid.uuid4()),
                    tenant_id=job.tenant_id,
                    api_key_id=job.api_key_id,
                    bulk_job_id=job.id,
                    kind="product",
                    product_name=item.productName,
                    category=item.category.value,
                    writing_style=item.writingStyle.value,
                    language=item.language.value,
                    content=outcome.data,
                )
                s.add(generation)
                result = {"id": generation.id, **outcome.data}
            s.add(BulkJobItem(
                job_id=job.id,
                position=position,
                success=outcome.success,
                result=result,
                error=outcome.error,
            ))

    def process_job(self, job_id: str) -> Optional[JobSnapshot]:
        """
        Drive one job to a terminal state. Returns the final snapshot, or None
        when there was nothing to do (unknown, finished or leased elsewhere)
        or the lease was lost to another worker mid-run.
        Exceptions that escape per-item containment mark the job failed and
        are re-raised.
        """
        job, done, token = self._claim(job_id)
        if job is None:
            return None

        start = time.time()
        if done:
            log.info("Resuming bulk job after checkpoint",
                     extra={"job_id": job_id, "completed_items": len(done)})
        try:
            for position, raw in enumerate(job.input_data or []):
                if position in done:
                    continue
                outcome, item = self._run_item(raw)
                self._checkpoint(job, token, position, outcome, item)
                monitoring.inc_bulk_item("success" if outcome.success else "fail")
                if not outcome.success:
                    log.info("Bulk item failed", extra={"job_id": job_id, "position": position,
                                                         "error": outcome.error})
            completed = self._complete(job, token)
        except _LeaseLost:
            log.warning("Lost bulk job lease; another worker owns it", extra={"job_id": job_id})
            return None
        except Exception as e:
            log.exception("Bulk job failed", extra={"job_id": job_id})
            self._fail(job_id, token, _public_error(e))
            raise

        if not completed:
            return None
        log.info("Bulk job completed", extra={"job_id": job_id,
                                              "seconds": round(time.time() - start, 3)})
        return self.get_status(job_id, job.tenant_id)

    def _complete(self, job: BulkJob, token: str) -> bool:
        with self.db.session() as s:
            finished = s.execute(
                update(BulkJob)
                .where(self._owned(job.id, token))
                .values(status=JobStatus.COMPLETED.value, completed_at=utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            if finished != 1:
                log.warning("Bulk job left processing before completion", extra={"job_id": job.id})
                return False
            row = s.get(BulkJob, job.id)
            successful, failed = row.successful, row.failed
            tenant = s.get(Tenant, job.tenant_id)
            email = tenant.owner_email if tenant else None
        monitoring.inc_bulk_job(JobStatus.COMPLETED.value)

        if self.notifier is not None:
            try:
                self.notifier.bulk_completed(email, job.name, successful, failed)
            except Exception:
                log.exception("Failed to send completion notice", extra={"job_id": job.id})
        return True

    def _fail(self, job_id: str, token: str, message: str) -> None:
        try:
            with self.db.session() as s:
                failed = s.execute(
                    update(BulkJob)
                    .where(self._owned(job_id, token))
                    .values(status=JobStatus.FAILED.value, error_log={"error": message})
                    .execution_options(synchronize_session=False)
                ).rowcount
        except SQLAlchemyError:
            log.exception("Could not mark bulk job failed", extra={"job_id": job_id})
            return
        if failed == 1:
            monitoring.inc_bulk_job(JobStatus.FAILED.value)

    # -----------------------------------------------------------------------
    # Status
    # -----------------------------------------------------------------------
    def get_status(self, job_id: str, tenant_id: str) -> Optional[JobSnapshot]:
        with self.db.session() as s:
            job = s.scalars(
                select(BulkJob).where(BulkJob.id == job_id, BulkJob.tenant_id == tenant_id)
            ).first()
            if job is None:
                return None
            results = None
            if job.status == JobStatus.COMPLETED.value:
                rows = s.scalars(
                    select(BulkJobItem).where(BulkJobItem.job_id == job_id)
                    .order_by(BulkJobItem.position)
                ).all()
                results = [ItemOutcome(success=r.success, data=r.result, error=r.error) for r in rows]
            return _snapshot(job, results)
