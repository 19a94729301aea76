# copyflow/workers.py
"""
Hand-off from bulk submission to job execution.

- ThreadPoolDispatcher: in-process worker pool (default, JOB_BACKEND=thread)
- CeleryDispatcher: enqueues ``copyflow.process_bulk_job`` for out-of-process
  workers (JOB_BACKEND=celery). Start a worker with:

    celery -A copyflow.workers:celery_app worker --loglevel=INFO
"""
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Set

from celery import Celery

from copyflow.monitoring import get_logger

log = get_logger("workers")

BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
BACKEND_URL = os.environ.get("CELERY_RESULT_BACKEND", BROKER_URL)

celery_app = Celery("copyflow", broker=BROKER_URL, backend=BACKEND_URL)
celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    timezone="UTC",
    enable_utc=True,
)

# worker-process pipeline, built on first task
_worker_pipeline = None
_worker_lock = threading.Lock()


def _pipeline_for_worker():
    global _worker_pipeline
    with _worker_lock:
        if _worker_pipeline is None:
            from copyflow.config import Settings
            from copyflow.services import build_services
            services = build_services(Settings.from_env())
            services.db.init_db()
            _worker_pipeline = services.pipeline
    return _worker_pipeline


@celery_app.task(bind=True, name="copyflow.process_bulk_job")
def process_bulk_job(self, job_id: str):
    log.info("Celery worker picked up bulk job", extra={"job_id": job_id})
    snapshot = _pipeline_for_worker().process_job(job_id)
    return {"job_id": job_id, "status": snapshot.status.value if snapshot else None}


class ThreadPoolDispatcher:
    """Runs jobs on a thread pool; a job id already in flight is not started twice."""

    def __init__(self, runner: Optional[Callable[[str], object]] = None, max_workers: int = 2):
        self.runner = runner
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="copyflow-bulk")
        self._inflight: Set[str] = set()
        self._lock = threading.Lock()

    def dispatch(self, job_id: str) -> Optional[Future]:
        if self.runner is None:
            raise RuntimeError("ThreadPoolDispatcher has no runner")
        with self._lock:
            if job_id in self._inflight:
                log.info("Bulk job already running; dispatch ignored", extra={"job_id": job_id})
                return None
            self._inflight.add(job_id)
        return self._executor.submit(self._run, job_id)

    def _run(self, job_id: str):
        try:
            return self.runner(job_id)
        except Exception:
            # already recorded on the job row by the pipeline
            log.exception("Bulk job worker crashed", extra={"job_id": job_id})
        finally:
            with self._lock:
                self._inflight.discard(job_id)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)


class CeleryDispatcher:
    def __init__(self, task=process_bulk_job):
        self.task = task

    def dispatch(self, job_id: str):
        return self.task.delay(job_id)

    def shutdown(self, wait: bool = True):
        pass


def build_dispatcher(settings, runner: Callable[[str], object]):
    if settings.job_backend == "celery":
        celery_app.conf.broker_url = settings.celery_broker_url
        return CeleryDispatcher()
    return ThreadPoolDispatcher(runner, max_workers=settings.job_workers)
