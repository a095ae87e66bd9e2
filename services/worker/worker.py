import importlib
import os
import time
import uuid

from prometheus_client import start_http_server
from sqlalchemy import text

from api.db.job_store import JobStore
from api.db.session import engine
from api.schemas.job import IngestionResult
from common.config import (
    METRICS_ENABLED,
    METRICS_PORT,
    NOTIFY_ENABLED,
    POLL_INTERVAL_SECONDS,
    env,
)
from common.errors import LeaseLost, StorageUnavailable
from common.events import log_event
from common.metrics import worker_heartbeat
from common.notify import NullNotifier, RedisStreamNotifier


# ============================================================
# Environment
# ============================================================

WORKER_ID = os.getenv("WORKER_ID") or f"worker-{uuid.uuid4()}"
MAX_LOOPS = int(os.getenv("MAX_LOOPS", "0"))
STORAGE_BACKOFF_SECONDS = float(os.getenv("STORAGE_BACKOFF_SECONDS", "0.5"))


# ============================================================
# Handler
# ============================================================

def load_handler(path):
    """
    Resolve "package.module:function". The handler receives the claimed Job
    and returns an IngestionResult (or a dict of its fields); raising marks
    the attempt as failed.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"handler must look like 'module:function', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


# ============================================================
# DB Helpers
# ============================================================

def wait_for_schema(bind=engine, timeout_seconds=60):
    deadline = time.time() + timeout_seconds
    while time.time() < deadline:
        try:
            with bind.connect() as conn:
                conn.execute(text("SELECT 1 FROM ingestion_jobs LIMIT 1"))
            return
        except Exception:
            time.sleep(2)
    raise RuntimeError("schema not ready")


# ============================================================
# Execution
# ============================================================

def process_one(store: JobStore, handler, worker_id: str):
    """Claim and run at most one job. Returns the job's final status, or None when idle."""
    job = store.claim(worker_id)
    if job is None:
        return None

    log_event("execution_started", job_id=job.id, worker_id=worker_id, attempts=job.attempts)

    try:
        result = handler(job)
        if not isinstance(result, IngestionResult):
            # None and dicts go through the same model the store applies
            result = IngestionResult.model_validate(result or {})
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        log_event("execution_failed", job_id=job.id, worker_id=worker_id, error=error)
        return store.retry(job.id, error, worker_id=worker_id).status

    return store.complete(job.id, result, worker_id=worker_id).status


def run(store: JobStore, handler, worker_id=WORKER_ID, notifier=None,
        poll_interval=POLL_INTERVAL_SECONDS, max_loops=MAX_LOOPS):
    notifier = notifier or store.notifier
    loops = 0

    while True:
        if max_loops and loops >= max_loops:
            log_event("worker_exit", worker_id=worker_id, reason="max_loops")
            break

        loops += 1
        worker_heartbeat.inc()

        try:
            outcome = process_one(store, handler, worker_id)
        except StorageUnavailable:
            time.sleep(STORAGE_BACKOFF_SECONDS)
            continue
        except LeaseLost as e:
            # Another worker owns the job now; its outcome is theirs to report.
            log_event("lease_lost", worker_id=worker_id, job_id=e.job_id, locked_by=e.locked_by)
            continue

        if outcome is None:
            notifier.wait(poll_interval)

    return loops


# ============================================================
# Main Loop
# ============================================================

def main():
    if METRICS_ENABLED:
        start_http_server(METRICS_PORT)

    handler = load_handler(env("INGEST_HANDLER"))
    notifier = RedisStreamNotifier.from_url() if NOTIFY_ENABLED else NullNotifier()
    store = JobStore(notifier=notifier)

    wait_for_schema()
    log_event("worker_started", worker_id=WORKER_ID)
    run(store, handler, worker_id=WORKER_ID, notifier=notifier)


if __name__ == "__main__":
    main()
