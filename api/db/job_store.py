"""
Persistent ingestion job queue.

Every operation runs in a single transaction and either applies fully or not
at all. Claim and the lease sweep pick candidates with FOR UPDATE SKIP LOCKED,
so a worker skips rows another transaction is already evaluating instead of
queueing behind it. Complete and Retry lock the one row they touch and turn
repeated calls into no-ops, which lets callers deliver at-least-once.
"""
import uuid
from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy import case, func, literal, select, update, String
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError

from api.db.models import IngestionJob, Post
from api.db.session import SessionLocal
from api.schemas.job import IngestionResult, Job
from common import config
from common.backoff import retry_delay, truncate_error
from common.clock import Clock
from common.errors import JobNotFound, LeaseLost, StorageUnavailable
from common.events import log_event
from common.metrics import (
    jobs_claimed,
    jobs_completed,
    jobs_enqueued,
    jobs_failed,
    jobs_retried,
    leases_reclaimed,
)
from common.notify import NullNotifier
from common.states import CLAIMABLE, TERMINAL, IngestionStatus, JobStatus

jobs = IngestionJob.__table__

# INSERT ... ON CONFLICT is dialect specific in SQLAlchemy.
_UPSERT_INSERT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def row_to_job(row) -> Job:
    return Job.model_validate(dict(row._mapping))


def as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class JobStore:
    def __init__(
        self,
        session_factory=SessionLocal,
        clock=None,
        notifier=None,
        max_attempts: int = config.MAX_ATTEMPTS,
        base_delay_seconds: int = config.RETRY_BASE_DELAY_SECONDS,
        delay_cap_seconds: int = config.RETRY_DELAY_CAP_SECONDS,
        error_max_length: int = config.LAST_ERROR_MAX_LENGTH,
        lease_seconds: int = config.LEASE_SECONDS,
        sweep_batch_size: int = config.RECONCILE_BATCH_SIZE,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.session_factory = session_factory
        self.clock = clock or Clock()
        self.notifier = notifier or NullNotifier()
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.delay_cap_seconds = delay_cap_seconds
        self.error_max_length = error_max_length
        self.lease_seconds = lease_seconds
        self.sweep_batch_size = sweep_batch_size

    # --------------------------------------------------------
    # Plumbing
    # --------------------------------------------------------

    @contextmanager
    def transaction(self):
        try:
            with self.session_factory() as session:
                with session.begin():
                    yield session
        except OperationalError as e:
            log_event("storage_unavailable", error=str(e.orig or e))
            raise StorageUnavailable(str(e.orig or e)) from e

    def upsert_insert(self, session):
        dialect = session.get_bind().dialect.name
        try:
            return _UPSERT_INSERT[dialect]
        except KeyError:
            raise NotImplementedError(f"enqueue is not supported on {dialect}") from None

    def _lock_job(self, session, job_id):
        job = session.execute(
            select(IngestionJob).where(IngestionJob.id == job_id).with_for_update()
        ).scalar_one_or_none()
        if job is None:
            raise JobNotFound("job", job_id)
        return job

    def _writable(self, job, worker_id, op) -> bool:
        """
        Whether `op` may transition this job. Terminal and not-leased jobs are
        soft no-ops; a lease held by a different worker is a hard error.
        """
        if job.status in TERMINAL:
            log_event("already_terminal", op=op, job_id=job.id, status=job.status)
            return False

        if job.status != JobStatus.PROCESSING.value:
            log_event("not_leased", op=op, job_id=job.id, status=job.status)
            return False

        if worker_id is not None and job.locked_by != worker_id:
            log_event(
                "stale_write_blocked",
                op=op,
                job_id=job.id,
                worker_id=worker_id,
                locked_by=job.locked_by,
            )
            raise LeaseLost(job.id, worker_id, job.locked_by)

        return True

    # --------------------------------------------------------
    # Enqueue
    # --------------------------------------------------------

    def enqueue(self, post_id) -> Job:
        """
        Ensure exactly one active job exists for the post.

        Creates a queued job, revives a completed/failed one in place, and
        leaves a queued/processing/retry job untouched.
        """
        post_id = as_uuid(post_id)
        now = self.clock.now()
        terminal = jobs.c.status.in_(TERMINAL)

        with self.transaction() as session:
            if session.get(Post, post_id) is None:
                raise JobNotFound("post", post_id)

            # The row lock holds the status steady until commit, so a revive
            # seen here is the one the upsert performs.
            previous = session.execute(
                select(jobs.c.status).where(jobs.c.post_id == post_id).with_for_update()
            ).scalar_one_or_none()

            new_id = uuid.uuid4()
            insert = self.upsert_insert(session)
            stmt = insert(jobs).values(
                id=new_id,
                post_id=post_id,
                status=JobStatus.QUEUED.value,
                attempts=0,
                next_run_at=now,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[jobs.c.post_id],
                set_={
                    "status": case((terminal, JobStatus.QUEUED.value), else_=jobs.c.status),
                    "attempts": case((terminal, 0), else_=jobs.c.attempts),
                    "next_run_at": case((terminal, now), else_=jobs.c.next_run_at),
                    "last_error": case((terminal, None), else_=jobs.c.last_error),
                    "locked_by": case((terminal, None), else_=jobs.c.locked_by),
                    "locked_at": case((terminal, None), else_=jobs.c.locked_at),
                    "updated_at": case((terminal, now), else_=jobs.c.updated_at),
                },
            ).returning(*jobs.c)

            job = row_to_job(session.execute(stmt).one())
            # A concurrent insert that won the conflict returns its own id.
            created = job.id == new_id
            fresh = created or (previous in TERMINAL and job.status == JobStatus.QUEUED)

            if fresh:
                session.execute(
                    update(Post)
                    .where(
                        Post.id == post_id,
                        Post.ingestion_status.in_(
                            (IngestionStatus.COMPLETED.value, IngestionStatus.FAILED.value)
                        ),
                    )
                    .values(
                        ingestion_status=IngestionStatus.PENDING.value,
                        ingestion_error=None,
                        updated_at=now,
                    )
                )

        if fresh:
            jobs_enqueued.inc()
            self.notifier.announce(job.id)

        log_event("job_enqueued", job_id=job.id, post_id=post_id, status=job.status.value, fresh=fresh)
        return job

    # --------------------------------------------------------
    # Claim
    # --------------------------------------------------------

    def claim(self, worker_id: str) -> Job | None:
        """Lease the eligible job with the oldest next_run_at, or return None."""
        if not worker_id:
            raise ValueError("worker_id is required")

        now = self.clock.now()
        eligible = jobs.c.status.in_(CLAIMABLE) & (jobs.c.next_run_at <= now)

        with self.transaction() as session:
            while True:
                candidate = session.execute(
                    select(jobs.c.id)
                    .where(eligible)
                    .order_by(jobs.c.next_run_at, jobs.c.created_at)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).scalar_one_or_none()

                if candidate is None:
                    return None

                # The status guard makes a lost race visible on backends
                # without row locks; with SKIP LOCKED it always matches.
                row = session.execute(
                    update(jobs)
                    .where(jobs.c.id == candidate, jobs.c.status.in_(CLAIMABLE))
                    .values(
                        status=JobStatus.PROCESSING.value,
                        locked_by=worker_id,
                        locked_at=now,
                        updated_at=now,
                    )
                    .returning(*jobs.c)
                ).one_or_none()

                if row is not None:
                    job = row_to_job(row)
                    break

                log_event("claim_race_lost", job_id=candidate, worker_id=worker_id)

        jobs_claimed.inc()
        log_event("lease_acquired", job_id=job.id, worker_id=worker_id, attempts=job.attempts)
        return job

    # --------------------------------------------------------
    # Complete
    # --------------------------------------------------------

    def complete(self, job_id, result=None, worker_id: str | None = None) -> Job:
        """
        Finalize a processed job and apply `result` to its post.

        Re-delivery against a terminal job is a no-op. Pass `worker_id` to
        refuse the write when the caller no longer holds the lease.
        """
        job_id = as_uuid(job_id)
        if result is None:
            result = IngestionResult()
        elif not isinstance(result, IngestionResult):
            result = IngestionResult.model_validate(result)

        now = self.clock.now()

        with self.transaction() as session:
            job = self._lock_job(session, job_id)
            applied = self._writable(job, worker_id, "complete")

            if applied:
                job.status = JobStatus.COMPLETED.value
                job.locked_by = None
                job.locked_at = None
                job.last_error = None
                job.updated_at = now

                post = session.get(Post, job.post_id)
                if post is not None:
                    payload = result.to_payload()
                    if payload is not None:
                        post.payload = payload
                    if result.thumbnail_url:
                        post.thumbnail_url = result.thumbnail_url
                    post.ingestion_status = IngestionStatus.COMPLETED.value
                    post.ingestion_error = None
                    post.ingested_at = now
                    post.updated_at = now

                session.flush()

            snapshot = Job.model_validate(job)

        if applied:
            jobs_completed.inc()
            log_event("job_completed", job_id=job_id, post_id=snapshot.post_id)
        return snapshot

    # --------------------------------------------------------
    # Retry
    # --------------------------------------------------------

    def retry(self, job_id, error, worker_id: str | None = None) -> Job:
        """
        Record a failed attempt: schedule the next one with exponential
        backoff, or fail the job for good once max_attempts is reached.
        """
        job_id = as_uuid(job_id)
        now = self.clock.now()
        last_error = truncate_error(error, self.error_max_length)

        with self.transaction() as session:
            job = self._lock_job(session, job_id)
            applied = self._writable(job, worker_id, "retry")

            if applied:
                attempts = job.attempts + 1
                exhausted = attempts >= self.max_attempts
                delay = retry_delay(attempts, self.base_delay_seconds, self.delay_cap_seconds)

                job.attempts = attempts
                job.status = (JobStatus.FAILED if exhausted else JobStatus.RETRY).value
                job.next_run_at = now + delay
                job.last_error = last_error
                job.locked_by = None
                job.locked_at = None
                job.updated_at = now

                post = session.get(Post, job.post_id)
                if post is not None:
                    if exhausted:
                        post.ingestion_status = IngestionStatus.FAILED.value
                        post.ingestion_error = last_error
                    else:
                        post.ingestion_status = IngestionStatus.PROCESSING.value
                    post.updated_at = now

                session.flush()

            snapshot = Job.model_validate(job)

        if applied:
            if snapshot.status == JobStatus.FAILED:
                jobs_failed.inc()
                log_event("job_failed", job_id=job_id, attempts=snapshot.attempts, error=last_error)
            else:
                jobs_retried.inc()
                log_event(
                    "job_retry_scheduled",
                    job_id=job_id,
                    attempts=snapshot.attempts,
                    next_run_at=snapshot.next_run_at.isoformat(),
                    error=last_error,
                )
        return snapshot

    # --------------------------------------------------------
    # Lease sweep
    # --------------------------------------------------------

    def reclaim_expired_leases(self, lease_seconds: int | None = None, batch_size: int | None = None) -> list:
        """
        Move processing jobs whose lease is older than `lease_seconds` back to
        retry, immediately eligible. Attempts are left alone: only a worker's
        Retry counts as a failed attempt.
        """
        lease_seconds = self.lease_seconds if lease_seconds is None else lease_seconds
        batch_size = self.sweep_batch_size if batch_size is None else batch_size

        now = self.clock.now()
        cutoff = now - timedelta(seconds=lease_seconds)
        expired = (jobs.c.status == JobStatus.PROCESSING.value) & (jobs.c.locked_at < cutoff)

        with self.transaction() as session:
            candidates = session.execute(
                select(jobs.c.id)
                .where(expired)
                .order_by(jobs.c.locked_at)
                .limit(batch_size)
                .with_for_update(skip_locked=True)
            ).scalars().all()

            if not candidates:
                return []

            # SET expressions see the pre-update row, so locked_by is still the
            # worker that lost the lease.
            reclaimed = session.execute(
                update(jobs)
                .where(jobs.c.id.in_(candidates), expired)
                .values(
                    status=JobStatus.RETRY.value,
                    next_run_at=now,
                    last_error=literal("lease expired for worker ", String)
                    + func.coalesce(jobs.c.locked_by, ""),
                    locked_by=None,
                    locked_at=None,
                    updated_at=now,
                )
                .returning(jobs.c.id)
            ).scalars().all()

        if reclaimed:
            leases_reclaimed.inc(len(reclaimed))
            log_event("leases_reclaimed", count=len(reclaimed), job_ids=reclaimed)
            for job_id in reclaimed:
                self.notifier.announce(job_id)
        return list(reclaimed)

    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------

    def get(self, job_id) -> Job:
        job_id = as_uuid(job_id)
        with self.transaction() as session:
            row = session.execute(select(*jobs.c).where(jobs.c.id == job_id)).one_or_none()
            if row is None:
                raise JobNotFound("job", job_id)
            return row_to_job(row)

    def get_for_post(self, post_id) -> Job | None:
        post_id = as_uuid(post_id)
        with self.transaction() as session:
            row = session.execute(select(*jobs.c).where(jobs.c.post_id == post_id)).one_or_none()
            return row_to_job(row) if row is not None else None

    def status_counts(self) -> dict:
        with self.transaction() as session:
            rows = session.execute(
                select(jobs.c.status, func.count()).group_by(jobs.c.status)
            ).all()

        counts = {s.value: 0 for s in JobStatus}
        for status, count in rows:
            counts[status] = count
        return counts
