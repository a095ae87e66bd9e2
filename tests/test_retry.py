import uuid

import pytest

from api.db.posts import get_post
from common.errors import JobNotFound, LeaseLost


def _claim_due(store, clock, job_id, worker_id="w1"):
    job = store.get(job_id)
    if job.next_run_at > clock.now():
        clock.current = job.next_run_at
    claimed = store.claim(worker_id)
    assert claimed is not None and claimed.id == job_id
    return claimed


def test_retry_schedules_backoff_and_marks_post_processing(store, make_post, clock):
    post_id = make_post()
    store.enqueue(post_id)
    job = store.claim("w1")

    retried = store.retry(job.id, "connection reset")

    assert retried.status == "retry"
    assert retried.attempts == 1
    assert retried.last_error == "connection reset"
    assert retried.locked_by is None and retried.locked_at is None
    assert retried.updated_at == clock.now()
    assert (retried.next_run_at - clock.now()).total_seconds() == 60

    post = get_post(store, post_id)
    assert post.ingestion_status == "processing"
    assert post.ingestion_error is None


def test_backoff_doubles_until_cap_and_never_decreases(make_store, make_post, clock):
    store = make_store(max_attempts=10)
    store.enqueue(make_post())
    job_id = store.claim("w1").id

    delays, run_ats = [], []
    for attempt in range(1, 9):
        retried = store.retry(job_id, f"attempt {attempt}")
        delays.append((retried.next_run_at - clock.now()).total_seconds())
        run_ats.append(retried.next_run_at)
        _claim_due(store, clock, job_id)

    assert delays == [60, 120, 240, 480, 960, 1920, 3600, 3600]
    assert all(later > earlier for earlier, later in zip(run_ats, run_ats[1:]))


def test_job_fails_after_max_attempts_and_is_never_claimed(store, make_post, clock):
    post_id = make_post()
    store.enqueue(post_id)
    job_id = store.claim("w1").id

    for attempt in range(1, 5):
        retried = store.retry(job_id, f"error {attempt}")
        assert retried.status == "retry"
        _claim_due(store, clock, job_id)

    final = store.retry(job_id, "error 5")

    assert final.status == "failed"
    assert final.attempts == 5
    assert final.last_error == "error 5"
    assert final.locked_by is None

    clock.advance(hours=24)
    assert store.claim("w2") is None

    post = get_post(store, post_id)
    assert post.ingestion_status == "failed"
    assert post.ingestion_error == "error 5"


def test_retry_truncates_long_errors(make_store, make_post):
    store = make_store(error_max_length=50)
    post_id = make_post()
    store.enqueue(post_id)
    job = store.claim("w1")

    retried = store.retry(job.id, "x" * 10_000)

    assert len(retried.last_error) <= 50
    assert retried.last_error.startswith("xxx")


def test_duplicate_retry_is_a_no_op(store, make_post):
    store.enqueue(make_post())
    job = store.claim("w1")

    first = store.retry(job.id, "boom")
    second = store.retry(job.id, "boom")

    assert second.attempts == first.attempts == 1
    assert second.next_run_at == first.next_run_at
    assert second.status == "retry"


def test_retry_on_terminal_job_is_a_no_op(store, make_post):
    store.enqueue(make_post())
    job = store.claim("w1")
    store.complete(job.id)

    after = store.retry(job.id, "late failure")

    assert after.status == "completed"
    assert after.attempts == 0
    assert after.last_error is None


def test_retry_unknown_job_raises(store):
    with pytest.raises(JobNotFound):
        store.retry(uuid.uuid4(), "boom")


def test_retry_from_wrong_worker_is_blocked(store, make_post):
    store.enqueue(make_post())
    job = store.claim("w1")

    with pytest.raises(LeaseLost):
        store.retry(job.id, "boom", worker_id="w2")

    current = store.get(job.id)
    assert current.status == "processing"
    assert current.attempts == 0
    assert current.locked_by == "w1"
