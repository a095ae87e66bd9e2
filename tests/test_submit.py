import uuid

import pytest

from api.db.posts import get_post, submit_post


def test_submit_creates_post_and_queued_job(store, notifier):
    user_id = uuid.uuid4()

    created, post, job = submit_post(store, user_id, "https://Example.com/a?utm_source=x")

    assert created is True
    assert post.canonical_url == "https://example.com/a"
    assert post.original_url == "https://Example.com/a?utm_source=x"
    assert post.ingestion_status == "pending"
    assert job.post_id == post.id
    assert job.status == "queued"
    assert notifier.announced == [job.id]


def test_resubmitting_same_page_reuses_post_and_job(store):
    user_id = uuid.uuid4()
    _, first_post, first_job = submit_post(store, user_id, "https://example.com/a", user_instructions="summarize")

    created, post, job = submit_post(store, user_id, "https://example.com/a/?fbclid=abc")

    assert created is False
    assert post.id == first_post.id
    assert post.user_instructions == "summarize"
    assert job.id == first_job.id


def test_same_page_for_different_users_is_separate(store):
    _, a, _ = submit_post(store, uuid.uuid4(), "https://example.com/a")
    _, b, _ = submit_post(store, uuid.uuid4(), "https://example.com/a")
    assert a.id != b.id


def test_resubmitting_completed_post_schedules_reingestion(store, clock):
    user_id = uuid.uuid4()
    _, post, job = submit_post(store, user_id, "https://example.com/a")
    store.claim("w1")
    store.complete(job.id, {"title": "old"})
    assert get_post(store, post.id).ingestion_status == "completed"

    clock.advance(3600)
    _, post, again = submit_post(store, user_id, "https://example.com/a")

    assert again.id == job.id
    assert again.status == "queued"
    assert post.ingestion_status == "pending"


def test_submit_rejects_bad_url(store):
    with pytest.raises(ValueError):
        submit_post(store, uuid.uuid4(), "ftp://example.com/file.txt")
