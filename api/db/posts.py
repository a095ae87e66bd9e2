import uuid

from sqlalchemy import func, select

from api.db.job_store import JobStore, as_uuid
from api.db.models import Post
from api.schemas.post import Post as PostView
from common.errors import JobNotFound
from common.events import log_event
from common.states import IngestionStatus
from common.urls import canonicalize_url


def submit_post(
    store: JobStore,
    user_id,
    original_url: str,
    thumbnail_url: str | None = None,
    user_instructions: str | None = None,
):
    """
    Save a link for a user and schedule its ingestion.

    Upserts on (user_id, canonical_url) so re-saving the same page reuses the
    post, then enqueues it; the enqueue revives a finished job and leaves an
    in-flight one alone. Returns (created, post, job).
    """
    user_id = as_uuid(user_id)
    canonical_url = canonicalize_url(original_url)
    now = store.clock.now()
    posts = Post.__table__
    new_id = uuid.uuid4()

    with store.transaction() as session:
        insert = store.upsert_insert(session)
        stmt = insert(posts).values(
            id=new_id,
            user_id=user_id,
            original_url=original_url,
            canonical_url=canonical_url,
            thumbnail_url=thumbnail_url,
            user_instructions=user_instructions,
            payload={},
            ingestion_status=IngestionStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[posts.c.user_id, posts.c.canonical_url],
            set_={
                "original_url": stmt.excluded.original_url,
                "thumbnail_url": func.coalesce(stmt.excluded.thumbnail_url, posts.c.thumbnail_url),
                "user_instructions": func.coalesce(stmt.excluded.user_instructions, posts.c.user_instructions),
                "updated_at": now,
            },
        ).returning(*posts.c)

        row = session.execute(stmt).one()

    # a conflicting row comes back with its own id
    created = row.id == new_id
    log_event("post_saved", post_id=row.id, user_id=user_id, created=created)

    job = store.enqueue(row.id)
    post = get_post(store, row.id)
    return created, post, job


def get_post(store: JobStore, post_id) -> PostView:
    post_id = as_uuid(post_id)
    with store.transaction() as session:
        row = session.execute(select(*Post.__table__.c).where(Post.__table__.c.id == post_id)).one_or_none()
        if row is None:
            raise JobNotFound("post", post_id)
        return PostView.model_validate(dict(row._mapping))
