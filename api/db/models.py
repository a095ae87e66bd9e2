import uuid
from datetime import datetime
from sqlalchemy import JSON, CheckConstraint, String, Integer, DateTime, Text, ForeignKey, Index, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from api.db.session import Base
from common.clock import utcnow
from common.states import JobStatus, IngestionStatus

PayloadType = JSON().with_variant(JSONB(), "postgresql")


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    canonical_url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict] = mapped_column(PayloadType, nullable=False, default=dict)

    ingestion_status: Mapped[str] = mapped_column(String, nullable=False, default=IngestionStatus.PENDING.value)
    ingestion_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    ingested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "canonical_url", name="posts_user_canonical_url_unique"),
        Index("posts_user_created_at_idx", "user_id", "created_at"),
    )


class IngestionJob(Base):
    __tablename__ = "ingestion_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    post_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    status: Mapped[str] = mapped_column(String, nullable=False, default=JobStatus.QUEUED.value)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_run_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ingestion_jobs_attempts_nonnegative"),
        CheckConstraint("(locked_by IS NULL) = (locked_at IS NULL)", name="ingestion_jobs_lease_pair"),
        CheckConstraint("status = 'processing' OR locked_by IS NULL", name="ingestion_jobs_lease_only_processing"),
        Index("ingestion_jobs_next_run_idx", "next_run_at"),
        Index("ingestion_jobs_status_idx", "status"),
    )
