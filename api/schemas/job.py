from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field

from common.states import JobStatus


class Job(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    post_id: uuid.UUID
    status: JobStatus
    attempts: int
    next_run_at: datetime
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def resource_id(self) -> uuid.UUID:
        return self.post_id


class IngestionResult(BaseModel):
    """
    Output of a worker's processing, applied to the post on completion.

    Known fields are typed; anything else goes into `extra` and is merged
    into the post payload as-is.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    site_name: Optional[str] = None
    thumbnail_url: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Optional[Dict[str, Any]]:
        payload = dict(self.extra)
        payload.update(self.model_dump(exclude={"extra", "thumbnail_url"}, exclude_none=True))
        return payload or None


class StatusCounts(BaseModel):
    queued: int = 0
    processing: int = 0
    retry: int = 0
    completed: int = 0
    failed: int = 0
