from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from pydantic import BaseModel, ConfigDict

from common.states import IngestionStatus


class Post(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    user_id: uuid.UUID
    original_url: str
    canonical_url: str
    thumbnail_url: Optional[str] = None
    user_instructions: Optional[str] = None
    payload: Dict[str, Any]
    ingestion_status: IngestionStatus
    ingestion_error: Optional[str] = None
    ingested_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
