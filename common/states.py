from enum import Enum

class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    RETRY = "retry"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


CLAIMABLE = (JobStatus.QUEUED.value, JobStatus.RETRY.value)
TERMINAL = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)
