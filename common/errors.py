class QueueError(RuntimeError):
    """Base class for errors raised by the job store."""


class JobNotFound(QueueError):
    def __init__(self, kind, ident):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class StorageUnavailable(QueueError):
    pass


class LeaseLost(QueueError):
    """The caller no longer holds the lease on the job it is writing to."""

    def __init__(self, job_id, worker_id, locked_by):
        super().__init__(f"lease on {job_id} held by {locked_by!r}, not {worker_id!r}")
        self.job_id = job_id
        self.worker_id = worker_id
        self.locked_by = locked_by
