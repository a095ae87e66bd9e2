from prometheus_client import Counter

jobs_enqueued = Counter("ingest_jobs_enqueued_total", "Jobs created or revived by enqueue")
jobs_claimed = Counter("ingest_jobs_claimed_total", "Jobs claimed")
jobs_completed = Counter("ingest_jobs_completed_total", "Jobs completed")
jobs_retried = Counter("ingest_jobs_retried_total", "Jobs scheduled for retry")
jobs_failed = Counter("ingest_jobs_failed_total", "Jobs permanently failed")
leases_reclaimed = Counter("ingest_leases_reclaimed_total", "Expired leases reclaimed by the sweeper")
notify_failures = Counter("ingest_notify_failures_total", "Failed wake-up notifications")
worker_heartbeat = Counter("ingest_worker_heartbeat_total", "Worker heartbeat ticks")
