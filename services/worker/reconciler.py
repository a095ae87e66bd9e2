import time

from api.db.job_store import JobStore
from common.config import LEASE_SECONDS, NOTIFY_ENABLED, RECONCILE_BATCH_SIZE, RECONCILE_SLEEP_SECONDS
from common.errors import StorageUnavailable
from common.events import log_event
from common.notify import NullNotifier, RedisStreamNotifier


def reconcile_once(store: JobStore, lease_seconds=LEASE_SECONDS, batch_size=RECONCILE_BATCH_SIZE):
    """
    Return jobs stuck in processing to retry once their lease has expired.

    Repairs the crash window where a worker claimed a job and died before
    calling complete or retry. Drains in batches until nothing is left.
    """
    repaired = []
    while True:
        batch = store.reclaim_expired_leases(lease_seconds=lease_seconds, batch_size=batch_size)
        repaired.extend(batch)
        if not batch or len(batch) < batch_size:
            return repaired


def main():
    notifier = RedisStreamNotifier.from_url() if NOTIFY_ENABLED else NullNotifier()
    store = JobStore(notifier=notifier)

    while True:
        try:
            repaired = reconcile_once(store)
            if repaired:
                log_event("reconciled", count=len(repaired))
        except StorageUnavailable:
            # DB down / transient network failure
            time.sleep(2)

        time.sleep(RECONCILE_SLEEP_SECONDS)


if __name__ == "__main__":
    main()
