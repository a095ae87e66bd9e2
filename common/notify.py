import time

from redis import Redis
from redis.exceptions import RedisError

from common.config import REDIS_URL, STREAM_KEY, STREAM_MAXLEN
from common.events import log_event
from common.metrics import notify_failures


class NullNotifier:
    """No wake-up channel; workers fall back to plain polling."""

    def announce(self, job_id):
        pass

    def wait(self, timeout):
        time.sleep(timeout)
        return False


class RedisStreamNotifier:
    """
    Wake-up channel over a Redis stream.

    Postgres stays the source of truth: an entry here only means "go claim",
    so a lost or duplicate notification never affects correctness.
    """

    def __init__(self, client: Redis, stream_key: str = STREAM_KEY, maxlen: int = STREAM_MAXLEN):
        self.client = client
        self.stream_key = stream_key
        self.maxlen = maxlen
        self.last_id = "$"

    @classmethod
    def from_url(cls, url: str = REDIS_URL, **kwargs):
        return cls(Redis.from_url(url, decode_responses=True), **kwargs)

    def announce(self, job_id):
        try:
            self.client.xadd(
                self.stream_key,
                {"job_id": str(job_id)},
                maxlen=self.maxlen,
                approximate=True,
            )
        except RedisError as e:
            notify_failures.inc()
            log_event("notify_failed", job_id=job_id, error=str(e))

    def wait(self, timeout):
        block_ms = max(int(timeout * 1000), 1)
        try:
            resp = self.client.xread({self.stream_key: self.last_id}, block=block_ms)
        except RedisError as e:
            notify_failures.inc()
            log_event("notify_wait_failed", error=str(e))
            time.sleep(timeout)
            return False

        if not resp:
            return False

        for _stream, entries in resp:
            if entries:
                self.last_id = entries[-1][0]
        return True
