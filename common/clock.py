from datetime import datetime, timedelta, timezone


def utcnow():
    # Naive UTC, matching the DateTime columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    def now(self):
        return utcnow()


class SkewedClock(Clock):
    def __init__(self, offset_ms):
        self.offset = timedelta(milliseconds=offset_ms)

    def now(self):
        return utcnow() + self.offset


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start=None):
        self.current = start or utcnow()

    def now(self):
        return self.current

    def advance(self, seconds=0, **kwargs):
        self.current += timedelta(seconds=seconds, **kwargs)
        return self.current
