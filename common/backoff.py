from datetime import timedelta


def retry_delay(attempts: int, base_seconds: int, cap_seconds: int) -> timedelta:
    """
    Delay before the next attempt after `attempts` failures.

    base * 2^(attempts-1), capped: 60s, 120s, 240s, ... up to the cap.
    The first retry waits one base delay, not the 2x that base * 2^attempts gives.
    """
    if attempts < 1:
        return timedelta(seconds=min(base_seconds, cap_seconds))
    # 2^32 is already far past any sane cap
    exponent = min(attempts - 1, 32)
    return timedelta(seconds=min(base_seconds * (2 ** exponent), cap_seconds))


def truncate_error(error, limit: int) -> str:
    text = str(error)
    if len(text) <= limit:
        return text
    suffix = "...[truncated]"
    return text[: max(limit - len(suffix), 0)] + suffix
