from datetime import timedelta

from common.backoff import retry_delay, truncate_error


def test_retry_delay_doubles_from_base():
    assert [retry_delay(n, 60, 3600) for n in (1, 2, 3)] == [
        timedelta(seconds=60),
        timedelta(seconds=120),
        timedelta(seconds=240),
    ]


def test_retry_delay_is_capped():
    assert retry_delay(7, 60, 3600) == timedelta(seconds=3600)
    assert retry_delay(500, 60, 3600) == timedelta(seconds=3600)


def test_retry_delay_before_first_attempt_uses_base():
    assert retry_delay(0, 60, 3600) == timedelta(seconds=60)


def test_truncate_error_keeps_short_messages():
    assert truncate_error("timeout", 100) == "timeout"


def test_truncate_error_bounds_length():
    out = truncate_error("e" * 500, 100)
    assert len(out) == 100
    assert out.endswith("[truncated]")


def test_truncate_error_stringifies_exceptions():
    assert truncate_error(ValueError("bad"), 100) == "bad"
