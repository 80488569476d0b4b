import time

import pytest
from limits.storage import MemoryStorage

from eventmet.ratelimit import NoopRateLimiter, SlidingWindowRateLimiter, get_client_ip, verify_bearer


def test_sliding_window_limits_each_identifier():
    limiter = SlidingWindowRateLimiter(limit=2, window_seconds=60)

    first = limiter.check("1.2.3.4")
    second = limiter.check("1.2.3.4")
    third = limiter.check("1.2.3.4")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert third.allowed is False
    assert third.remaining == 0
    assert 1 <= third.retry_after_seconds <= 60
    assert third.reset_ms > time.time() * 1000
    assert limiter.check("5.6.7.8").allowed is True


def test_window_expiry_allows_the_identifier_again():
    limiter = SlidingWindowRateLimiter(limit=1, window_seconds=1)

    assert limiter.check("1.2.3.4").allowed is True
    assert limiter.check("1.2.3.4").allowed is False
    time.sleep(1.1)

    assert limiter.check("1.2.3.4").allowed is True


def test_limiters_can_share_storage_and_be_reset():
    storage = MemoryStorage()
    admin = SlidingWindowRateLimiter(limit=1, storage=storage, namespace="admin")
    chat = SlidingWindowRateLimiter(limit=1, storage=storage, namespace="chat")

    assert admin.check("1.2.3.4").allowed is True
    assert chat.check("1.2.3.4").allowed is True
    assert admin.check("1.2.3.4").allowed is False

    admin.reset()
    assert admin.check("1.2.3.4").allowed is True


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(limit=0)


def test_noop_limiter_always_allows():
    limiter = NoopRateLimiter(limit=5)

    assert all(limiter.check("x").allowed for _ in range(100))


def test_get_client_ip():
    assert get_client_ip({"x-forwarded-for": "10.0.0.1, 172.16.0.1"}) == "10.0.0.1"
    assert get_client_ip({"x-real-ip": " 10.0.0.2 "}) == "10.0.0.2"
    assert get_client_ip({}) == "unknown"


def test_verify_bearer():
    assert verify_bearer("Bearer s3cret", "s3cret") is True
    assert verify_bearer("Bearer wrong", "s3cret") is False
    assert verify_bearer(None, "s3cret") is False
    assert verify_bearer("Bearer ", None) is False


def test_default_storage_is_the_expiring_in_memory_backend():
    limiter = SlidingWindowRateLimiter(limit=3)

    assert isinstance(limiter.storage, MemoryStorage)
