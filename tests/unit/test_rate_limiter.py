"""
Unit Tests - Rate Limiting
==========================
"""

import json

import pytest

from rate_limiter import RateLimitBucket, RateLimiter, rate_limited_response


class TestRateLimitBucket:

    @pytest.mark.unit
    def test_consumes_until_empty(self):
        bucket = RateLimitBucket(capacity=2, refill_rate=0.001)

        assert bucket.consume()
        assert bucket.consume()
        assert not bucket.consume()
        assert bucket.get_wait_time() > 0


class TestRateLimiter:

    @pytest.mark.unit
    def test_blocks_after_budget(self):
        limiter = RateLimiter(max_requests=3, window_seconds=900, scope="test")

        results = [limiter.check_rate_limit("10.0.0.1")[0] for _ in range(4)]

        assert results == [True, True, True, False]

    @pytest.mark.unit
    def test_clients_are_independent(self):
        limiter = RateLimiter(max_requests=1, window_seconds=900, scope="test")

        assert limiter.check_rate_limit("10.0.0.1")[0]
        assert not limiter.check_rate_limit("10.0.0.1")[0]
        assert limiter.check_rate_limit("10.0.0.2")[0]

    @pytest.mark.unit
    def test_retry_after_reported(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, scope="test")
        limiter.check_rate_limit("client")

        allowed, retry_after = limiter.check_rate_limit("client")

        assert not allowed
        assert 0 < retry_after <= 60

    @pytest.mark.unit
    def test_cleanup_removes_stale_buckets(self):
        limiter = RateLimiter(max_requests=5, window_seconds=1, scope="test")
        limiter.check_rate_limit("client")

        limiter.cleanup_stale_buckets(max_age=-1)

        assert limiter._buckets == {}


@pytest.mark.unit
def test_rate_limited_response_body():
    response = rate_limited_response(2.2)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "3"
    body = json.loads(response.body)
    assert body["success"] is False
    assert body["retry_after"] == 3
