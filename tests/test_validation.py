from datetime import datetime, timedelta, timezone

from urlguard_agent.validation import RateLimiter, validate_request

NOW = datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc)
ALLOWED = ["http://localhost:3000"]


def _validate(limiter=None, **kwargs):
    params = dict(
        validation_type="scan_request",
        payload={"url": "https://example.com"},
        identifier="10.0.0.7",
        rate_limiter=limiter or RateLimiter(),
        allowed_origins=ALLOWED,
        now=NOW,
    )
    params.update(kwargs)
    return validate_request(**params)


def test_plain_request_passes():
    result = _validate()
    assert result.is_valid
    assert result.validation_type == "scan_request"
    assert len(result.request_id) == 36
    assert all(result.checks.values())


def test_unknown_origin_fails():
    result = _validate(origin="https://evil.example")
    assert not result.is_valid
    assert result.checks["origin_valid"] is False
    assert _validate(origin="http://localhost:3000").is_valid


def test_script_payload_fails():
    for bad in ("<script>alert(1)</script>", "javascript:alert(1)", "<img onerror=x>", "document.cookie"):
        result = _validate(payload={"url": bad})
        assert result.checks["payload_valid"] is False


def test_oversized_payload_fails():
    assert not _validate(payload={"url": "a" * 100_001}).is_valid


def test_clock_skew():
    assert _validate(timestamp=NOW - timedelta(minutes=4)).is_valid
    assert not _validate(timestamp=NOW + timedelta(minutes=6)).is_valid
    assert _validate(timestamp=(NOW - timedelta(minutes=1)).replace(tzinfo=None)).is_valid


def test_rate_limit_window_slides():
    clock = [0.0]
    limiter = RateLimiter(max_requests=2, window_s=300, clock=lambda: clock[0])
    assert _validate(limiter).is_valid
    assert _validate(limiter).is_valid
    third = _validate(limiter)
    assert not third.is_valid
    assert third.rate_limited
    assert _validate(limiter, identifier="10.0.0.8").is_valid

    clock[0] = 301.0
    assert _validate(limiter).is_valid


def test_idle_clients_are_forgotten():
    clock = [0.0]
    limiter = RateLimiter(max_requests=5, window_s=300, clock=lambda: clock[0])
    for i in range(1000):
        assert limiter.allow(f"10.1.{i // 256}.{i % 256}")
    assert limiter.tracked_identifiers == 1000

    clock[0] = 301.0
    assert limiter.allow("10.9.9.9")
    assert limiter.tracked_identifiers == 1
