"""
Request sanity checks run before a scan is accepted.

Four independent checks: origin allow-list, per-client rate limit, payload
size/injection patterns and client clock skew.
"""
from __future__ import annotations

import json
import logging
import re
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

logger = logging.getLogger(__name__)

MAX_PAYLOAD_CHARS = 100_000
MAX_CLOCK_SKEW = timedelta(minutes=5)

_SUSPICIOUS_PAYLOAD_RES = (
    re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"eval\(", re.IGNORECASE),
    re.compile(r"document\.cookie", re.IGNORECASE),
)


class RateLimiter:
    """Sliding-window counter per identifier, process-local.

    Identifiers with no hit inside the window are dropped on a periodic sweep
    so the table only holds recently active clients.
    """

    def __init__(self, max_requests: int = 100, window_s: float = 300.0, clock=time.monotonic) -> None:
        self.max_requests = max_requests
        self.window_s = window_s
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def _prune(self, hits: deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_s:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for identifier in list(self._hits):
            hits = self._hits[identifier]
            self._prune(hits, now)
            if not hits:
                del self._hits[identifier]
        self._last_sweep = now

    def allow(self, identifier: str) -> bool:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.window_s:
                self._sweep(now)
            hits = self._hits.get(identifier)
            if hits is not None:
                self._prune(hits, now)
                if len(hits) >= self.max_requests:
                    return False
            else:
                hits = self._hits[identifier] = deque()
            hits.append(now)
            return True

    @property
    def tracked_identifiers(self) -> int:
        with self._lock:
            return len(self._hits)


@dataclass(frozen=True)
class ValidationResult:
    request_id: str
    validation_type: str
    is_valid: bool
    identifier: str
    checks: dict[str, bool] = field(default_factory=dict)

    @property
    def rate_limited(self) -> bool:
        return not self.checks.get("rate_limit_valid", True)


def _origin_ok(origin: str | None, allowed_origins: Iterable[str]) -> bool:
    if not origin:
        return True
    return any(origin.startswith(allowed) for allowed in allowed_origins)


def _payload_ok(payload: Any) -> bool:
    if payload is None:
        return True
    try:
        text = json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return False
    if len(text) > MAX_PAYLOAD_CHARS:
        return False
    return not any(r.search(text) for r in _SUSPICIOUS_PAYLOAD_RES)


def _timestamp_ok(timestamp: datetime | None, now: datetime) -> bool:
    if timestamp is None:
        return True
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return abs(now - timestamp) <= MAX_CLOCK_SKEW


def validate_request(
    *,
    validation_type: str,
    payload: Any,
    identifier: str,
    rate_limiter: RateLimiter,
    allowed_origins: Iterable[str],
    origin: str | None = None,
    timestamp: datetime | None = None,
    now: datetime | None = None,
) -> ValidationResult:
    now = now or datetime.now(timezone.utc)
    checks = {
        "origin_valid": _origin_ok(origin, allowed_origins),
        "rate_limit_valid": rate_limiter.allow(identifier),
        "payload_valid": _payload_ok(payload),
        "timestamp_valid": _timestamp_ok(timestamp, now),
    }
    result = ValidationResult(
        request_id=str(uuid.uuid4()),
        validation_type=validation_type,
        is_valid=all(checks.values()),
        identifier=identifier,
        checks=checks,
    )
    if result.is_valid:
        logger.debug("Validation %s passed for %s", result.request_id, identifier)
    else:
        failed = ", ".join(k for k, ok in checks.items() if not ok)
        logger.warning("Validation %s (%s) failed for %s: %s", result.request_id, validation_type, identifier, failed)
    return result
