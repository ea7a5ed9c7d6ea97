"""
Domain pattern persistence.

Two backends share one small interface: an in-process store (default, tests,
local dev) and a hosted Postgres reached through its PostgREST endpoint.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ValidationError

from .blender import pattern_type_for
from .models import AuditEvent, DomainPattern, PredictionRecord, UrlFeatures

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 10_000


class PatternStoreError(RuntimeError):
    """The backing store could not be read or written."""


class PatternStore(ABC):
    @abstractmethod
    def lookup(self, domain: str) -> DomainPattern | None:
        """Best historical match: exact domain first, then the highest-confidence
        case-insensitive substring match."""

    @abstractmethod
    def get(self, domain: str) -> DomainPattern | None: ...

    @abstractmethod
    def insert(self, pattern: DomainPattern) -> None: ...

    @abstractmethod
    def update(self, pattern: DomainPattern) -> None: ...

    @abstractmethod
    def record_event(self, event: AuditEvent) -> None: ...

    @abstractmethod
    def save_prediction(self, record: PredictionRecord) -> None: ...

    @abstractmethod
    def list_predictions(self, limit: int = 10, offset: int = 0) -> tuple[list[PredictionRecord], int]: ...

    def close(self) -> None:
        pass


class InMemoryPatternStore(PatternStore):
    """Process-local store. Audit events and predictions keep only the most
    recent ``max_records`` entries; domain patterns are kept in full."""

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS) -> None:
        self._lock = threading.Lock()
        self._patterns: dict[str, DomainPattern] = {}
        self._events: deque[AuditEvent] = deque(maxlen=max_records)
        self._predictions: deque[PredictionRecord] = deque(maxlen=max_records)

    def lookup(self, domain: str) -> DomainPattern | None:
        needle = (domain or "").lower()
        if not needle:
            return None
        with self._lock:
            exact = self._patterns.get(needle)
            if exact is not None:
                return exact
            matches = [p for key, p in self._patterns.items() if needle in key]
        if not matches:
            return None
        return max(matches, key=lambda p: p.confidence_score)

    def get(self, domain: str) -> DomainPattern | None:
        with self._lock:
            return self._patterns.get((domain or "").lower())

    def insert(self, pattern: DomainPattern) -> None:
        with self._lock:
            self._patterns[pattern.domain.lower()] = pattern

    def update(self, pattern: DomainPattern) -> None:
        self.insert(pattern)

    def record_event(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    def save_prediction(self, record: PredictionRecord) -> None:
        with self._lock:
            self._predictions.append(record)

    def list_predictions(self, limit: int = 10, offset: int = 0) -> tuple[list[PredictionRecord], int]:
        with self._lock:
            newest_first = sorted(self._predictions, key=lambda r: r.created_at, reverse=True)
        return newest_first[offset:offset + limit], len(newest_first)


def _parse_content_range_total(value: str | None) -> int | None:
    # PostgREST: "0-9/42" or "*/0"
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[-1]
    return int(total) if total.isdigit() else None


class SupabasePatternStore(PatternStore):
    """Tables: ``ml_patterns`` (keyed by ``url_pattern``), ``blockchain_logs``
    for audit events and ``threat_predictions`` for scan history."""

    PATTERNS_TABLE = "ml_patterns"
    EVENTS_TABLE = "blockchain_logs"
    PREDICTIONS_TABLE = "threat_predictions"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_s: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_s)
        self._rest = base_url.rstrip("/") + "/rest/v1"
        self._headers = {
            "apikey": api_key,
            "authorization": f"Bearer {api_key}",
            "accept": "application/json",
        }

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            res = self._client.request(
                method,
                f"{self._rest}/{table}",
                params=params,
                json=json,
                headers={**self._headers, **(headers or {})},
            )
            res.raise_for_status()
            return res
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as e:
            raise PatternStoreError(f"{method} {table} failed: {e}") from e

    @staticmethod
    def _row_to_pattern(row: dict[str, Any]) -> DomainPattern:
        features = None
        raw_features = row.get("features")
        if raw_features:
            try:
                features = UrlFeatures.model_validate(raw_features)
            except ValidationError:
                # Rows written by other producers may use a different feature schema.
                features = None
        return DomainPattern(
            domain=row["url_pattern"],
            pattern_type=row.get("pattern_type") or "unknown",
            confidence_score=float(row.get("confidence_score") or 0.0),
            detection_count=int(row.get("detection_count") or 1),
            last_detected=row.get("last_detected") or datetime.now(timezone.utc),
            features=features,
            created_at=row.get("created_at"),
        )

    @staticmethod
    def _pattern_to_row(pattern: DomainPattern) -> dict[str, Any]:
        return {
            "url_pattern": pattern.domain,
            "pattern_type": pattern.pattern_type,
            "confidence_score": pattern.confidence_score,
            "detection_count": pattern.detection_count,
            "last_detected": pattern.last_detected.isoformat(),
            "features": pattern.features.model_dump() if pattern.features else {},
        }

    def _first(self, params: dict[str, str]) -> DomainPattern | None:
        res = self._request("GET", self.PATTERNS_TABLE, params={"select": "*", "limit": "1", **params})
        try:
            rows = res.json()
        except ValueError as e:
            raise PatternStoreError(f"Malformed response from {self.PATTERNS_TABLE}: {e}") from e
        if not rows:
            return None
        try:
            return self._row_to_pattern(rows[0])
        except (KeyError, ValidationError) as e:
            raise PatternStoreError(f"Malformed {self.PATTERNS_TABLE} row: {e}") from e

    def lookup(self, domain: str) -> DomainPattern | None:
        if not domain:
            return None
        exact = self.get(domain)
        if exact is not None:
            return exact
        return self._first({
            "url_pattern": f"ilike.*{domain}*",
            "order": "confidence_score.desc",
        })

    def get(self, domain: str) -> DomainPattern | None:
        return self._first({"url_pattern": f"eq.{domain}"})

    def insert(self, pattern: DomainPattern) -> None:
        self._request(
            "POST",
            self.PATTERNS_TABLE,
            json=self._pattern_to_row(pattern),
            headers={"prefer": "return=minimal"},
        )

    def update(self, pattern: DomainPattern) -> None:
        row = self._pattern_to_row(pattern)
        row.pop("url_pattern")
        row.pop("pattern_type")
        self._request(
            "PATCH",
            self.PATTERNS_TABLE,
            params={"url_pattern": f"eq.{pattern.domain}"},
            json=row,
            headers={"prefer": "return=minimal"},
        )

    def record_event(self, event: AuditEvent) -> None:
        self._request(
            "POST",
            self.EVENTS_TABLE,
            json=event.model_dump(mode="json"),
            headers={"prefer": "return=minimal"},
        )

    def save_prediction(self, record: PredictionRecord) -> None:
        self._request(
            "POST",
            self.PREDICTIONS_TABLE,
            json=record.model_dump(mode="json"),
            headers={"prefer": "return=minimal"},
        )

    def list_predictions(self, limit: int = 10, offset: int = 0) -> tuple[list[PredictionRecord], int]:
        res = self._request(
            "GET",
            self.PREDICTIONS_TABLE,
            params={
                "select": "*",
                "order": "created_at.desc",
                "limit": str(limit),
                "offset": str(offset),
            },
            headers={"prefer": "count=exact"},
        )
        try:
            rows = [PredictionRecord.model_validate(r) for r in res.json()]
        except (ValueError, ValidationError) as e:
            raise PatternStoreError(f"Malformed {self.PREDICTIONS_TABLE} rows: {e}") from e
        total = _parse_content_range_total(res.headers.get("content-range"))
        return rows, total if total is not None else len(rows)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def upsert_pattern(
    store: PatternStore,
    domain: str,
    features: UrlFeatures,
    blended_probability: float,
    *,
    now: datetime | None = None,
) -> DomainPattern:
    """Create or update the rolling statistic for ``domain``.

    Updates keep the first ``pattern_type`` and average the stored confidence
    with the new probability.
    """
    now = now or datetime.now(timezone.utc)
    existing = store.get(domain)

    if existing is not None:
        pattern = existing.model_copy(update={
            "detection_count": existing.detection_count + 1,
            "last_detected": now,
            "confidence_score": (existing.confidence_score + blended_probability) / 2,
            "features": features,
        })
        store.update(pattern)
    else:
        pattern = DomainPattern(
            domain=domain,
            pattern_type=pattern_type_for(blended_probability),
            confidence_score=blended_probability,
            detection_count=1,
            last_detected=now,
            features=features,
            created_at=now,
        )
        store.insert(pattern)

    store.record_event(AuditEvent(
        log_type="pattern_learned",
        url=domain,
        data={
            "pattern_type": pattern_type_for(blended_probability),
            "threat_probability": blended_probability,
            "features": features.model_dump(),
        },
        created_at=now,
    ))
    logger.debug("Learned pattern for %s (count=%d, confidence=%.3f)", domain, pattern.detection_count, pattern.confidence_score)
    return pattern
