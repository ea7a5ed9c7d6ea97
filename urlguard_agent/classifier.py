from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from .blender import blend
from .features import extract_domain, extract_features
from .models import AuditEvent, DomainPattern, PredictionRecord, ThreatAssessment, UrlFeatures
from .pattern_store import PatternStore, PatternStoreError, upsert_pattern
from .scorer import score_threat

logger = logging.getLogger(__name__)

# Row construction can also fail (pydantic errors are ValueErrors).
_WRITE_ERRORS = (PatternStoreError, ValueError)


@dataclass(frozen=True)
class Classification:
    url: str
    domain: str
    features: UrlFeatures
    assessment: ThreatAssessment
    history_available: bool


def _historical_pattern(store: PatternStore | None, domain: str) -> DomainPattern | None:
    if store is None or not domain:
        return None
    try:
        return store.lookup(domain)
    except PatternStoreError as e:
        logger.warning("Pattern lookup for %s failed, scoring without history: %s", domain, e)
        return None


def classify_url(url: str, store: PatternStore | None = None) -> Classification:
    """Score a raw URL string; never raises for string input.

    The store is only read here. Persisting the outcome is left to
    ``record_classification`` so callers can run it after responding.
    """
    url = url or ""
    features = extract_features(url)
    domain = extract_domain(url)
    threat_score, categories = score_threat(features)

    historical = _historical_pattern(store, domain)
    assessment = blend(
        threat_score / 100,
        historical,
        threat_score=threat_score,
        categories=categories,
    )
    return Classification(
        url=url,
        domain=domain,
        features=features,
        assessment=assessment,
        history_available=historical is not None,
    )


def record_classification(store: PatternStore, result: Classification) -> None:
    """Best-effort persistence of a finished classification.

    Store failures are logged and dropped; the assessment already returned to
    the caller is never affected.
    """
    now = datetime.now(timezone.utc)
    assessment = result.assessment

    if result.domain:
        try:
            upsert_pattern(store, result.domain, result.features, assessment.threat_probability, now=now)
        except _WRITE_ERRORS as e:
            logger.error("Error updating pattern for %s: %s", result.domain, e)

    try:
        store.save_prediction(PredictionRecord(
            url=result.url,
            domain=result.domain,
            prediction_model=assessment.model,
            threat_probability=assessment.threat_probability,
            predicted_categories=list(assessment.predicted_categories),
            feature_importance={
                "confidence": assessment.confidence,
                "is_phishing": assessment.is_phishing,
            },
            created_at=now,
        ))
    except _WRITE_ERRORS as e:
        logger.error("Error saving threat prediction for %s: %s", result.url, e)

    if assessment.is_phishing:
        try:
            store.record_event(AuditEvent(
                log_type="threat_detected",
                url=result.url,
                data=assessment.to_record(),
                created_at=now,
            ))
        except _WRITE_ERRORS as e:
            logger.error("Error logging threat detection for %s: %s", result.url, e)
