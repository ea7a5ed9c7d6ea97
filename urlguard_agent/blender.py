from __future__ import annotations

from typing import Sequence

from .models import DomainPattern, PatternType, ThreatAssessment

BASE_CONFIDENCE = 0.75
HISTORY_CONFIDENCE_BOOST = 0.15
MAX_CONFIDENCE = 0.95
PHISHING_THRESHOLD = 0.5

KNOWN_PHISHING_LABEL = "Known phishing pattern"


def pattern_type_for(probability: float) -> PatternType:
    if probability > 0.7:
        return "phishing"
    if probability > 0.4:
        return "suspicious"
    return "legitimate"


def _clamp_probability(p: float) -> float:
    return max(0.0, min(1.0, float(p)))


def blend(
    raw_probability: float,
    historical: DomainPattern | None,
    *,
    threat_score: int | None = None,
    categories: Sequence[str] = (),
) -> ThreatAssessment:
    """Fold the stored confidence for a domain into a fresh raw probability.

    Without history the raw probability passes through unchanged. With history
    the two are averaged and the confidence is raised.
    """
    raw = _clamp_probability(raw_probability)
    if threat_score is None:
        threat_score = int(round(raw * 100))

    labels = list(categories)
    probability = raw
    confidence = BASE_CONFIDENCE

    if historical is not None:
        probability = (raw + historical.confidence_score) / 2
        confidence = min(MAX_CONFIDENCE, BASE_CONFIDENCE + HISTORY_CONFIDENCE_BOOST)
        if historical.pattern_type == "phishing":
            labels.append(KNOWN_PHISHING_LABEL)

    return ThreatAssessment(
        threat_score=threat_score,
        raw_probability=raw,
        threat_probability=probability,
        predicted_categories=labels,
        confidence=confidence,
        is_phishing=probability > PHISHING_THRESHOLD,
    )
