from datetime import datetime, timezone

import pytest

from urlguard_agent.blender import blend, pattern_type_for
from urlguard_agent.models import DomainPattern


def _pattern(confidence: float, pattern_type: str = "suspicious") -> DomainPattern:
    return DomainPattern(
        domain="example.com",
        pattern_type=pattern_type,
        confidence_score=confidence,
        last_detected=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def test_no_history_passes_probability_through():
    for p in (0.0, 0.15, 0.5, 0.73, 1.0):
        a = blend(p, None)
        assert a.threat_probability == p
        assert a.confidence == 0.75


def test_history_is_averaged_and_raises_confidence():
    a = blend(0.8, _pattern(0.4))
    assert a.threat_probability == pytest.approx(0.6)
    assert a.confidence == pytest.approx(0.90)
    assert a.is_phishing
    assert a.predicted_categories == []


def test_known_phishing_history_adds_category():
    a = blend(0.2, _pattern(0.9, "phishing"), categories=["Suspicious keywords"])
    assert a.predicted_categories == ["Suspicious keywords", "Known phishing pattern"]


def test_exactly_half_is_not_phishing():
    assert not blend(0.5, None).is_phishing
    assert blend(0.51, None).is_phishing


def test_threat_score_defaults_from_probability():
    assert blend(0.45, None).threat_score == 45
    assert blend(0.45, None, threat_score=45).raw_probability == 0.45


def test_assessment_record_is_flat():
    record = blend(0.3, None, categories=["High entropy"]).to_record()
    assert record["threat_probability"] == 0.3
    assert record["predicted_categories"] == ["High entropy"]
    assert record["model"] == "ensemble"
    assert all(not isinstance(v, dict) for v in record.values())


def test_pattern_type_thresholds():
    assert pattern_type_for(0.71) == "phishing"
    assert pattern_type_for(0.7) == "suspicious"
    assert pattern_type_for(0.41) == "suspicious"
    assert pattern_type_for(0.4) == "legitimate"
    assert pattern_type_for(0.0) == "legitimate"
