from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PatternType = Literal["phishing", "suspicious", "legitimate", "unknown"]


class UrlFeatures(BaseModel):
    length: int = Field(..., ge=0)
    dot_count: int = Field(..., ge=0)
    hyphen_count: int = Field(..., ge=0)
    digit_count: int = Field(..., ge=0)
    special_char_count: int = Field(..., ge=0)
    has_ip_address_host: bool
    has_suspicious_keyword: bool
    shannon_entropy: float = Field(..., ge=0)
    subdomain_count: int = Field(..., ge=0)
    path_depth: int = Field(..., ge=0)


class ThreatAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    threat_score: int = Field(..., ge=0, le=100)
    raw_probability: float = Field(..., ge=0, le=1)
    threat_probability: float = Field(..., ge=0, le=1)
    predicted_categories: list[str]
    confidence: float = Field(..., ge=0, le=1)
    is_phishing: bool
    model: str = "ensemble"

    def to_record(self) -> dict[str, Any]:
        """Flat key-value view for storage or transmission."""
        return {
            "threat_score": self.threat_score,
            "raw_probability": self.raw_probability,
            "threat_probability": self.threat_probability,
            "predicted_categories": list(self.predicted_categories),
            "confidence": self.confidence,
            "is_phishing": self.is_phishing,
            "model": self.model,
        }


class DomainPattern(BaseModel):
    domain: str = Field(..., min_length=1)
    pattern_type: PatternType = "unknown"
    confidence_score: float = Field(..., ge=0, le=1)
    detection_count: int = Field(1, ge=1)
    last_detected: datetime
    features: UrlFeatures | None = None
    created_at: datetime | None = None


class AuditEvent(BaseModel):
    log_type: Literal["pattern_learned", "threat_detected"]
    url: str
    data: dict[str, Any]
    created_at: datetime


class PredictionRecord(BaseModel):
    url: str
    domain: str
    prediction_model: str
    threat_probability: float = Field(..., ge=0, le=1)
    predicted_categories: list[str]
    feature_importance: dict[str, Any]
    created_at: datetime


class ClassifyRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=8192)
    # Optional client clock, checked for skew by request validation.
    timestamp: datetime | None = None


class ClassifyResponse(BaseModel):
    url: str
    domain: str
    features: UrlFeatures
    assessment: ThreatAssessment
    # keys of every scoring rule that contributed points
    fired_rules: list[str] = []

    # metadata
    agent: Literal["python"] = "python"
    analyzed_at: str
    timings_ms: dict[str, int]
    warnings: list[str] = []


class HistoryResponse(BaseModel):
    data: list[PredictionRecord]
    total: int
    limit: int
    offset: int
