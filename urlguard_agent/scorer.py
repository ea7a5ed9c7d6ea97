from __future__ import annotations

from typing import Callable, NamedTuple

from .models import UrlFeatures


class Rule(NamedTuple):
    key: str
    points: int
    fires: Callable[[UrlFeatures], bool]
    label: str | None = None


# Evaluation order is also the order in which category labels are emitted.
RULES: tuple[Rule, ...] = (
    Rule("long_url", 15, lambda f: f.length > 75),
    Rule("very_long_url", 10, lambda f: f.length > 100, "Abnormally long URL"),
    Rule("many_hyphens", 10, lambda f: f.hyphen_count > 2),
    Rule("many_digits", 10, lambda f: f.digit_count > 8),
    Rule("many_special_chars", 15, lambda f: f.special_char_count > 5),
    Rule("ip_host", 25, lambda f: f.has_ip_address_host, "IP-based URL"),
    Rule("suspicious_keyword", 20, lambda f: f.has_suspicious_keyword, "Suspicious keywords"),
    Rule("high_entropy", 15, lambda f: f.shannon_entropy > 4.5, "High entropy"),
    Rule("many_subdomains", 15, lambda f: f.subdomain_count > 3, "Excessive subdomains"),
    Rule("deep_path", 10, lambda f: f.path_depth > 5),
)


def _clamp_score(score: int) -> int:
    return max(0, min(100, int(score)))


def score_threat(features: UrlFeatures) -> tuple[int, list[str]]:
    score = 0
    categories: list[str] = []
    for rule in RULES:
        if not rule.fires(features):
            continue
        score += rule.points
        if rule.label:
            categories.append(rule.label)
    return _clamp_score(score), categories


def fired_rules(features: UrlFeatures) -> list[str]:
    """Keys of every rule that contributed points, for explainability."""
    return [rule.key for rule in RULES if rule.fires(features)]
