from urlguard_agent.features import extract_features
from urlguard_agent.models import UrlFeatures
from urlguard_agent.scorer import fired_rules, score_threat


def _features(**overrides) -> UrlFeatures:
    base = dict(
        length=20,
        dot_count=1,
        hyphen_count=0,
        digit_count=0,
        special_char_count=3,
        has_ip_address_host=False,
        has_suspicious_keyword=False,
        shannon_entropy=3.0,
        subdomain_count=0,
        path_depth=0,
    )
    base.update(overrides)
    return UrlFeatures(**base)


def test_clean_url_scores_zero():
    score, categories = score_threat(extract_features("https://example.com"))
    assert score == 0
    assert categories == []


def test_ip_url_with_keywords():
    score, categories = score_threat(extract_features("http://192.168.1.1/login-verify-account"))
    assert score >= 45
    assert "IP-based URL" in categories
    assert "Suspicious keywords" in categories


def test_every_rule_firing_is_capped():
    f = _features(
        length=150,
        hyphen_count=5,
        digit_count=20,
        special_char_count=20,
        has_ip_address_host=True,
        has_suspicious_keyword=True,
        shannon_entropy=5.2,
        subdomain_count=6,
        path_depth=9,
    )
    score, categories = score_threat(f)
    assert score == 100
    assert categories == [
        "Abnormally long URL",
        "IP-based URL",
        "Suspicious keywords",
        "High entropy",
        "Excessive subdomains",
    ]
    assert len(fired_rules(f)) == 10


def test_length_thresholds():
    s74, _ = score_threat(_features(length=74))
    s76, _ = score_threat(_features(length=76))
    s99, _ = score_threat(_features(length=99))
    s101, cats = score_threat(_features(length=101))
    assert s76 - s74 >= 15
    assert s101 - s74 >= 25
    assert s101 - s99 == 10
    assert cats == ["Abnormally long URL"]


def test_unlabelled_rules_add_points_only():
    score, categories = score_threat(_features(hyphen_count=3, digit_count=9, special_char_count=6, path_depth=6))
    assert score == 10 + 10 + 15 + 10
    assert categories == []


def test_thresholds_are_strict():
    score, categories = score_threat(_features(
        length=75, hyphen_count=2, digit_count=8, special_char_count=5,
        shannon_entropy=4.5, subdomain_count=3, path_depth=5,
    ))
    assert score == 0
    assert categories == []
