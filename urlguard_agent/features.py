"""
Lexical URL features.
Everything here works on the raw string only; no network calls are made.
"""
from __future__ import annotations

import math
import re
from collections import Counter
from urllib.parse import urlparse

from .models import UrlFeatures


SUSPICIOUS_KEYWORDS = (
    "login",
    "verify",
    "account",
    "update",
    "secure",
    "banking",
    "password",
    "confirm",
    "suspended",
    "locked",
    "urgent",
    "click",
    "winner",
    "prize",
    "free",
    "security",
)

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z\d+.-]*://")
_IPV4_HOST_RE = re.compile(r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}", re.ASCII)
_DIGIT_RE = re.compile(r"[0-9]")
_SPECIAL_RE = re.compile(r"[^a-zA-Z0-9.-]")


def shannon_entropy(text: str) -> float:
    if not text:
        return 0.0
    total = len(text)
    entropy = 0.0
    for count in Counter(text).values():
        p = count / total
        entropy -= p * math.log2(p)
    return entropy


def _host_of(url: str) -> str:
    value = url.strip()
    if not _SCHEME_RE.match(value):
        value = "https://" + value
    try:
        return urlparse(value).hostname or ""
    except ValueError:
        # e.g. an unbalanced IPv6 bracket
        return url.split("/", 1)[0].lower()


def extract_domain(url: str) -> str:
    """Host component used as the pattern-store key ('' when nothing usable)."""
    return _host_of(url or "")


def extract_features(url: str) -> UrlFeatures:
    url = url or ""
    lowered = url.lower()
    host = _host_of(url)

    return UrlFeatures(
        length=len(url),
        dot_count=url.count("."),
        hyphen_count=url.count("-"),
        digit_count=len(_DIGIT_RE.findall(url)),
        special_char_count=len(_SPECIAL_RE.findall(url)),
        has_ip_address_host=bool(_IPV4_HOST_RE.fullmatch(host)),
        has_suspicious_keyword=any(kw in lowered for kw in SUSPICIOUS_KEYWORDS),
        shannon_entropy=shannon_entropy(url),
        subdomain_count=max(0, len(host.split(".")) - 2),
        # "/" count minus the two scheme slashes
        path_depth=max(0, url.count("/") - 2),
    )
