from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

from .errors import InvalidUrlError
from .models import AgeRecord, CertificateRecord, FeatureRecord, HtmlFeatureRecord, ThreatVerdict
from .tables import (
    BRANDS,
    COMPOUND_TLDS,
    FREE_HOSTING_SUFFIXES,
    HOMOGLYPH_PATTERNS,
    IPV4_HOST_RE,
    NUMBER_SUBSTITUTION_PATTERNS,
    RISKY_TLDS,
    STANDARD_PORTS,
    SUBSTITUTION_ALLOWLIST,
    SUSPICIOUS_KEYWORDS,
    SUSPICIOUS_PATH_PATTERNS,
    SUSPICIOUS_SUBDOMAIN_PATTERNS,
    TYPOSQUAT_LEGIT_DOMAINS,
    TYPOSQUAT_PATTERNS,
    URL_SHORTENERS,
    BrandEntry,
    host_matches,
)

logger = logging.getLogger(__name__)

_SEGMENT_SPLIT_RE = re.compile(r"[.\-_]")
_DIGIT_RE = re.compile(r"\d")


def registrable_domain(hostname: str) -> str:
    """Strip subdomains, keeping three labels for compound TLDs such as co.uk."""
    parts = [p for p in hostname.lower().split(".") if p]
    if len(parts) <= 2:
        return ".".join(parts)
    if ".".join(parts[-2:]) in COMPOUND_TLDS:
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])


def _parse(url: str):
    value = (url or "").strip()
    if not value:
        raise InvalidUrlError("empty URL")
    try:
        parts = urlsplit(value)
        hostname = parts.hostname
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(f"unparseable URL {value!r}: {e}") from e
    if not parts.scheme or not hostname:
        raise InvalidUrlError(f"URL has no scheme or host: {value!r}")
    return parts, hostname.lower().rstrip("."), port


def _matches_as_word(hostname: str, pattern: str) -> bool:
    if "-" in pattern:
        return pattern in hostname

    for segment in _SEGMENT_SPLIT_RE.split(hostname):
        if segment == pattern:
            return True
        if len(segment) <= len(pattern) + 6 and (segment.startswith(pattern) or segment.endswith(pattern)):
            return True

    # digit substitutions (g00gle, paypa1) count anywhere
    return bool(_DIGIT_RE.search(pattern)) and pattern in hostname


def _matches_exact_segment(hostname: str, pattern: str) -> bool:
    if "-" in pattern:
        return pattern in hostname
    return pattern in _SEGMENT_SPLIT_RE.split(hostname)


def _brand_match(hostname: str, brand: BrandEntry) -> bool:
    matcher = _matches_exact_segment if brand.exact_match else _matches_as_word
    return any(matcher(hostname, p) for p in brand.patterns)


def detect_brand(hostname: str) -> str | None:
    for brand in BRANDS:
        if host_matches(hostname, brand.legit_domains):
            continue
        if _brand_match(hostname, brand):
            return brand.name
    return None


def detect_typosquat(hostname: str) -> bool:
    if host_matches(hostname, TYPOSQUAT_LEGIT_DOMAINS):
        return False
    return any(p.search(hostname) for p in TYPOSQUAT_PATTERNS)


def _has_number_substitution(hostname: str) -> bool:
    if host_matches(hostname, SUBSTITUTION_ALLOWLIST):
        return False
    return any(p.search(hostname) for p in NUMBER_SUBSTITUTION_PATTERNS)


def _has_homoglyphs(hostname: str) -> bool:
    without_tld = ".".join(hostname.split(".")[:-1])
    return any(p.search(without_tld) for p in HOMOGLYPH_PATTERNS)


def default_features(url: str) -> FeatureRecord:
    return FeatureRecord(url=url or "")


def build_features(url: str) -> FeatureRecord:
    """Strict variant of `extract_features`: raises InvalidUrlError."""
    parts, hostname, port = _parse(url)
    full = url.strip()
    full_lower = full.lower()
    labels = hostname.split(".")
    tld = labels[-1]

    uses_ip = bool(IPV4_HOST_RE.match(hostname))
    homoglyphs = _has_homoglyphs(hostname)
    shortener = host_matches(hostname, URL_SHORTENERS)
    free_hosting = hostname.endswith(FREE_HOSTING_SUFFIXES)
    odd_port = port is not None and port not in STANDARD_PORTS
    excessive = len(labels) > 5
    substitution = _has_number_substitution(hostname)
    odd_path = any(p.search(full) for p in SUSPICIOUS_PATH_PATTERNS)
    weak = sum((uses_ip, homoglyphs, shortener, free_hosting, odd_port, excessive, substitution, odd_path))

    return FeatureRecord(
        url=full,
        hostname=hostname,
        registered_domain=registrable_domain(hostname),
        tld=tld,
        subdomain_depth=max(0, len(labels) - 2),
        hostname_length=len(hostname),
        digit_count=sum(c.isdigit() for c in hostname),
        hyphen_count=hostname.count("-"),
        has_suspicious_subdomain=any(p.search(hostname) for p in SUSPICIOUS_SUBDOMAIN_PATTERNS),
        looks_like_brand=detect_brand(hostname),
        is_typo_domain=detect_typosquat(hostname),
        is_punycode=hostname.startswith("xn--"),
        is_risky_tld=tld in RISKY_TLDS,
        suspicious_keywords=tuple(k for k in SUSPICIOUS_KEYWORDS if k in full_lower),
        uses_ip_address=uses_ip,
        has_homoglyphs=homoglyphs,
        is_url_shortener=shortener,
        is_free_hosting_service=free_hosting,
        has_suspicious_port=odd_port,
        has_excessive_subdomains=excessive,
        has_number_substitution=substitution,
        has_suspicious_path_patterns=odd_path,
        combined_weak_signals=weak,
        uses_https=parts.scheme.lower() == "https",
    )


def extract_features(url: str) -> FeatureRecord:
    """Parse a URL into a FeatureRecord. Never raises; bad input gets the default record."""
    try:
        return build_features(url)
    except InvalidUrlError as e:
        logger.warning("feature extraction failed: %s", e)
        return default_features(url)


# --- copy-on-merge enrichment -------------------------------------------------------


def merge_age(record: FeatureRecord, age: AgeRecord) -> FeatureRecord:
    return record.model_copy(
        update={
            "domain_age_days": age.domain_age_days,
            "is_very_new": age.is_very_new,
            "is_new": age.is_new,
            "is_young": age.is_young,
            "creation_date": age.creation_date,
            "whois_privacy_enabled": age.whois_privacy_enabled,
        }
    )


def merge_certificate(record: FeatureRecord, cert: CertificateRecord) -> FeatureRecord:
    return record.model_copy(
        update={
            "ssl_valid": cert.ssl_valid,
            "ssl_expired": cert.ssl_expired,
            "ssl_days_until_expiry": cert.ssl_days_until_expiry,
            "cert_domain_mismatch": cert.cert_domain_mismatch,
        }
    )


def merge_threats(record: FeatureRecord, verdict: ThreatVerdict) -> FeatureRecord:
    return record.model_copy(
        update={
            "web_risk_flagged": verdict.flagged,
            "web_risk_threat_types": verdict.threats,
        }
    )


def merge_html(record: FeatureRecord, html: HtmlFeatureRecord) -> FeatureRecord:
    return record.model_copy(update={"html": html})
