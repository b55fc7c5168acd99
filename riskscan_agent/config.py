from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class ScoringWeights:
    """Every weight and threshold the scorer uses.

    Defaults follow the aggressive tuning (free hosting 20, suspicious at 25).
    Pass a modified copy to `score_features` to experiment without touching
    the rule code.
    """

    # stage 1
    threat_intel: int = 80
    very_new_domain: int = 30
    brand_impersonation: int = 30
    typo_domain: int = 25
    cert_domain_mismatch: int = 20
    ip_address: int = 35
    homoglyph: int = 30

    # stage 2
    risky_tld: int = 15
    punycode: int = 15
    suspicious_subdomain: int = 15
    free_hosting: int = 20
    no_https: int = 10
    url_shortener: int = 15
    number_substitution: int = 15
    suspicious_port: int = 12
    excessive_subdomains: int = 12
    suspicious_path: int = 10
    expired_cert: int = 20
    invalid_cert: int = 15
    new_domain: int = 15
    whois_privacy_new_domain: int = 10
    whois_privacy_max_age_days: int = 30

    # stage 3
    subdomain_depth: int = 5
    subdomain_depth_threshold: int = 4
    long_hostname: int = 5
    hostname_length_threshold: int = 50
    many_digits: int = 5
    digit_count_threshold: int = 3
    many_hyphens: int = 5
    hyphen_count_threshold: int = 3
    keywords: int = 5
    min_keywords: int = 2
    weak_signals_bonus: int = 15
    weak_signals_pair_bonus: int = 5

    # stage 4
    brand_on_free_hosting: int = 25
    gov_terms_on_free_hosting: int = 20
    free_hosting_with_path: int = 15
    free_hosting_with_keywords: int = 10
    shortener_with_keywords: int = 10
    plain_http_brand_on_free_hosting: int = 20
    free_hosting_with_weak_signals: int = 10
    new_domain_with_brand: int = 15

    # stage 5 trust tiers (read from the page record's trust_score)
    high_trust_min: int = 7
    medium_trust_min: int = 4
    high_trust_multiplier: float = 0.05
    medium_trust_multiplier: float = 0.4
    low_trust_multiplier: float = 1.0

    # labels
    dangerous_threshold: int = 70
    suspicious_threshold: int = 25


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class Settings:
    webrisk_api_key: str | None = None
    webrisk_endpoint: str = "https://webrisk.googleapis.com/v1/uris:search"
    monthly_scan_limit: int = 9000
    whoisjson_endpoint: str = "https://whoisjson.com/api/v1/whois"
    rdap_fallback: str = "https://rdap.org"
    age_timeout_ms: int = 5000
    intel_timeout_ms: int = 5000
    cert_timeout_ms: int = 4000
    html_wait_automatic_ms: int = 3000
    html_wait_manual_ms: int = 1500
    pending_capacity: int = 100
    pending_ttl_s: float = 30.0
    age_cache_size: int = 1000
    age_cache_ttl_s: float = 24 * 3600
    render_timeout_ms: int = 12000
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    weights: ScoringWeights = DEFAULT_WEIGHTS

    @classmethod
    def from_env(cls) -> "Settings":
        raw_origins = os.getenv("RISKSCAN_CORS_ORIGINS", "").strip()
        origins = [o.strip() for o in raw_origins.split(",") if o.strip()] or ["http://localhost:3000"]
        return cls(
            webrisk_api_key=(os.getenv("WEBRISK_API_KEY") or "").strip() or None,
            webrisk_endpoint=os.getenv("WEBRISK_ENDPOINT", cls.webrisk_endpoint),
            monthly_scan_limit=max(0, _env_int("MONTHLY_SCAN_LIMIT", 9000)),
            age_timeout_ms=_env_int("RISKSCAN_AGE_TIMEOUT_MS", 5000),
            intel_timeout_ms=_env_int("RISKSCAN_INTEL_TIMEOUT_MS", 5000),
            cert_timeout_ms=_env_int("RISKSCAN_CERT_TIMEOUT_MS", 4000),
            html_wait_automatic_ms=_env_int("RISKSCAN_HTML_WAIT_AUTOMATIC_MS", 3000),
            html_wait_manual_ms=_env_int("RISKSCAN_HTML_WAIT_MANUAL_MS", 1500),
            pending_capacity=max(1, _env_int("RISKSCAN_PENDING_CAPACITY", 100)),
            pending_ttl_s=_env_float("RISKSCAN_PENDING_TTL_S", 30.0),
            render_timeout_ms=_env_int("RISKSCAN_RENDER_TIMEOUT_MS", 12000),
            cors_origins=origins,
        )
