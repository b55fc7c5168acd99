"""
URL feature extraction tests
"""

from datetime import datetime, timedelta, timezone

import pytest

from riskscan_agent.domain_age import build_age_record
from riskscan_agent.errors import InvalidUrlError
from riskscan_agent.features import (
    build_features,
    default_features,
    detect_brand,
    extract_features,
    merge_age,
    merge_threats,
    registrable_domain,
)
from riskscan_agent.models import ThreatVerdict
from riskscan_agent.scorer import score_features


PHISH_URL = "http://paypal-secure-login.xyz/verify?redirect=http://evil.com"


class TestRegistrableDomain:
    """Subdomain stripping"""

    def test_plain_domain(self):
        assert registrable_domain("www.google.com") == "google.com"

    def test_compound_tld(self):
        assert registrable_domain("a.b.example.co.uk") == "example.co.uk"

    def test_short_host_unchanged(self):
        assert registrable_domain("localhost") == "localhost"


class TestExtractFeatures:
    """extract_features / build_features"""

    def test_brand_phish(self):
        """Brand lookalike on a risky TLD over plain HTTP"""
        f = extract_features(PHISH_URL)
        assert f.hostname == "paypal-secure-login.xyz"
        assert f.registered_domain == "paypal-secure-login.xyz"
        assert f.tld == "xyz"
        assert f.looks_like_brand == "PayPal"
        assert f.is_risky_tld
        assert not f.uses_https
        assert f.suspicious_keywords == ("verify", "secure", "login")
        assert f.has_suspicious_path_patterns
        assert f.combined_weak_signals == 1
        assert f.hyphen_count == 2

    def test_legit_brand_domain_is_not_impersonation(self):
        f = extract_features("https://www.paypal.com/signin")
        assert f.looks_like_brand is None
        assert f.uses_https
        assert not f.is_typo_domain

    def test_ip_address(self):
        f = extract_features("http://192.168.1.10/login")
        assert f.uses_ip_address
        assert f.combined_weak_signals >= 1

    def test_free_hosting_brand(self):
        f = extract_features("https://secure-paypal.netlify.app/")
        assert f.is_free_hosting_service
        assert f.looks_like_brand == "PayPal"

    def test_typosquat_and_substitution(self):
        f = extract_features("http://g00gle.com/")
        assert f.is_typo_domain
        assert f.has_number_substitution
        assert f.looks_like_brand == "Google"

    def test_suspicious_port(self):
        assert extract_features("http://example.com:8080/").has_suspicious_port
        assert not extract_features("https://example.com:443/").has_suspicious_port

    def test_punycode(self):
        assert extract_features("https://xn--pypal-4ve.com/").is_punycode

    def test_government_brand_needs_exact_segment(self):
        """Short government tokens only match a whole hostname segment"""
        assert detect_brand("hmrc-refund.example.com") == "Government/Tax Authority"
        assert detect_brand("www.elsterwerk.de") is None
        assert detect_brand("www.gov.uk") is None

    def test_excessive_subdomains(self):
        f = extract_features("https://a.b.c.d.e.example.com/")
        assert f.has_excessive_subdomains
        assert f.subdomain_depth == 5

    def test_url_shortener(self):
        assert extract_features("https://bit.ly/3xYz").is_url_shortener

    @pytest.mark.parametrize("url", ["https://www.microsoft.com/account/login?x=1", "https://www.target.com/", "https://www.reddit.com/"])
    def test_shortener_needs_a_host_match(self, url):
        f = extract_features(url)
        assert not f.is_url_shortener
        assert score_features(f).label == "LIKELY_SAFE"

    def test_allowlisted_brand_subdomain(self):
        """www.google.com mentions google but is google"""
        f = extract_features("https://www.google.com/search?q=paypal")
        assert f.looks_like_brand is None
        assert f.is_typo_domain is False
        assert f.has_number_substitution is False

    def test_deterministic(self):
        assert extract_features(PHISH_URL) == extract_features(PHISH_URL)


class TestInvalidUrls:
    """Malformed input"""

    @pytest.mark.parametrize("url", ["", "paypal.com", "http://", "not a url"])
    def test_build_features_raises(self, url):
        with pytest.raises(InvalidUrlError):
            build_features(url)

    def test_extract_features_falls_back(self):
        f = extract_features("paypal.com")
        assert f.url == "paypal.com"
        assert f.hostname == ""
        assert f.looks_like_brand is None
        assert f.combined_weak_signals == 0

    def test_garbage_gives_default_record(self):
        assert extract_features("not a url") == default_features("not a url")
        assert score_features(extract_features("not a url")).score == 10

    def test_invalid_url_error_is_value_error(self):
        with pytest.raises(ValueError):
            build_features("")


class TestMerge:
    """Copy-on-merge enrichment"""

    def test_merge_age_leaves_input_untouched(self):
        f = extract_features("https://example.com/")
        now = datetime(2024, 5, 10, tzinfo=timezone.utc)
        age = build_age_record("example.com", now - timedelta(days=3), now, source="rdap")
        merged = merge_age(f, age)
        assert merged.is_very_new
        assert merged.domain_age_days == 3
        assert f.domain_age_days is None
        assert not f.is_very_new

    def test_merge_threats(self):
        f = extract_features("https://example.com/")
        merged = merge_threats(f, ThreatVerdict(threats=("MALWARE",)))
        assert merged.web_risk_flagged
        assert merged.web_risk_threat_types == ("MALWARE",)
        assert not f.web_risk_flagged
