from __future__ import annotations

from .config import DEFAULT_WEIGHTS, ScoringWeights
from .models import FeatureRecord, HtmlFeatureRecord, RiskAssessment, RiskLabel
from .tables import GOVERNMENT_KEYWORDS


def _clamp_score(score: int) -> int:
    return max(0, min(100, int(score)))


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


class _Tally:
    """Running score for one stage plus the shared, ordered reason list."""

    def __init__(self, reasons: list[str]) -> None:
        self.points = 0
        self.reasons = reasons

    def add(self, points: int, reason: str) -> None:
        self.points += points
        self.reasons.append(reason)


def label_for(score: int, weights: ScoringWeights = DEFAULT_WEIGHTS) -> RiskLabel:
    if score >= weights.dangerous_threshold:
        return "DANGEROUS"
    if score >= weights.suspicious_threshold:
        return "SUSPICIOUS"
    return "LIKELY_SAFE"


def _high_risk(f: FeatureRecord, w: ScoringWeights, t: _Tally) -> None:
    if f.web_risk_flagged:
        if f.web_risk_threat_types:
            t.add(w.threat_intel, f"Flagged by threat intelligence: {', '.join(f.web_risk_threat_types)}")
        else:
            t.add(w.threat_intel, "Flagged by threat intelligence as potentially dangerous")
    if f.is_very_new:
        t.add(w.very_new_domain, "Domain is very new (< 7 days old)")
    if f.looks_like_brand is not None:
        t.add(w.brand_impersonation, f"Domain appears to impersonate the brand: {f.looks_like_brand}")
    if f.is_typo_domain:
        t.add(w.typo_domain, "Domain contains a typographic trick (typosquatting)")
    if f.cert_domain_mismatch is True:
        t.add(w.cert_domain_mismatch, "TLS certificate does not match the domain name")
    if f.uses_ip_address:
        t.add(w.ip_address, "URL uses an IP address instead of a domain name")
    if f.has_homoglyphs:
        t.add(w.homoglyph, "Domain uses lookalike characters (homoglyph attack)")


def _medium_risk(f: FeatureRecord, w: ScoringWeights, t: _Tally) -> None:
    if f.is_risky_tld:
        t.add(w.risky_tld, f"TLD (.{f.tld}) is commonly abused for scams")
    if f.is_punycode:
        t.add(w.punycode, "Domain uses Punycode (possible IDN homoglyphs)")
    if f.has_suspicious_subdomain:
        t.add(w.suspicious_subdomain, "Suspicious subdomain pattern detected")
    if f.is_free_hosting_service:
        t.add(w.free_hosting, "Free hosting service detected (frequently abused for phishing)")
    if not f.uses_https:
        t.add(w.no_https, "Site does not use HTTPS")
    if f.is_url_shortener:
        t.add(w.url_shortener, "URL shortener detected (may hide the real destination)")
    if f.has_number_substitution:
        t.add(w.number_substitution, "Suspicious character substitution detected (e.g. g00gle)")
    if f.has_suspicious_port:
        t.add(w.suspicious_port, "Non-standard port detected")
    if f.has_excessive_subdomains:
        t.add(w.excessive_subdomains, "Excessively long subdomain chain")
    if f.has_suspicious_path_patterns:
        t.add(w.suspicious_path, "URL contains suspicious login/payment page patterns")
    if f.uses_https:
        if f.ssl_expired is True:
            t.add(w.expired_cert, "TLS certificate has expired")
        elif f.ssl_valid is False:
            t.add(w.invalid_cert, "TLS certificate is invalid")
    if f.is_new and not f.is_very_new:
        t.add(w.new_domain, "Domain is new (< 30 days old)")
    if (
        f.whois_privacy_enabled is True
        and f.domain_age_days is not None
        and f.domain_age_days < w.whois_privacy_max_age_days
    ):
        t.add(w.whois_privacy_new_domain, "Recently registered domain using WHOIS privacy")


def _low_risk(f: FeatureRecord, w: ScoringWeights, t: _Tally) -> None:
    if f.subdomain_depth >= w.subdomain_depth_threshold:
        t.add(w.subdomain_depth, f"Deep subdomain nesting ({f.subdomain_depth} levels)")
    if f.hostname_length > w.hostname_length_threshold:
        t.add(w.long_hostname, "Very long domain name")
    if f.digit_count > w.digit_count_threshold:
        t.add(w.many_digits, f"Domain has many digits ({f.digit_count})")
    if f.hyphen_count > w.hyphen_count_threshold:
        t.add(w.many_hyphens, f"Domain has many hyphens ({f.hyphen_count})")
    if len(f.suspicious_keywords) >= w.min_keywords:
        t.add(w.keywords, f"URL contains suspicious keywords: {', '.join(f.suspicious_keywords)}")

    if f.combined_weak_signals >= 3:
        t.add(w.weak_signals_bonus, f"Multiple suspicious indicators detected ({f.combined_weak_signals} patterns)")
    elif f.combined_weak_signals == 2:
        t.add(w.weak_signals_pair_bonus, "Two suspicious indicators detected")


def _combinations(f: FeatureRecord, w: ScoringWeights, t: _Tally) -> None:
    brand = f.looks_like_brand
    free = f.is_free_hosting_service
    keywords = len(f.suspicious_keywords)

    if brand is not None and free:
        t.add(w.brand_on_free_hosting, f"{brand} impersonation on a free hosting service")
    if free and brand is None and any(k in f.hostname for k in GOVERNMENT_KEYWORDS):
        t.add(w.gov_terms_on_free_hosting, "Government-related terms on free hosting")
    if free and f.has_suspicious_path_patterns:
        t.add(w.free_hosting_with_path, "Free hosting with suspicious login/account pages")
    if free and keywords >= w.min_keywords:
        t.add(w.free_hosting_with_keywords, "Free hosting with multiple suspicious keywords")
    if f.is_url_shortener and keywords >= 1:
        t.add(w.shortener_with_keywords, "URL shortener hiding suspicious content")
    if not f.uses_https and free and brand is not None:
        t.add(w.plain_http_brand_on_free_hosting, "Unencrypted brand impersonation on free hosting")
    if free and f.combined_weak_signals >= 2:
        t.add(w.free_hosting_with_weak_signals, "Multiple suspicious patterns on a free hosting platform")
    if f.is_new and brand is not None:
        t.add(w.new_domain_with_brand, f"Newly registered domain impersonating {brand}")


def _html(f: FeatureRecord, html: HtmlFeatureRecord, w: ScoringWeights, t: _Tally) -> None:
    # Tiers come from the page's trust_score used as a prior, on the
    # 7 / 4 scale the rules were tuned with.
    trust = html.trust_score
    high = trust >= w.high_trust_min
    medium = not high and trust >= w.medium_trust_min
    low = not high and not medium
    if high:
        multiplier = w.high_trust_multiplier
    elif medium:
        multiplier = w.medium_trust_multiplier
    else:
        multiplier = w.low_trust_multiplier

    # always-critical
    if html.has_financial_harvesting and low:
        t.add(60, "Complete credit card harvesting form detected (card + CVV + expiry)")
    elif html.has_cvv_field and low:
        t.add(40, "CVV/security code field on an untrusted page")
    if html.has_identity_theft_attempt and low:
        t.add(55, "Identity theft attempt (SSN or bank account requested)")

    if html.has_2fa_phishing:
        if low:
            t.add(70, "One-time/2FA code requested on an untrusted page")
        elif medium and html.has_brand_mismatch:
            t.add(15, "2FA code field on a page mentioning another brand")
        elif high and html.has_brand_mismatch:
            t.add(25, "2FA code field on a page with a brand mismatch")
    if html.has_crypto_scam:
        if low:
            t.add(65, "Cryptocurrency wallet or private key requested")
        else:
            t.add(10, "Cryptocurrency payment field detected")
    if html.has_insecure_form_submission:
        t.add(40, "Password form served over plain HTTP")
    if html.has_external_form_action:
        t.add(35, "Form submits to an external domain")

    if html.has_copyright_mismatch:
        if low:
            t.add(30, "Copyright notice names a brand that does not own this domain")
        else:
            t.add(10, "Copyright notice names a different brand")
    if html.has_brand_mismatch:
        if low:
            t.add(30, "Page mentions a brand but the domain does not match")
        else:
            t.add(8, "Page mentions external brands")

    # weak signals, scaled by the trust prior
    for flag, weight, reason in (
        (html.has_hidden_iframes, 25, "Hidden iframes detected"),
        (html.has_urgent_language, 15, f"Urgency/scare tactics detected (score {html.urgency_score})"),
        (html.has_generic_content, 10, "Generic template content detected"),
    ):
        scaled = _round_half_up(weight * multiplier)
        if flag and scaled > 0:
            t.add(scaled, reason)

    if html.has_mismatched_links:
        scaled = _round_half_up(25 * (0.1 if high else 0.6))
        if scaled > 0:
            t.add(scaled, "Link text does not match its destination")
    if html.has_login_form and low:
        t.add(10, "Login form detected on page")
    if html.has_password_field and low:
        t.add(10, "Password field detected")
    if html.has_missing_csrf_token and html.has_password_field and low:
        t.add(15, "Password form without a CSRF token")
    if html.suspicious_form_patterns > 0:
        scaled = _round_half_up(html.suspicious_form_patterns * 5 * multiplier)
        if scaled > 0:
            t.add(scaled, f"{html.suspicious_form_patterns} suspicious form patterns detected")
    if html.has_excessive_external_links and low:
        t.add(12, "Excessive external links (>70%)")
    if html.has_spelling_errors and low:
        t.add(10, "Spelling errors detected")
    if html.has_countdown_timer and low:
        t.add(20, "Countdown timer detected (fake urgency)")
    if html.has_popup_modal and (html.has_urgent_language or html.has_login_form) and low:
        t.add(15, "Popup/modal with login or urgency language")
    if html.has_fake_security_badge and not high:
        t.add(25, "Security badge text without a link to the vendor")
    if html.hidden_redirect_fields > 0:
        if low:
            t.add(html.hidden_redirect_fields * 8, "Hidden redirect fields detected")
        else:
            t.add(html.hidden_redirect_fields * 3, "Hidden redirect fields detected (common in checkouts)")

    if html.is_low_trust:
        if html.has_login_form:
            t.add(20, "Login form on a page with almost no trust signals")
        else:
            t.add(10, "Few trust signals (no privacy policy, terms or contact info)")

    # page + URL combinations
    if f.is_very_new and html.has_login_form and html.is_low_trust:
        t.add(30, "Very new domain with a login form and no trust signals")
    if f.looks_like_brand is not None and html.has_login_form and html.is_low_trust:
        t.add(25, "Brand impersonation with a login form and no trust signals")
    if f.is_free_hosting_service and html.has_login_form and html.brand_mismatch_count > 0:
        t.add(20, "Free hosting with a brand impersonation login page")
    if html.has_urgent_language and f.is_new and html.has_login_form and low:
        t.add(20, "Scare tactics on a new domain with a login form")

    # positive signals
    if html.trust_signal_score >= 7 and not html.has_brand_mismatch:
        t.add(-20, "Strong trust signals (privacy policy, contact info, ...)")
    elif html.trust_signal_score >= 5 and not html.has_brand_mismatch:
        t.add(-10, "Moderate trust signals")
    if html.input_quality_score >= 6 and html.has_login_form:
        t.add(-10, "Proper form validation attributes")
    if html.meta_tag_quality >= 8:
        t.add(-5, "Professional meta tags")


def score_features(record: FeatureRecord, weights: ScoringWeights = DEFAULT_WEIGHTS) -> RiskAssessment:
    """Turn a (possibly enriched) FeatureRecord into a RiskAssessment.

    Pure and total. Rules are evaluated in five fixed stages and every rule
    that fires appends one reason, so the reason order mirrors evaluation
    order:

    1. high-risk single flags (threat intel, very new domain, brand, ...)
    2. medium-risk structural flags
    3. low-risk flags plus the weak-signal amplification bonus
    4. combinations of earlier flags
    5. page content, gated by the page's trust prior; this stage may
       subtract points but its net contribution is floored at 0

    The total is clamped to [0, 100] before the label is derived.
    """
    reasons: list[str] = []
    total = 0
    for stage in (_high_risk, _medium_risk, _low_risk, _combinations):
        tally = _Tally(reasons)
        stage(record, weights, tally)
        total += tally.points

    if record.html is not None:
        tally = _Tally(reasons)
        _html(record, record.html, weights, tally)
        total += max(0, tally.points)

    score = _clamp_score(total)
    return RiskAssessment(score=score, label=label_for(score, weights), reasons=reasons)
