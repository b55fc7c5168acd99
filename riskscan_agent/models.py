from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RiskLabel = Literal["LIKELY_SAFE", "SUSPICIOUS", "DANGEROUS"]
ScanType = Literal["automatic", "manual"]
AgeCategory = Literal["VERY_NEW", "NEW", "RECENT", "YOUNG", "MATURE", "OLD", "UNKNOWN"]


class HtmlFeatureRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    # forms
    form_count: int = 0
    has_login_form: bool = False
    has_password_field: bool = False
    has_external_form_action: bool = False
    has_insecure_form_submission: bool = False
    has_missing_csrf_token: bool = False
    has_autocomplete_off: bool = False
    suspicious_form_patterns: int = 0
    form_security_score: int = 10

    # sensitive inputs
    has_credit_card_field: bool = False
    has_cvv_field: bool = False
    has_expiry_field: bool = False
    has_ssn_field: bool = False
    has_bank_account_field: bool = False
    has_phone_field: bool = False
    has_financial_harvesting: bool = False
    has_identity_theft_attempt: bool = False
    has_2fa_phishing: bool = False
    has_crypto_scam: bool = False
    hidden_redirect_fields: int = 0
    input_quality_score: int = 0

    # links
    total_link_count: int = 0
    external_link_count: int = 0
    external_link_ratio: float = 0.0
    has_mismatched_links: bool = False
    has_excessive_external_links: bool = False
    suspicious_link_count: int = 0
    javascript_links: int = 0

    # content
    urgency_score: int = 0
    found_urgency_phrases: list[str] = Field(default_factory=list)
    has_urgent_language: bool = False
    content_length: int = 0
    has_minimal_content: bool = False
    iframe_count: int = 0
    has_hidden_iframes: bool = False
    has_copyright_mismatch: bool = False
    has_spelling_errors: bool = False
    has_generic_content: bool = False
    has_countdown_timer: bool = False
    has_popup_modal: bool = False
    has_fake_security_badge: bool = False

    # scripts, favicon, meta, css, images
    script_count: int = 0
    suspicious_script_score: int = 0
    has_favicon: bool = False
    favicon_is_external: bool = False
    has_open_graph: bool = False
    has_description: bool = False
    description_quality: int = 0
    meta_tag_quality: int = 0
    has_custom_css: bool = False
    total_images: int = 0
    is_https: bool = False

    # brand mentions
    mentioned_brands: list[str] = Field(default_factory=list)
    brand_mismatches: list[str] = Field(default_factory=list)
    has_brand_mismatch: bool = False
    brand_mismatch_count: int = 0

    # trust signals
    has_privacy_policy: bool = False
    has_terms_of_service: bool = False
    has_contact_info: bool = False
    has_about_page: bool = False
    has_social_media_links: bool = False
    has_physical_address: bool = False
    has_phone_number: bool = False
    has_email_contact: bool = False
    has_cookie_notice: bool = False
    has_security_badge: bool = False
    trust_signal_score: int = 0
    is_low_trust: bool = False
    is_medium_trust: bool = False
    is_high_trust: bool = False

    # composites (diagnostic only)
    trust_score: int = 50
    suspicion_score: int = 0
    confidence_level: int = 0


class FeatureRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    hostname: str = ""
    registered_domain: str = ""
    tld: str = ""

    subdomain_depth: int = 0
    hostname_length: int = 0
    digit_count: int = 0
    hyphen_count: int = 0
    has_suspicious_subdomain: bool = False

    looks_like_brand: str | None = None
    is_typo_domain: bool = False
    is_punycode: bool = False
    is_risky_tld: bool = False
    suspicious_keywords: tuple[str, ...] = ()

    uses_ip_address: bool = False
    has_homoglyphs: bool = False
    is_url_shortener: bool = False
    is_free_hosting_service: bool = False
    has_suspicious_port: bool = False
    has_excessive_subdomains: bool = False
    has_number_substitution: bool = False
    has_suspicious_path_patterns: bool = False
    combined_weak_signals: int = 0

    uses_https: bool = False

    domain_age_days: int | None = None
    is_very_new: bool = False
    is_new: bool = False
    is_young: bool = False
    creation_date: str | None = None
    whois_privacy_enabled: bool | None = None

    ssl_valid: bool | None = None
    ssl_expired: bool | None = None
    ssl_days_until_expiry: int | None = None
    cert_domain_mismatch: bool | None = None

    web_risk_flagged: bool = False
    web_risk_threat_types: tuple[str, ...] = ()

    html: HtmlFeatureRecord | None = None


class AgeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: str
    creation_date: str | None = None
    domain_age_days: int | None = None
    is_very_new: bool = False
    is_new: bool = False
    is_young: bool = False
    whois_privacy_enabled: bool | None = None
    registrar: str = "Unknown"
    age_category: AgeCategory = "UNKNOWN"
    is_estimated: bool = False
    source: Literal["whoisjson", "rdap", "estimate"] = "estimate"


class CertificateRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    ssl_valid: bool
    ssl_expired: bool = False
    ssl_days_until_expiry: int | None = None
    cert_domain_mismatch: bool = False
    issuer: str | None = None
    subject: str | None = None


class ThreatVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    threats: tuple[str, ...] = ()

    @property
    def flagged(self) -> bool:
        return bool(self.threats)


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(..., ge=0, le=100)
    label: RiskLabel
    reasons: list[str]


class ScanMetadata(BaseModel):
    stages: list[str] = Field(default_factory=list)
    enrichments: list[str] = Field(default_factory=list)
    skipped: dict[str, str] = Field(default_factory=dict)
    local_score: int | None = None
    pre_intel_score: int | None = None
    elapsed_ms: int = 0
    timings_ms: dict[str, int] = Field(default_factory=dict)


class ScanResult(BaseModel):
    """Persisted scan shape, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    url: str
    risk_score: int
    risk_label: RiskLabel
    risk_reasons: list[str]
    features: FeatureRecord
    domain_age: AgeRecord | None = None
    web_risk_called: bool = False
    scan_type: ScanType = "automatic"
    timestamp: str
    metadata: ScanMetadata = Field(default_factory=ScanMetadata)


# --- HTTP surface -----------------------------------------------------------------


class ScanRequest(BaseModel):
    url: str = Field(..., min_length=1)
    html: str | None = Field(None, max_length=4 * 1024 * 1024)
    scan_type: ScanType = "manual"
    render: bool = Field(False)
    tab_id: str | None = None


class HtmlFeaturesRequest(BaseModel):
    url: str = Field(..., min_length=1)
    html: str = Field(..., max_length=4 * 1024 * 1024)


class HtmlFeaturesResponse(BaseModel):
    url: str
    delivered: bool
    features: HtmlFeatureRecord


class ScoreRequest(BaseModel):
    url: str = Field(..., min_length=1)
    html: str | None = Field(None, max_length=4 * 1024 * 1024)


class UsageSnapshot(BaseModel):
    month: str
    used: int
    limit: int
    remaining: int
    percent_used: float
    near_limit: bool
    exhausted: bool
