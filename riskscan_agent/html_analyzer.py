from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup
from bs4.element import PreformattedString, Tag

from .models import HtmlFeatureRecord
from .tables import (
    COPYRIGHT_BRANDS,
    GENERIC_PHRASES,
    KNOWN_LEGIT_PAGE_DOMAINS,
    LINK_SHORTENERS,
    PAGE_BRANDS,
    SCRIPT_PATTERNS,
    SECURITY_BADGE_WORDS,
    SECURITY_VENDORS,
    SOCIAL_PLATFORMS,
    SPELLING_ERRORS,
    URGENCY_PHRASES,
    host_matches,
)

logger = logging.getLogger(__name__)

# Attribute set by the page renderer on iframes whose computed style hides them.
HIDDEN_MARKER_ATTR = "data-riskscan-hidden"

_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")
_DISPLAY_DOMAIN_RE = re.compile(r"([a-z0-9-]+\.(com|org|net|io|gov|edu|co\.uk))", re.IGNORECASE)
_COPYRIGHT_RE = re.compile(r"©\s*\d{4}\s+([A-Za-z\s&]+)")
_COUNTDOWN_RES = (
    re.compile(r"\d+\s*(hour|minute|second|day)s?\s*(left|remaining)", re.IGNORECASE),
    re.compile(r"expires?\s+in\s+\d+", re.IGNORECASE),
)
_FAKE_BADGE_RE = re.compile(r"verified\s+secure|100%\s+safe|ssl\s+protected|mcafee|norton|verisign", re.IGNORECASE)
_ADDRESS_RE = re.compile(r"\d+\s+[\w\s]+(?:street|st|avenue|ave|road|rd|boulevard|blvd|lane|ln|drive|dr)", re.IGNORECASE)
_PHONE_RE = re.compile(r"(\+\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")
_EMAIL_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.IGNORECASE)
_STYLE_HIDDEN_RE = re.compile(
    r"display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(\.0+)?\s*(;|$)|(^|;)\s*(width|height)\s*:\s*0(px)?\s*(;|$)"
)


class _Vocabulary:
    """Field-name vocabulary: long stems match as substrings, short ones as whole tokens."""

    def __init__(
        self,
        stems: tuple[str, ...] = (),
        tokens: tuple[str, ...] = (),
        placeholders: tuple[str, ...] = (),
        autocomplete: tuple[str, ...] = (),
        exclude_tokens: tuple[str, ...] = (),
    ) -> None:
        self.stems = stems
        self.tokens = frozenset(tokens)
        self.placeholders = placeholders
        self.autocomplete = autocomplete
        self.exclude_tokens = frozenset(exclude_tokens)

    def matches(self, name: str, placeholder: str, autocomplete: str) -> bool:
        parts = set(_TOKEN_SPLIT_RE.split(name)) - {""}
        if parts & self.exclude_tokens:
            return False
        if any(s in name for s in self.stems) or parts & self.tokens:
            return True
        if any(p in placeholder for p in self.placeholders):
            return True
        return any(a in autocomplete for a in self.autocomplete)


_CARD = _Vocabulary(
    stems=("card", "ccnumber", "cc-number", "cc_number"),
    tokens=("cc", "ccnum", "pan"),
    placeholders=("card number",),
    autocomplete=("cc-number", "cc-name", "cc-type"),
)
_CVV = _Vocabulary(
    stems=("cvv", "cvc", "securitycode", "security code", "security_code"),
    tokens=("cid", "csc"),
    placeholders=("cvv", "cvc", "security code"),
    autocomplete=("cc-csc",),
)
_EXPIRY = _Vocabulary(
    stems=("expir", "exp-date", "expdate", "exp_date"),
    tokens=("exp", "mm", "yy"),
    placeholders=("mm/yy", "mm / yy"),
    autocomplete=("cc-exp",),
)
_SSN = _Vocabulary(
    stems=("ssn", "social", "taxid", "tax_id", "national"),
    tokens=("tax", "tin", "sin"),
    placeholders=("social security",),
)
_BANK = _Vocabulary(
    stems=("accountnumber", "account_number", "account-number", "routing", "iban", "swift", "bank"),
    tokens=("bic", "sortcode"),
    placeholders=("account number", "routing number", "iban"),
)
_OTP = _Vocabulary(
    stems=("verification", "onetime", "one-time", "one_time", "2fa", "mfa"),
    tokens=("otp", "code", "token", "pin", "totp"),
    placeholders=("verification code", "enter code", "one-time", "6-digit"),
    autocomplete=("one-time-code",),
    exclude_tokens=("zip", "post", "postal", "promo", "coupon", "country", "area", "discount"),
)
_CRYPTO = _Vocabulary(
    stems=("wallet", "bitcoin", "crypto", "privatekey", "private_key", "private key", "seed", "mnemonic"),
    tokens=("eth", "btc", "usdt"),
    placeholders=("wallet", "private key", "seed phrase", "recovery phrase"),
)

_REDIRECT_NAMES = ("redirect", "return", "callback", "next", "continue")


def _attr(tag: Tag, name: str) -> str:
    value: Any = tag.get(name)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value)


def _host_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def _visible_text(root: Tag) -> str:
    chunks = [
        s
        for s in root.find_all(string=True)
        if not isinstance(s, PreformattedString)
        and s.parent is not None
        and s.parent.name not in ("script", "style", "noscript", "template")
    ]
    return re.sub(r"\s+", " ", " ".join(chunks)).strip()


def _is_sensitive_input(tag: Tag) -> bool:
    return _attr(tag, "type").lower() not in ("hidden", "submit", "button", "checkbox", "radio")


def default_html_features() -> HtmlFeatureRecord:
    return HtmlFeatureRecord()


# --- modules ---------------------------------------------------------------


def _analyze_forms(soup: BeautifulSoup, page_url: str, host: str, is_https: bool) -> dict[str, Any]:
    out: dict[str, Any] = {
        "has_login_form": False,
        "has_password_field": False,
        "has_external_form_action": False,
        "has_insecure_form_submission": False,
        "has_missing_csrf_token": False,
        "has_autocomplete_off": False,
    }
    forms = soup.find_all("form")
    patterns = 0
    for form in forms:
        action = _attr(form, "action").strip()
        method = (_attr(form, "method") or "get").strip().lower()
        inputs = form.find_all("input")
        passwords = [i for i in inputs if _attr(i, "type").lower() == "password"]
        identities = [
            i
            for i in inputs
            if _attr(i, "type").lower() == "email"
            or any(k in _attr(i, "name").lower() for k in ("email", "user", "login"))
        ]

        if passwords:
            out["has_password_field"] = True
            if identities:
                out["has_login_form"] = True
            if not is_https:
                out["has_insecure_form_submission"] = True
                patterns += 1
            has_token = any(
                "csrf" in _attr(i, "name").lower() or "token" in _attr(i, "name").lower()
                for i in inputs
            )
            if not has_token:
                out["has_missing_csrf_token"] = True
                patterns += 1
            if _attr(form, "autocomplete").lower() == "off":
                out["has_autocomplete_off"] = True
                patterns += 1
            if _attr(form, "target") == "_blank":
                patterns += 1
            if method == "get":
                patterns += 2

        lowered = action.lower()
        if lowered.startswith(("javascript:", "data:")):
            patterns += 2
        elif lowered.startswith(("http:", "https:", "//")):
            action_host = _host_of(urljoin(page_url, action))
            if not action_host:
                patterns += 1
            elif action_host != host:
                out["has_external_form_action"] = True
                patterns += 2

    out["form_count"] = len(forms)
    out["suspicious_form_patterns"] = patterns
    out["form_security_score"] = max(0, 10 - patterns * 2)
    return out


def _analyze_inputs(soup: BeautifulSoup, host: str) -> dict[str, Any]:
    found = {"card": False, "cvv": False, "expiry": False, "ssn": False, "bank": False, "otp": False, "crypto": False}
    vocabularies = (
        ("card", _CARD),
        ("cvv", _CVV),
        ("expiry", _EXPIRY),
        ("ssn", _SSN),
        ("bank", _BANK),
        ("otp", _OTP),
        ("crypto", _CRYPTO),
    )
    inputs = soup.find_all("input")
    has_phone = False
    proper_autocomplete = False
    hidden_redirects = 0

    for tag in inputs:
        kind = _attr(tag, "type").lower()
        name = _attr(tag, "name").lower()
        autocomplete = _attr(tag, "autocomplete").lower()
        if autocomplete and autocomplete != "off":
            proper_autocomplete = True

        if kind == "hidden":
            value = _attr(tag, "value").lower()
            if any(k in name for k in _REDIRECT_NAMES):
                hidden_redirects += 1
                if value.startswith("http") and host not in value:
                    hidden_redirects += 2
            continue

        if kind == "tel" or "phone" in name:
            has_phone = True

        if not _is_sensitive_input(tag):
            continue
        placeholder = _attr(tag, "placeholder").lower()
        for key, vocab in vocabularies:
            if not found[key] and vocab.matches(name, placeholder, autocomplete):
                found[key] = True

        numeric = _attr(tag, "inputmode").lower() == "numeric"
        maxlength = _attr(tag, "maxlength").strip()
        if numeric and maxlength == "16":
            found["card"] = True
        elif numeric and maxlength in ("3", "4") and not found["otp"]:
            found["cvv"] = True

    required = any(tag.has_attr("required") for tag in inputs)
    validation = any(tag.has_attr(a) for tag in inputs for a in ("pattern", "minlength", "maxlength"))

    return {
        "has_credit_card_field": found["card"],
        "has_cvv_field": found["cvv"],
        "has_expiry_field": found["expiry"],
        "has_ssn_field": found["ssn"],
        "has_bank_account_field": found["bank"],
        "has_phone_field": has_phone,
        "has_financial_harvesting": found["card"] and found["cvv"] and found["expiry"],
        "has_identity_theft_attempt": found["ssn"] or found["bank"],
        "has_2fa_phishing": found["otp"],
        "has_crypto_scam": found["crypto"],
        "hidden_redirect_fields": hidden_redirects,
        "input_quality_score": (3 if proper_autocomplete else 0) + (3 if required else 0) + (2 if validation else 0),
    }


def _analyze_links(soup: BeautifulSoup, page_url: str, host: str) -> dict[str, Any]:
    anchors = soup.find_all("a", href=True)
    external = 0
    suspicious = 0
    javascript_links = 0
    mismatched = False

    for a in anchors:
        href = _attr(a, "href").strip()
        lowered = href.lower()
        if lowered.startswith(("javascript:", "data:")):
            if lowered.startswith("javascript:"):
                javascript_links += 1
            suspicious += 1
            continue
        resolved = urljoin(page_url, href)
        if not resolved.lower().startswith(("http:", "https:")):
            continue
        link_host = _host_of(resolved)
        if link_host and link_host != host:
            external += 1

        text = a.get_text(" ", strip=True).lower()
        m = _DISPLAY_DOMAIN_RE.search(text)
        if m and link_host:
            shown = m.group(1).lower()
            if shown not in link_host and link_host not in shown:
                mismatched = True
                suspicious += 2

        if any(s in link_host for s in LINK_SHORTENERS):
            suspicious += 1

    total = len(anchors)
    ratio = external / total if total else 0.0
    return {
        "total_link_count": total,
        "external_link_count": external,
        "external_link_ratio": round(ratio, 4),
        "has_mismatched_links": mismatched,
        "has_excessive_external_links": ratio > 0.7,
        "suspicious_link_count": suspicious,
        "javascript_links": javascript_links,
    }


def _iframe_hidden(frame: Tag) -> bool:
    if frame.has_attr(HIDDEN_MARKER_ATTR) or frame.has_attr("hidden"):
        return True
    style = _attr(frame, "style").lower()
    if style and _STYLE_HIDDEN_RE.search(style):
        return True
    return _attr(frame, "width").strip() in ("0", "0px") or _attr(frame, "height").strip() in ("0", "0px")


def _copyright_mismatch(text: str, host: str) -> bool:
    m = _COPYRIGHT_RE.search(text)
    if not m:
        return False
    owner = m.group(1).lower().strip()
    return any(b in owner and b not in host for b in COPYRIGHT_BRANDS)


def _has_class_or_id(soup: BeautifulSoup, needles: tuple[str, ...]) -> bool:
    for tag in soup.find_all(True):
        marker = (_attr(tag, "class") + " " + _attr(tag, "id")).lower()
        if any(n in marker for n in needles):
            return True
    return False


def _analyze_content(soup: BeautifulSoup, text: str, host: str) -> dict[str, Any]:
    lower = text.lower()
    found = [phrase for phrase, _ in URGENCY_PHRASES if phrase in lower]
    urgency = sum(weight for phrase, weight in URGENCY_PHRASES if phrase in lower)
    iframes = soup.find_all("iframe")
    generic = sum(1 for phrase in GENERIC_PHRASES if phrase in lower)

    countdown = any(r.search(lower) for r in _COUNTDOWN_RES) or _has_class_or_id(soup, ("countdown", "timer"))

    popup = bool(soup.find(attrs={"role": ["dialog", "alertdialog"]}))
    if not popup:
        for tag in soup.find_all(True):
            classes = [c.lower() for c in (tag.get("class") or [])]
            if "modal" in classes or "popup" in classes or any("overlay" in c for c in classes):
                popup = True
                break

    vendor_link = any(
        v in _attr(a, "href").lower() for a in soup.find_all("a", href=True) for v in SECURITY_VENDORS
    )
    fake_badge = bool(_FAKE_BADGE_RE.search(lower)) and not vendor_link

    return {
        "urgency_score": urgency,
        "found_urgency_phrases": found,
        "has_urgent_language": urgency >= 4,
        "content_length": len(text),
        "has_minimal_content": len(text) < 500,
        "iframe_count": len(iframes),
        "has_hidden_iframes": any(_iframe_hidden(f) for f in iframes),
        "has_copyright_mismatch": _copyright_mismatch(text, host),
        "has_spelling_errors": any(e in lower for e in SPELLING_ERRORS),
        "has_generic_content": generic >= 2,
        "has_countdown_timer": countdown,
        "has_popup_modal": popup,
        "has_fake_security_badge": fake_badge,
    }


def _analyze_scripts(soup: BeautifulSoup) -> dict[str, Any]:
    scripts = soup.find_all("script")
    score = 0
    for script in scripts:
        content = script.string or script.get_text() or ""
        score += sum(weight for pattern, weight in SCRIPT_PATTERNS if pattern in content)
    return {"script_count": len(scripts), "suspicious_script_score": score}


def _analyze_trust_signals(soup: BeautifulSoup, text: str) -> dict[str, Any]:
    lower = text.lower()
    links = [(_attr(a, "href").lower(), a.get_text(" ", strip=True).lower()) for a in soup.find_all("a")]
    signals = {
        "has_privacy_policy": any("privacy" in t or "policy" in t or "privacy" in h for h, t in links),
        "has_terms_of_service": any("terms" in t or "service" in t or "terms" in h for h, t in links),
        "has_contact_info": any("contact" in t or "about" in t or "contact" in h for h, t in links),
        "has_about_page": any("about" in t or "about" in h for h, t in links),
        "has_social_media_links": any(p in h for h, _ in links for p in SOCIAL_PLATFORMS),
        "has_physical_address": bool(_ADDRESS_RE.search(lower)),
        "has_phone_number": bool(_PHONE_RE.search(lower)),
        "has_email_contact": bool(_EMAIL_RE.search(lower)),
        "has_cookie_notice": "cookie" in lower and ("accept" in lower or "consent" in lower),
        "has_security_badge": any(b in lower for b in SECURITY_BADGE_WORDS),
    }
    count = sum(signals.values())
    signals.update(
        trust_signal_score=count,
        is_low_trust=count < 3,
        is_medium_trust=3 <= count < 7,
        is_high_trust=count >= 7,
    )
    return signals


def _analyze_head(soup: BeautifulSoup, page_url: str, host: str) -> dict[str, Any]:
    icons = [l for l in soup.find_all("link") if "icon" in _attr(l, "rel").lower()]
    favicon_external = False
    if icons:
        icon_host = _host_of(urljoin(page_url, _attr(icons[0], "href")))
        favicon_external = bool(icon_host) and icon_host != host

    has_og = False
    has_description = False
    description_quality = 0
    for meta in soup.find_all("meta"):
        if _attr(meta, "property").startswith("og:"):
            has_og = True
        if _attr(meta, "name").lower() == "description":
            has_description = True
            length = len(_attr(meta, "content"))
            if 50 < length < 300:
                description_quality = 10
            elif length > 20:
                description_quality = 5

    stylesheets = [l for l in soup.find_all("link") if "stylesheet" in _attr(l, "rel").lower()]
    return {
        "has_favicon": bool(icons),
        "favicon_is_external": favicon_external,
        "has_open_graph": has_og,
        "has_description": has_description,
        "description_quality": description_quality,
        "meta_tag_quality": (3 if has_og else 0) + (3 if has_description else 0) + description_quality,
        "has_custom_css": bool(stylesheets) or bool(soup.find("style")),
        "total_images": len(soup.find_all("img")),
    }


def _analyze_brands(soup: BeautifulSoup, text: str, host: str) -> dict[str, Any]:
    title = soup.title.get_text(" ", strip=True) if soup.title else ""
    combined = (title + " " + text).lower()
    mentioned: list[str] = []
    mismatches: list[str] = []
    known_legit = host_matches(host, KNOWN_LEGIT_PAGE_DOMAINS)
    for name, keywords, domains in PAGE_BRANDS:
        if not any(k in combined for k in keywords):
            continue
        mentioned.append(name)
        if not host_matches(host, domains) and not known_legit:
            mismatches.append(name)
    return {
        "mentioned_brands": mentioned,
        "brand_mismatches": mismatches,
        "has_brand_mismatch": bool(mismatches),
        "brand_mismatch_count": len(mismatches),
    }


# --- composites ---------------------------------------------------------------


def _trust_score(f: dict[str, Any]) -> int:
    score = 50
    score += f["trust_signal_score"] * 3
    score += f["form_security_score"] * 2
    score += f["input_quality_score"]
    score += f["meta_tag_quality"]
    score += f["description_quality"]
    if f["has_favicon"] and not f["favicon_is_external"]:
        score += 5
    if f["has_custom_css"]:
        score += 5
    if f["is_https"]:
        score += 10

    penalties = (
        ("has_brand_mismatch", 30),
        ("has_insecure_form_submission", 40),
        ("has_external_form_action", 35),
        ("is_low_trust", 20),
        ("has_urgent_language", 15),
        ("has_mismatched_links", 25),
        ("has_copyright_mismatch", 20),
        ("has_spelling_errors", 10),
        ("has_generic_content", 10),
    )
    score -= sum(weight for key, weight in penalties if f[key])
    return max(0, min(100, score))


def _suspicion_score(f: dict[str, Any]) -> int:
    score = 0
    flags = (
        ("has_insecure_form_submission", 40),
        ("has_external_form_action", 35),
        ("has_brand_mismatch", 30),
        ("has_mismatched_links", 25),
        ("has_copyright_mismatch", 20),
        ("has_urgent_language", 15),
        ("has_generic_content", 10),
        ("has_spelling_errors", 10),
        ("has_hidden_iframes", 10),
    )
    score += sum(weight for key, weight in flags if f[key])
    if f["has_login_form"] and f["is_low_trust"]:
        score += 15
    if f["has_missing_csrf_token"] and f["has_password_field"]:
        score += 12
    score += f["suspicious_form_patterns"] * 5
    score += f["suspicious_link_count"] * 3
    score += f["suspicious_script_score"] * 2
    score += f["hidden_redirect_fields"] * 5
    score += f["brand_mismatch_count"] * 15
    return max(0, min(100, score))


def _confidence_level(f: dict[str, Any]) -> int:
    checks = (
        (f["form_count"] > 0, 10),
        (f["total_link_count"] > 5, 10),
        (f["script_count"] > 0, 10),
        (f["trust_signal_score"] > 0, 15),
        (f["content_length"] > 500, 15),
        (f["has_description"], 10),
        (f["total_images"] > 3, 10),
        (f["has_custom_css"], 10),
        (bool(f["mentioned_brands"]), 10),
    )
    return min(100, sum(weight for ok, weight in checks if ok))


def analyze_html(document: str | BeautifulSoup, url: str) -> HtmlFeatureRecord:
    """Extract page-level phishing signals from a rendered DOM.

    `document` may be raw HTML or an already-parsed soup. Nothing is fetched.
    Any failure yields `default_html_features()` so callers can always merge
    the result.
    """
    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        is_https = parts.scheme.lower() == "https"
        soup = document if isinstance(document, BeautifulSoup) else BeautifulSoup(document or "", "html.parser")
        root = soup.body or soup
        text = _visible_text(root)

        features: dict[str, Any] = {"is_https": is_https}
        features.update(_analyze_forms(soup, url, host, is_https))
        features.update(_analyze_inputs(soup, host))
        features.update(_analyze_links(soup, url, host))
        features.update(_analyze_content(soup, text, host))
        features.update(_analyze_scripts(soup))
        features.update(_analyze_trust_signals(soup, text))
        features.update(_analyze_head(soup, url, host))
        features.update(_analyze_brands(soup, text, host))

        features["trust_score"] = _trust_score(features)
        features["suspicion_score"] = _suspicion_score(features)
        features["confidence_level"] = _confidence_level(features)
        return HtmlFeatureRecord(**features)
    except Exception:
        logger.exception("HTML analysis failed for %s", url)
        return default_html_features()
