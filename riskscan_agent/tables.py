from __future__ import annotations

import re
from dataclasses import dataclass

# Lookup data for the URL and page heuristics. These lists are policy-free
# configuration; the scorer only sees the flags derived from them.


@dataclass(frozen=True)
class BrandEntry:
    name: str
    patterns: tuple[str, ...]
    legit_domains: tuple[str, ...]
    # exact segment match only (short tokens like "hmrc")
    exact_match: bool = False


BRANDS: tuple[BrandEntry, ...] = (
    BrandEntry(
        "Apple/iCloud",
        ("icloud", "appleid", "apple-id", "applestore", "app1e", "icl0ud", "i-cloud"),
        ("icloud.com", "apple.com"),
    ),
    BrandEntry(
        "Google",
        ("google", "googel", "gooogle", "goog1e", "g00gle"),
        ("google.com", "gmail.com", "google.co", "google.ca", "google.de", "google.co.uk"),
    ),
    BrandEntry(
        "PayPal",
        ("paypal", "paypai", "paypa1", "pay-pal", "paypa11"),
        ("paypal.com", "paypal.me"),
    ),
    BrandEntry(
        "Amazon",
        ("amazon", "amaz0n", "arnazon", "amazom"),
        ("amazon.com", "amazon.co.uk", "amazon.ca", "amazon.de", "amazon.in", "amazonaws.com"),
    ),
    BrandEntry(
        "Microsoft",
        ("microsoft", "micros0ft", "microsft"),
        ("microsoft.com", "outlook.com", "hotmail.com", "live.com", "azure.com", "office.com"),
    ),
    BrandEntry(
        "Facebook/Meta",
        ("facebook", "facebo0k", "faceb00k"),
        ("facebook.com", "fb.com", "meta.com", "messenger.com", "instagram.com"),
    ),
    BrandEntry("Netflix", ("netflix", "netfl1x", "netfix"), ("netflix.com",)),
    BrandEntry("WhatsApp", ("whatsapp", "whatsap", "whats-app"), ("whatsapp.com", "whatsapp.net")),
    BrandEntry(
        "Government/Tax Authority",
        ("elster", "hmrc", "cra-arc"),
        (
            "irs.gov",
            "gov.uk",
            "canada.ca",
            "ato.gov.au",
            "elster.de",
            "gouvernement.fr",
            "gobierno.es",
            "bundesfinanzministerium.de",
        ),
        exact_match=True,
    ),
    BrandEntry(
        "Cryptocurrency",
        ("metamask", "coinbase", "binance"),
        ("metamask.io", "coinbase.com", "binance.com", "binance.us"),
    ),
)

TYPOSQUAT_PATTERNS = tuple(
    re.compile(p)
    for p in (
        r"g[o]{3,}gle\.com",
        r"g0[o0]gle\.com",
        r"paypa1\.com",
        r"amaz0n\.com",
        r"faceb[o0]{2}k\.com",
        r"micros0ft\.com",
        r"app1e\.com",
    )
)

TYPOSQUAT_LEGIT_DOMAINS = (
    "google.com",
    "paypal.com",
    "amazon.com",
    "facebook.com",
    "microsoft.com",
    "apple.com",
)

RISKY_TLDS = (
    # free TLDs
    "tk", "ml", "ga", "cf", "gq",
    # cheap generic TLDs
    "xyz", "top", "work", "click", "link", "online", "site", "live",
    "space", "tech", "store", "club", "fun", "icu",
    # confusable with file names
    "zip", "mov", "app",
    "loan", "win", "bid", "trade", "download",
    "xxx", "webcam", "cam", "sexy",
)

SUSPICIOUS_KEYWORDS = (
    "verify",
    "urgent",
    "suspended",
    "limited",
    "secure",
    "account",
    "login",
    "signin",
    "update",
    "confirm",
    "validate",
    "alert",
    "warning",
    "billing",
    "payment",
)

GOVERNMENT_KEYWORDS = ("gov", "tax", "irs", "elster", "hmrc", "treasury", "federal", "revenue")

SUSPICIOUS_SUBDOMAIN_PATTERNS = tuple(
    re.compile(p)
    for p in (
        r"^ww\d+\.",
        r"^www\d+\.",
        r"^(login|account|secure|verify|update|signin|auth|pay|billing|support|service|help|client)[-.]",
    )
)

URL_SHORTENERS = (
    "bit.ly", "tinyurl.com", "goo.gl", "t.co", "ow.ly", "is.gd",
    "buff.ly", "adf.ly", "bit.do", "short.link", "tiny.cc",
    "rb.gy", "cutt.ly", "shorturl.at", "t.ly", "cli.gs",
)

FREE_HOSTING_SUFFIXES = (
    ".pages.dev",
    ".vercel.app",
    ".netlify.app",
    ".herokuapp.com",
    ".github.io",
    ".gitlab.io",
    ".repl.co",
    ".glitch.me",
    ".web.app",
    ".firebaseapp.com",
    ".azurewebsites.net",
    ".cloudfront.net",
    ".s3.amazonaws.com",
    ".wixsite.com",
    ".wordpress.com",
    ".blogspot.com",
    ".weebly.com",
    ".000webhostapp.com",
    ".freehosting.com",
    ".rf.gd",
    ".surge.sh",
    ".now.sh",
    ".onrender.com",
)

# Domains whose natural double letters would otherwise trip number substitution.
SUBSTITUTION_ALLOWLIST = (
    "google.com", "yahoo.com", "zoom.com", "booking.com", "paypal.com",
    "facebook.com", "messenger.com", "apple.com", "support.com", "reddit.com",
    "twitter.com", "linkedin.com", "microsoft.com", "amazon.com",
)

NUMBER_SUBSTITUTION_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"[o0]{2,}", r"[il1]{2,}", r"[sz2]{2,}", r"[o0]o", r"[il1]l")
)

SUSPICIOUS_PATH_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/login[/?]",
        r"/signin[/?]",
        r"/account[/?]",
        r"/verify[/?]",
        r"/secure[/?]",
        r"/update[/?]",
        r"/confirm[/?]",
        r"/banking[/?]",
        r"/(wallet|billing|payment)[/?]",
        r"\.php\?[^=]+=.*pass",
        r"\?redirect=",
        r"\?return=",
        r"\?next=",
        r"data:text/html",
    )
)

IPV4_HOST_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")

HOMOGLYPH_PATTERNS = (
    re.compile(r"[а-яА-ЯёЁ]"),
    re.compile(r"[αβγδεζηθικλμνξοπρστυφχψωΑΒΓΔΕΖΗΘΙΚΛΜΝΞΟΠΡΣΤΥΦΧΨΩ]"),
    re.compile("[аеорсух]"),
    re.compile("[ΑΒΕΖΗΙΚΜΝΟΡΤΥΧ]"),
)

COMPOUND_TLDS = ("co.uk", "com.br", "co.in", "com.au", "co.jp")

STANDARD_PORTS = (80, 443)

# --- page content -----------------------------------------------------------

URGENCY_PHRASES: tuple[tuple[str, int], ...] = (
    ("account suspended", 3),
    ("account locked", 3),
    ("account will be closed", 3),
    ("account disabled", 3),
    ("account terminated", 3),
    ("verify immediately", 3),
    ("verify now", 2),
    ("verify within 24", 3),
    ("verify within 48", 3),
    ("confirm identity", 2),
    ("confirm your identity", 2),
    ("urgent", 2),
    ("immediately", 2),
    ("expire", 2),
    ("expires in", 3),
    ("limited time", 2),
    ("act now", 2),
    ("act within", 3),
    ("deadline", 2),
    ("final notice", 3),
    ("final warning", 3),
    ("last chance", 3),
    ("unusual activity", 2),
    ("suspicious activity", 2),
    ("security alert", 2),
    ("security breach", 3),
    ("unauthorized access", 3),
    ("fraud alert", 2),
    ("action required", 2),
    ("payment failed", 3),
    ("payment declined", 3),
    ("update payment", 2),
    ("verify payment", 2),
    ("billing problem", 2),
    ("payment information", 2),
    ("card expired", 2),
    ("update billing", 2),
    ("legal action", 3),
    ("irs", 2),
    ("tax refund", 2),
    ("government", 1),
    ("federal", 1),
    ("click here", 1),
    ("click now", 2),
    ("download now", 1),
)

SPELLING_ERRORS = (
    "recieve", "occured", "seperate", "untill", "tommorrow",
    "definately", "accomodate", "ocassion", "neccessary",
)

GENERIC_PHRASES = (
    "click here to verify",
    "dear customer",
    "dear user",
    "dear member",
    "valued customer",
)

COPYRIGHT_BRANDS = (
    "google", "microsoft", "apple", "paypal", "amazon",
    "facebook", "meta", "netflix", "spotify", "linkedin",
    "twitter", "instagram", "bank", "chase", "wells fargo",
)

LINK_SHORTENERS = ("bit.ly", "tinyurl", "goo.gl", "t.co", "ow.ly", "is.gd", "buff.ly")

SOCIAL_PLATFORMS = ("facebook.com", "twitter.com", "linkedin.com", "instagram.com", "youtube.com")

SECURITY_BADGE_WORDS = ("norton", "mcafee", "verisign", "trustwave", "bbb", "ssl", "secure")

SECURITY_VENDORS = ("mcafee", "norton", "verisign")

SCRIPT_PATTERNS: tuple[tuple[str, int], ...] = (
    ("eval(", 2),
    ("document.write(", 1),
    ("window.location=", 1),
    ("btoa(", 1),
    ("atob(", 1),
    (".submit()", 2),
    ('addEventListener("submit"', 1),
    ("XMLHttpRequest", 1),
    ("setInterval", 1),
)

PAGE_BRANDS: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = (
    ("PayPal", ("paypal",), ("paypal.com",)),
    ("Google", ("google", "gmail"), ("google.com", "gmail.com")),
    ("Microsoft", ("microsoft", "outlook", "office 365"), ("microsoft.com", "outlook.com", "office.com")),
    ("Apple", ("apple", "icloud", "itunes"), ("apple.com", "icloud.com")),
    ("Amazon", ("amazon", "aws"), ("amazon.com", "aws.amazon.com")),
    ("Facebook", ("facebook", "meta"), ("facebook.com", "meta.com")),
    ("Netflix", ("netflix",), ("netflix.com",)),
    ("Bank", ("bank", "chase", "wells fargo", "bank of america"), ("chase.com", "wellsfargo.com", "bankofamerica.com")),
)

KNOWN_LEGIT_PAGE_DOMAINS = (
    "google.com", "youtube.com", "gmail.com",
    "facebook.com", "instagram.com", "whatsapp.com",
    "amazon.com", "aws.amazon.com",
    "microsoft.com", "office.com", "outlook.com",
    "apple.com", "icloud.com",
    "paypal.com",
    "netflix.com",
    "twitter.com", "x.com",
)

# --- domain age ---------------------------------------------------------------

RDAP_SERVERS = {
    "com": "https://rdap.verisign.com/com/v1",
    "net": "https://rdap.verisign.com/net/v1",
    "org": "https://rdap.publicinterestregistry.org",
    "io": "https://rdap.nic.io",
    "co": "https://rdap.nic.co",
    "uk": "https://rdap.nominet.uk",
    "dev": "https://rdap.nic.google",
    "app": "https://rdap.nic.google",
    "xyz": "https://rdap.nic.xyz",
}

WHOIS_PRIVACY_KEYWORDS = ("privacy", "protected", "redacted", "proxy", "whois guard", "private")

KNOWN_OLD_DOMAINS = (
    "google.com", "youtube.com", "facebook.com", "amazon.com",
    "microsoft.com", "apple.com", "twitter.com", "linkedin.com",
    "github.com", "stackoverflow.com", "wikipedia.org", "reddit.com",
    "netflix.com", "spotify.com", "dropbox.com", "zoom.us",
    "instagram.com", "whatsapp.com", "telegram.org", "discord.com",
)

# --- threat intel -------------------------------------------------------------

THREAT_TYPES = ("MALWARE", "SOCIAL_ENGINEERING", "UNWANTED_SOFTWARE")


def host_matches(hostname: str, domains: tuple[str, ...]) -> bool:
    """True when hostname equals one of the domains or is a subdomain of it."""
    return any(hostname == d or hostname.endswith("." + d) for d in domains)
