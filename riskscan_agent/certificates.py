from __future__ import annotations

import asyncio
import logging
import socket
import ssl
from datetime import datetime, timezone

from .errors import ProviderTimeoutError, ProviderUnavailableError
from .models import CertificateRecord

logger = logging.getLogger(__name__)

PROVIDER = "tls"


def _name(rdns) -> str:
    return ", ".join("=".join(x) for rdn in rdns or () for x in rdn)


def days_until(not_after: str | None, now: datetime | None = None) -> int | None:
    if not not_after:
        return None
    try:
        dt = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    now = now or datetime.now(timezone.utc)
    return int((dt - now).total_seconds() // 86400)


def _verified_cert(hostname: str, timeout: float) -> dict:
    ctx = ssl.create_default_context()
    with socket.create_connection((hostname, 443), timeout=timeout) as sock:
        with ctx.wrap_socket(sock, server_hostname=hostname) as ssock:
            return ssock.getpeercert() or {}


def inspect_certificate(hostname: str, timeout_ms: int = 4000) -> CertificateRecord:
    """Blocking TLS handshake against hostname:443.

    A handshake that fails verification still yields a record (invalid,
    expired or mismatched); only network failures raise.
    """
    timeout = timeout_ms / 1000
    try:
        cert = _verified_cert(hostname, timeout)
    except ssl.SSLCertVerificationError as e:
        message = (e.verify_message or str(e)).lower()
        logger.info("certificate for %s failed verification: %s", hostname, message)
        return CertificateRecord(
            ssl_valid=False,
            ssl_expired="expired" in message,
            cert_domain_mismatch="hostname" in message or "mismatch" in message,
        )
    except (socket.timeout, TimeoutError) as e:
        raise ProviderTimeoutError(PROVIDER, f"handshake with {hostname} timed out") from e
    except (OSError, ssl.SSLError) as e:
        raise ProviderUnavailableError(PROVIDER, f"handshake with {hostname} failed: {e}") from e

    remaining = days_until(cert.get("notAfter"))
    return CertificateRecord(
        ssl_valid=True,
        ssl_expired=remaining is not None and remaining < 0,
        ssl_days_until_expiry=remaining,
        cert_domain_mismatch=False,
        issuer=_name(cert.get("issuer")) or None,
        subject=_name(cert.get("subject")) or None,
    )


class CertificateInspector:
    async def inspect(self, hostname: str, timeout_ms: int = 4000) -> CertificateRecord:
        return await asyncio.to_thread(inspect_certificate, hostname, timeout_ms)
