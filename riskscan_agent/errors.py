from __future__ import annotations


class RiskScanError(Exception):
    """Base class for errors raised inside the scanning core."""


class InvalidUrlError(RiskScanError, ValueError):
    pass


class ProviderError(RiskScanError):
    """A remote collaborator (threat intel, WHOIS/RDAP, TLS, renderer) failed."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderUnavailableError(ProviderError):
    pass


class ProviderTimeoutError(ProviderError):
    pass


class QuotaExceededError(ProviderError):
    """The monthly query budget for a provider is spent."""

    def __init__(self, provider: str, used: int, limit: int) -> None:
        super().__init__(provider, f"monthly quota exhausted ({used}/{limit})")
        self.used = used
        self.limit = limit
