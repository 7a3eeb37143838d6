"""Beruang error taxonomy.

Every failure the routing pipeline can observe is a distinct exception type,
so callers can decide precisely whether to degrade, reroute or abort:

- ModelUnavailable   → classifier not loaded, route remote
- NoSignal           → degenerate input, route remote
- UpstreamFailure    → remote LLM / auxiliary lookup failed, drop that contribution
- StreamInterrupted  → transport closed mid-relay
- ConfigurationError → startup data missing or malformed (fatal at startup only)
"""

from __future__ import annotations


class BeruangError(Exception):
    """Base exception for all Beruang errors."""
    pass


class ModelUnavailable(BeruangError):
    """Raised when the intent classifier has not finished loading."""
    pass


class NoSignal(BeruangError):
    """Raised when a message carries nothing the classifier can use."""
    pass


class UpstreamFailure(BeruangError):
    """Raised when a remote collaborator (LLM, web search) fails."""
    pass


class StreamInterrupted(BeruangError):
    """Raised when a token stream ends before the upstream finished.

    Attributes:
        delivered: Number of characters already relayed when the stream broke.
    """

    def __init__(self, message: str = "stream interrupted", *, delivered: int = 0) -> None:
        super().__init__(message)
        self.delivered = delivered


class ConfigurationError(BeruangError):
    """Raised at startup when vocabulary, labels or settings are unusable."""
    pass
