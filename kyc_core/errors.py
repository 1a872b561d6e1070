"""
KYC Error Taxonomy
==================
Configuration errors are fatal. Resolver, gateway and parse errors are
recovered inside the core. Protocol errors are surfaced to the caller.
"""

from typing import Optional


class KycError(Exception):
    """Base class for every error raised by the KYC core."""


class ConfigurationError(KycError):
    pass


# ─── MODEL DISCOVERY ────────────────────────────────────────────────────────

class ResolverError(KycError):
    pass


class NoCompatibleModel(ResolverError):
    pass


class DiscoveryUnreachable(ResolverError):
    pass


# ─── RESPONSE PARSING ───────────────────────────────────────────────────────

class ParseError(KycError):
    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


# ─── UPSTREAM INVOCATION ────────────────────────────────────────────────────

class UpstreamError(KycError):
    """Raised by provider adapters. `status_code` is None for network and timeout failures."""

    def __init__(self, status_code: Optional[int], detail: str = ""):
        super().__init__(f"Upstream error ({status_code or 'network'}): {detail[:300]}")
        self.status_code = status_code
        self.detail = detail


class GatewayError(KycError):
    pass


class RateLimited(GatewayError):
    pass


class Unreachable(GatewayError):
    def __init__(self, message: str, endpoint_vanished: bool = False):
        super().__init__(message)
        self.endpoint_vanished = endpoint_vanished


class Malformed(GatewayError):
    pass


class Unauthorized(GatewayError):
    pass


# ─── SESSION PROTOCOL ───────────────────────────────────────────────────────

class ProtocolError(KycError):
    pass


class SessionNotFound(ProtocolError):
    pass


class SessionTerminal(ProtocolError):
    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is already {status}")
        self.session_id = session_id
        self.status = status


class UnsupportedLanguage(ProtocolError):
    pass
