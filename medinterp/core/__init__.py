"""
Core Module Package

HTTP clients for the remote realtime service:
- Credential providers: short-lived client secrets
- Negotiator: SDP offer/answer exchange
"""

from medinterp.core.realtime_api import (
    CaptureError,
    CredentialError,
    CredentialProvider,
    HttpCredentialProvider,
    NegotiationError,
    RealtimeNegotiator,
    StaticCredentialProvider,
    TransportError,
)

__all__ = [
    "CaptureError",
    "CredentialError",
    "CredentialProvider",
    "HttpCredentialProvider",
    "NegotiationError",
    "RealtimeNegotiator",
    "StaticCredentialProvider",
    "TransportError",
]
