"""
OIDC Package

Relying-party side of the OpenID Connect protocol.

Modules:
- client: discovery and the provider client (authorization URL, code
  exchange, refresh, userinfo, logout URL) returning typed results
- tokens: JWKS caching and ID token verification
"""

from .client import (
    CallbackChecks,
    DiscoveryError,
    OIDCClient,
    ProviderError,
    ProviderErrorKind,
    ProviderMetadata,
    ProviderResult,
    discover,
)
from .tokens import IdTokenError, IdTokenVerifier, NonceMismatchError

__all__ = [
    "CallbackChecks",
    "DiscoveryError",
    "IdTokenError",
    "IdTokenVerifier",
    "NonceMismatchError",
    "OIDCClient",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderMetadata",
    "ProviderResult",
    "discover",
]
