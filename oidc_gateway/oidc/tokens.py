"""
ID token verification and JWKS management.

This module handles:
- Fetching and caching the provider's JWKS (JSON Web Key Set)
- Verifying ID tokens returned by the token endpoint
- Comparing the nonce claim with the value stored at login
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx
from jose import JWTError, jwk, jwt

logger = logging.getLogger(__name__)


class IdTokenError(Exception):
    """ID token could not be verified (signature, issuer, audience, expiry)."""
    pass


class NonceMismatchError(IdTokenError):
    """ID token nonce does not match the nonce stored for this login."""
    pass


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract the public key from JWKS that matches the token's kid.

    Args:
        token: JWT token string
        jwks: JWKS document containing keys

    Returns:
        Matching key from JWKS, or None if not found

    Raises:
        IdTokenError: If token header is malformed or has no kid
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise IdTokenError(f"Failed to decode token header: {e}")

    kid = unverified_header.get("kid")
    if not kid:
        raise IdTokenError("Token header missing 'kid' (Key ID)")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key

    return None


class IdTokenVerifier:
    """
    Verifies ID tokens against the provider's published keys.

    The JWKS is cached for `cache_seconds`; an unknown `kid` forces one
    refetch in case the provider rotated its keys.
    """

    def __init__(
        self,
        jwks_uri: str,
        issuer: str,
        client_id: str,
        http_client: httpx.AsyncClient,
        cache_seconds: int = 3600,
        leeway_seconds: int = 10,
    ):
        self.jwks_uri = jwks_uri
        self.issuer = issuer
        self.client_id = client_id
        self.http_client = http_client
        self.cache_seconds = cache_seconds
        self.leeway_seconds = leeway_seconds
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at: float = 0.0

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the JWKS with caching.

        Raises:
            httpx.HTTPError: If the JWKS endpoint is unreachable
            IdTokenError: If the response is not a key set
        """
        now = time.time()
        if not force_refresh and self._jwks and (now - self._jwks_fetched_at) < self.cache_seconds:
            return self._jwks

        response = await self.http_client.get(self.jwks_uri)
        if response.status_code >= 400:
            raise IdTokenError(f"JWKS endpoint returned HTTP {response.status_code}")

        try:
            jwks_data = response.json()
        except ValueError as e:
            raise IdTokenError("JWKS response is not valid JSON") from e

        if not isinstance(jwks_data, dict) or not isinstance(jwks_data.get("keys"), list):
            raise IdTokenError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._jwks_fetched_at = now
        logger.debug("Fetched JWKS", extra={"key_count": len(jwks_data["keys"])})
        return jwks_data

    async def verify(
        self,
        id_token: str,
        nonce: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Verify and decode an ID token.

        Args:
            id_token: JWT ID token string from the token endpoint
            nonce: Nonce stored at login; checked when given
            access_token: Access token issued alongside, for the at_hash claim

        Returns:
            Dictionary of verified token claims

        Raises:
            IdTokenError: Token invalid, expired or signed with an unknown key
            NonceMismatchError: Nonce claim missing or different
            httpx.HTTPError: If the JWKS endpoint is unreachable
        """
        jwks = await self.fetch_jwks()

        signing_key = get_signing_key(id_token, jwks)
        if not signing_key:
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = get_signing_key(id_token, jwks)

            if not signing_key:
                raise IdTokenError(
                    "Unable to find matching signing key in JWKS. "
                    "Keys may have rotated or the token is from another issuer."
                )

        try:
            public_key = jwk.construct(signing_key)
        except Exception as e:
            raise IdTokenError(f"Failed to construct public key from JWK: {e}")

        try:
            claims = jwt.decode(
                id_token,
                public_key.to_pem().decode("utf-8"),
                algorithms=["RS256"],
                audience=self.client_id,
                issuer=self.issuer,
                access_token=access_token,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_iat": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_sub": True,
                    "verify_jti": False,
                    "verify_at_hash": access_token is not None,
                    "leeway": self.leeway_seconds,
                },
            )
        except jwt.ExpiredSignatureError:
            raise IdTokenError("ID token has expired")
        except jwt.JWTClaimsError as e:
            raise IdTokenError(f"Invalid token claims: {e}")
        except JWTError as e:
            raise IdTokenError(f"Token verification failed: {e}")

        if nonce is not None and claims.get("nonce") != nonce:
            raise NonceMismatchError("ID token nonce does not match the login request")

        return claims
