"""
Identity provider client.

Wire-level OIDC operations against a discovered provider: authorization URL,
authorization-code exchange, refresh, userinfo and logout URL. Every network
call returns a `ProviderResult` instead of raising, so the auth flow decides
what each kind of failure means for its own operation.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Mapping, Optional, TypeVar
from urllib.parse import urlencode

import httpx

from oidc_gateway.config import well_known_url
from oidc_gateway.models import TokenSet
from oidc_gateway.oidc.tokens import IdTokenError, IdTokenVerifier, NonceMismatchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CALLBACK_PARAM_NAMES = ("code", "state", "error", "error_description", "iss", "session_state")


# =============================================================================
# Results
# =============================================================================

class ProviderErrorKind(str, Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    STATE_MISMATCH = "state_mismatch"
    NONCE_MISMATCH = "nonce_mismatch"
    PROVIDER_ERROR = "provider_error"
    INVALID_RESPONSE = "invalid_response"
    INVALID_ID_TOKEN = "invalid_id_token"


@dataclass(frozen=True)
class ProviderError:
    kind: ProviderErrorKind
    message: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    """Either a value or a ProviderError, never both."""

    value: Optional[T] = None
    error: Optional[ProviderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ProviderResult[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: ProviderErrorKind,
        message: str,
        status_code: Optional[int] = None,
    ) -> "ProviderResult[T]":
        return cls(error=ProviderError(kind=kind, message=message, status_code=status_code))


@dataclass(frozen=True)
class CallbackChecks:
    """Values stored at login that the callback must match."""

    nonce: Optional[str]
    state: Optional[str]


# =============================================================================
# Discovery
# =============================================================================

class DiscoveryError(Exception):
    """Provider metadata could not be fetched or is incomplete."""
    pass


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    end_session_endpoint: Optional[str] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "ProviderMetadata":
        """
        Build metadata from an OpenID configuration document.

        Raises:
            DiscoveryError: If a required endpoint is missing
        """
        required = ("issuer", "authorization_endpoint", "token_endpoint", "userinfo_endpoint", "jwks_uri")
        missing = [name for name in required if not document.get(name)]
        if missing:
            raise DiscoveryError(f"Provider metadata missing: {', '.join(missing)}")

        return cls(
            issuer=document["issuer"],
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            userinfo_endpoint=document["userinfo_endpoint"],
            jwks_uri=document["jwks_uri"],
            end_session_endpoint=document.get("end_session_endpoint"),
        )


async def discover(issuer_url: str, http_client: httpx.AsyncClient) -> ProviderMetadata:
    """
    Fetch the provider's OpenID configuration.

    Args:
        issuer_url: Issuer URL without trailing slash
        http_client: Shared HTTP client (carries the timeout)

    Returns:
        ProviderMetadata for the issuer

    Raises:
        DiscoveryError: On network failure, non-2xx status or bad document
    """
    url = well_known_url(issuer_url)

    try:
        response = await http_client.get(url)
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Discovery request to {url} failed: {e}") from e

    if response.status_code >= 400:
        raise DiscoveryError(f"Discovery endpoint returned HTTP {response.status_code}")

    try:
        document = response.json()
    except ValueError as e:
        raise DiscoveryError("Discovery response is not valid JSON") from e

    metadata = ProviderMetadata.from_document(document)
    logger.info(
        "Discovered issuer",
        extra={"issuer": metadata.issuer, "token_endpoint": metadata.token_endpoint},
    )
    return metadata


# =============================================================================
# Client
# =============================================================================

class OIDCClient:
    """
    Relying-party client for one provider and one registered client.

    Token endpoint authentication is client_secret_basic when a secret is
    configured, otherwise the client id is sent in the form body.
    """

    def __init__(
        self,
        metadata: ProviderMetadata,
        client_id: str,
        redirect_uri: str,
        http_client: httpx.AsyncClient,
        client_secret: Optional[str] = None,
        id_token_verifier: Optional[IdTokenVerifier] = None,
    ):
        self.metadata = metadata
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.http_client = http_client
        self.id_token_verifier = id_token_verifier or IdTokenVerifier(
            jwks_uri=metadata.jwks_uri,
            issuer=metadata.issuer,
            client_id=client_id,
            http_client=http_client,
        )

    # -------------------------------------------------------------------------
    # Front channel
    # -------------------------------------------------------------------------

    def authorization_url(self, scope: str, state: str, nonce: str) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": scope,
            "state": state,
            "nonce": nonce,
        }
        return f"{self.metadata.authorization_endpoint}?{urlencode(params)}"

    @staticmethod
    def callback_params(query: Mapping[str, str]) -> Dict[str, str]:
        """Pick the authorization response parameters out of the callback query."""
        return {name: query[name] for name in CALLBACK_PARAM_NAMES if name in query}

    def end_session_url(
        self,
        post_logout_redirect_uri: str,
        id_token_hint: Optional[str] = None,
        logout_url: Optional[str] = None,
    ) -> Optional[str]:
        """
        Build the provider logout URL.

        A configured hosted-UI logout URL (Cognito style) wins over the
        discovered end_session_endpoint.

        Returns:
            Logout URL, or None if the provider offers no logout endpoint
        """
        if logout_url:
            params = {"client_id": self.client_id, "logout_uri": post_logout_redirect_uri}
            return f"{logout_url}?{urlencode(params)}"

        if not self.metadata.end_session_endpoint:
            return None

        params = {"client_id": self.client_id, "post_logout_redirect_uri": post_logout_redirect_uri}
        if id_token_hint:
            params["id_token_hint"] = id_token_hint
        return f"{self.metadata.end_session_endpoint}?{urlencode(params)}"

    # -------------------------------------------------------------------------
    # Back channel
    # -------------------------------------------------------------------------

    async def exchange_code(
        self,
        redirect_uri: str,
        params: Mapping[str, str],
        checks: CallbackChecks,
    ) -> ProviderResult[TokenSet]:
        """
        Exchange an authorization code for a token set.

        The returned `state` must equal the one stored at login, and the ID
        token's nonce must equal the stored nonce.
        """
        if not checks.state:
            return ProviderResult.failure(
                ProviderErrorKind.STATE_MISMATCH, "No state stored for this session"
            )
        if params.get("state") != checks.state:
            return ProviderResult.failure(
                ProviderErrorKind.STATE_MISMATCH, "State mismatch between callback and session"
            )

        if params.get("error"):
            message = params.get("error_description") or params["error"]
            return ProviderResult.failure(ProviderErrorKind.PROVIDER_ERROR, message)

        code = params.get("code")
        if not code:
            return ProviderResult.failure(
                ProviderErrorKind.INVALID_RESPONSE, "Callback missing authorization code"
            )

        result = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })
        if not result.ok:
            return result

        return await self._verify_id_token(result.value, nonce=checks.nonce)

    async def refresh(self, refresh_token: str) -> ProviderResult[TokenSet]:
        result = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        if not result.ok:
            return result

        return await self._verify_id_token(result.value, nonce=None)

    async def userinfo(self, access_token: str) -> ProviderResult[Dict[str, Any]]:
        result = await self._send(
            "GET",
            self.metadata.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if not result.ok:
            return result

        if not isinstance(result.value, dict) or not result.value.get("sub"):
            return ProviderResult.failure(
                ProviderErrorKind.INVALID_RESPONSE, "Userinfo response missing 'sub'"
            )
        return result

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _token_request(self, form: Dict[str, str]) -> ProviderResult[TokenSet]:
        auth = None
        if self.client_secret:
            auth = (self.client_id, self.client_secret)
        else:
            form = {**form, "client_id": self.client_id}

        result = await self._send(
            "POST",
            self.metadata.token_endpoint,
            data=form,
            auth=auth,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if not result.ok:
            return result

        try:
            return ProviderResult.success(TokenSet.from_token_response(result.value))
        except (ValueError, TypeError, AttributeError) as e:
            return ProviderResult.failure(ProviderErrorKind.INVALID_RESPONSE, str(e))

    async def _verify_id_token(
        self,
        tokens: TokenSet,
        nonce: Optional[str],
    ) -> ProviderResult[TokenSet]:
        if not tokens.id_token:
            if nonce is not None:
                return ProviderResult.failure(
                    ProviderErrorKind.INVALID_ID_TOKEN, "Token response missing id_token"
                )
            return ProviderResult.success(tokens)

        try:
            await self.id_token_verifier.verify(
                tokens.id_token,
                nonce=nonce,
                access_token=tokens.access_token,
            )
        except NonceMismatchError as e:
            return ProviderResult.failure(ProviderErrorKind.NONCE_MISMATCH, str(e))
        except IdTokenError as e:
            return ProviderResult.failure(ProviderErrorKind.INVALID_ID_TOKEN, str(e))
        except httpx.TimeoutException as e:
            return ProviderResult.failure(ProviderErrorKind.TIMEOUT, f"JWKS request timed out: {e}")
        except httpx.HTTPError as e:
            return ProviderResult.failure(ProviderErrorKind.NETWORK, f"JWKS request failed: {e}")

        return ProviderResult.success(tokens)

    async def _send(self, method: str, url: str, **kwargs: Any) -> ProviderResult[Dict[str, Any]]:
        """Perform one provider request and map transport and HTTP failures."""
        if kwargs.get("auth") is None:
            kwargs.pop("auth", None)

        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Provider request timed out", extra={"url": url})
            return ProviderResult.failure(ProviderErrorKind.TIMEOUT, f"Request to {url} timed out: {e}")
        except httpx.HTTPError as e:
            logger.warning("Provider request failed", extra={"url": url, "error": str(e)})
            return ProviderResult.failure(ProviderErrorKind.NETWORK, f"Request to {url} failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            error_data = body if isinstance(body, dict) else {}
            message = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"HTTP {response.status_code}"
            )
            return ProviderResult.failure(
                ProviderErrorKind.PROVIDER_ERROR,
                message,
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            return ProviderResult.failure(
                ProviderErrorKind.INVALID_RESPONSE,
                f"Non-JSON response from {url}",
                status_code=response.status_code,
            )

        return ProviderResult.success(body)
