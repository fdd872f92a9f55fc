"""
Data Models Module

This module defines Pydantic models for the session contents and the JSON
payloads returned by the gateway.

Models are organized by functional area:
- Token models (provider-issued token set)
- Identity models (userinfo claims)
- Session models (server-side session entry)
- Response models (callback, refresh and error envelopes)
"""

import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Token Models
# ============================================================================

class TokenSet(BaseModel):
    """Token set issued by the identity provider. Stored or replaced, never edited."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., description="Access token for the userinfo endpoint")
    refresh_token: Optional[str] = Field(None, description="Refresh token, if the provider issued one")
    id_token: Optional[str] = Field(None, description="Signed ID token")
    expires_at: Optional[int] = Field(None, description="Expiry as epoch seconds")
    token_type: str = Field(default="Bearer", description="Token type")
    scope: Optional[str] = Field(None, description="Granted scope")

    @classmethod
    def from_token_response(cls, data: Dict[str, Any], now: Optional[float] = None) -> "TokenSet":
        """
        Build a token set from a token endpoint response body.

        Args:
            data: Parsed JSON from the token endpoint
            now: Clock override (epoch seconds)

        Returns:
            TokenSet with `expires_in` converted to an absolute `expires_at`

        Raises:
            ValueError: If the response has no access_token
        """
        if not data.get("access_token"):
            raise ValueError("Token response missing access_token")

        expires_at = data.get("expires_at")
        expires_in = data.get("expires_in")
        if expires_at is None and expires_in is not None:
            issued_at = time.time() if now is None else now
            expires_at = int(issued_at) + int(expires_in)

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            expires_at=expires_at,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope"),
        )

    @property
    def expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at


# ============================================================================
# Identity Models
# ============================================================================

class User(BaseModel):
    """Claims returned by the provider's userinfo endpoint."""

    model_config = ConfigDict(extra="allow")

    sub: str = Field(..., description="Subject identifier")
    email: Optional[str] = Field(None, description="Email address")
    email_verified: Optional[str] = Field(None, description="'true' or 'false'")
    username: Optional[str] = Field(None, description="Provider username")

    @field_validator("email_verified", mode="before")
    @classmethod
    def normalize_email_verified(cls, v: Any) -> Optional[str]:
        # Cognito sends a string, most other providers a JSON boolean
        if isinstance(v, bool):
            return "true" if v else "false"
        return v


# ============================================================================
# Session Models
# ============================================================================

class Session(BaseModel):
    """
    Server-side session entry, one per browser or API client.

    `nonce` and `state` belong to a single pending login attempt. `tokens`
    and `userInfo` are only ever written together.
    """

    model_config = ConfigDict(populate_by_name=True)

    nonce: Optional[str] = None
    state: Optional[str] = None
    tokens: Optional[TokenSet] = None
    user_info: Optional[User] = Field(None, alias="userInfo")

    @property
    def is_authenticated(self) -> bool:
        return self.user_info is not None

    @property
    def access_token(self) -> Optional[str]:
        if self.tokens is None:
            return None
        return self.tokens.access_token or None


# ============================================================================
# Response Models
# ============================================================================

class CallbackResponse(BaseModel):
    """Body returned by a successful login callback."""

    tokenSet: TokenSet
    userInfo: User


class RefreshResponse(BaseModel):
    """Body returned by a successful token refresh."""

    message: str = Field(default="Tokens refreshed successfully")
    tokens: TokenSet
    user: User


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Exception text when running with DEBUG logging")
