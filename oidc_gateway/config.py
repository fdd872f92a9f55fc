"""
Configuration module for the OIDC gateway.

This module uses Pydantic Settings to load and validate environment variables
for the identity provider, the server-side session and the HTTP surface.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the identity provider (OIDC), the session cookie
    and the server itself is defined here.
    """

    # =========================================================================
    # Identity Provider (OIDC) Configuration
    # =========================================================================

    OIDC_ISSUER_URL: str = Field(
        ...,
        description="Issuer URL used for discovery (e.g., https://cognito-idp.eu-west-1.amazonaws.com/eu-west-1_xxxx)",
        min_length=1,
    )

    OIDC_CLIENT_ID: str = Field(
        ...,
        description="Client ID registered with the identity provider",
        min_length=1,
    )

    OIDC_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret (optional for public clients)",
    )

    OIDC_REDIRECT_URI: Optional[str] = Field(
        None,
        description="Redirect URI registered with the provider (defaults to APP_ADDRESS/auth/callback)",
    )

    OIDC_SCOPE: str = Field(
        default="phone openid email",
        description="Scope requested on login",
    )

    OIDC_HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Upper bound for every call to the identity provider",
        gt=0,
        le=60,
    )

    OIDC_LOGOUT_URL: Optional[str] = Field(
        None,
        description="Hosted UI logout endpoint (e.g., https://<domain>.auth.<region>.amazoncognito.com/logout)",
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the provider JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    # =========================================================================
    # Application Address
    # =========================================================================

    APP_ADDRESS: str = Field(
        default="http://localhost:3000",
        description="Public base URL of this gateway (no trailing slash)",
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_SECRET: str = Field(
        ...,
        description="Secret key for signing the session cookie (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="session_id",
        description="Name of the session cookie",
    )

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=60 * 60 * 4,
        description="Session lifetime in seconds (cookie max-age and store TTL)",
        ge=60,
        le=60 * 60 * 24 * 7,
    )

    SESSION_COOKIE_SECURE: bool = Field(
        default=False,
        description="Set the Secure attribute on the session cookie (enable behind HTTPS)",
    )

    # =========================================================================
    # Callback Behaviour
    # =========================================================================

    CALLBACK_RESPONSE_MODE: str = Field(
        default="json",
        description="'json' returns tokens and user info, 'html' renders an auto-redirect page",
    )

    POST_LOGIN_REDIRECT_PATH: str = Field(
        default="/",
        description="Where the HTML callback page sends the browser",
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    PORT: int = Field(
        default=3000,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars not defined here
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def redirect_uri(self) -> str:
        """
        Redirect URI sent on login and on code exchange.

        Returns:
            OIDC_REDIRECT_URI if set, otherwise APP_ADDRESS/auth/callback.
        """
        if self.OIDC_REDIRECT_URI:
            return self.OIDC_REDIRECT_URI
        return f"{self.APP_ADDRESS}/auth/callback"

    @property
    def post_logout_redirect_uri(self) -> str:
        """Where the provider sends the browser after logout."""
        return f"{self.APP_ADDRESS}/"

    @property
    def discovery_url(self) -> str:
        """Well-known OpenID configuration URL for the issuer."""
        return well_known_url(self.OIDC_ISSUER_URL)

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        origins = [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]
        return origins

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_ISSUER_URL", "APP_ADDRESS")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """
        Validate that URLs use http(s) and strip the trailing slash.

        Raises:
            ValueError: If the URL does not start with http:// or https://
        """
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid URL: '{v}'. Expected an http:// or https:// URL"
            )
        return v.rstrip("/")

    @field_validator("CALLBACK_RESPONSE_MODE")
    @classmethod
    def validate_callback_mode(cls, v: str) -> str:
        allowed_modes = ["json", "html"]

        v = v.lower()
        if v not in allowed_modes:
            raise ValueError(
                f"CALLBACK_RESPONSE_MODE must be one of {allowed_modes}, got: {v}"
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        v = v.upper()
        if v not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def well_known_url(issuer_url: str) -> str:
    """OpenID configuration URL for an issuer, with or without trailing slash."""
    return f"{issuer_url.rstrip('/')}{WELL_KNOWN_PATH}"


def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup so misconfiguration shows up in the
    logs before the first login attempt.

    Returns:
        Dictionary with validation status and any warnings.
    """
    errors = []
    warnings = []

    if not settings.OIDC_CLIENT_SECRET:
        warnings.append("OIDC_CLIENT_SECRET is not set (required for confidential clients)")

    if not settings.redirect_uri.startswith(settings.APP_ADDRESS):
        warnings.append("Redirect URI does not point at APP_ADDRESS")

    if settings.APP_ADDRESS.startswith("https://") and not settings.SESSION_COOKIE_SECURE:
        warnings.append("APP_ADDRESS uses HTTPS but SESSION_COOKIE_SECURE is disabled")

    if settings.OIDC_ISSUER_URL.startswith("http://"):
        errors.append("OIDC_ISSUER_URL must use HTTPS outside of local development")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "redirect_uri": settings.redirect_uri,
        "session_max_age_seconds": settings.SESSION_MAX_AGE_SECONDS,
    }
