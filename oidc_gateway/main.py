"""
FastAPI Gateway Application Factory
===================================

Entry point for the OIDC relying-party gateway. It authenticates end users
against the identity provider, keeps their tokens in a server-side session
and exposes a small API around that session.

Routers:
    - /auth/*        : Login, callback and logout
    - /management/*  : Token refresh and userinfo (session or Bearer token)
    - /health        : Health check endpoint

Environment Variables Required:
    - OIDC_ISSUER_URL: Issuer used for discovery
    - OIDC_CLIENT_ID: Client ID registered with the provider
    - SESSION_SECRET: Secret for signing the session cookie (32+ chars)

Optional:
    - OIDC_CLIENT_SECRET, OIDC_REDIRECT_URI, OIDC_LOGOUT_URL, APP_ADDRESS
    - CALLBACK_RESPONSE_MODE (json | html), ALLOWED_ORIGINS, LOG_LEVEL

Running the Service:
    Development:
        uvicorn oidc_gateway.main:create_app --factory --reload --port 3000

    Production:
        uvicorn oidc_gateway.main:create_app --factory --host 0.0.0.0 --port 3000
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from oidc_gateway import __version__
from oidc_gateway.auth.flow import AuthFlow
from oidc_gateway.auth.routes import auth_router
from oidc_gateway.config import Settings, get_settings, validate_configuration
from oidc_gateway.logging_middleware import ResponseSizeMiddleware
from oidc_gateway.management.routes import management_router
from oidc_gateway.models import ErrorResponse
from oidc_gateway.oidc.client import OIDCClient, discover
from oidc_gateway.oidc.tokens import IdTokenVerifier
from oidc_gateway.sessions.middleware import SessionCookieMiddleware, get_session_id
from oidc_gateway.sessions.store import InMemorySessionStore, SessionStore

logger = logging.getLogger("oidc_gateway.main")


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


async def build_auth_flow(
    settings: Settings,
    http_client: httpx.AsyncClient,
    store: SessionStore,
) -> AuthFlow:
    """
    Discover the provider and build the auth flow around it.

    Raises:
        DiscoveryError: If the provider cannot be discovered
    """
    logger.info("Discovering identity provider", extra={"discovery_url": settings.discovery_url})
    metadata = await discover(settings.OIDC_ISSUER_URL, http_client)

    verifier = IdTokenVerifier(
        jwks_uri=metadata.jwks_uri,
        issuer=metadata.issuer,
        client_id=settings.OIDC_CLIENT_ID,
        http_client=http_client,
        cache_seconds=settings.JWKS_CACHE_SECONDS,
    )
    client = OIDCClient(
        metadata=metadata,
        client_id=settings.OIDC_CLIENT_ID,
        client_secret=settings.OIDC_CLIENT_SECRET,
        redirect_uri=settings.redirect_uri,
        http_client=http_client,
        id_token_verifier=verifier,
    )
    return AuthFlow(client=client, store=store, settings=settings)


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    store: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (provider discovery before serving traffic)
        - Session cookie, request logging and CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings override (defaults to get_settings())
        http_client: Shared provider HTTP client (created and closed here if omitted)
        store: Session store (defaults to an in-memory store)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    store = store or InMemorySessionStore(ttl_seconds=settings.SESSION_MAX_AGE_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: configure logging, validate configuration, discover the
        provider and publish the auth flow on app.state.

        Shutdown: close the provider HTTP client if it was created here.
        """
        setup_logging(settings.LOG_LEVEL)

        report = validate_configuration(settings)
        for warning in report["warnings"]:
            logger.warning(f"Configuration warning: {warning}")
        for error in report["errors"]:
            logger.error(f"Configuration error: {error}")

        owns_client = http_client is None
        client = http_client or httpx.AsyncClient(timeout=settings.OIDC_HTTP_TIMEOUT_SECONDS)

        try:
            app.state.auth_flow = await build_auth_flow(settings, client, store)
        except Exception:
            logger.critical("Identity provider discovery failed, refusing to start", exc_info=True)
            if owns_client:
                await client.aclose()
            raise

        logger.info(
            "Gateway started successfully",
            extra={
                "service": "oidc-gateway",
                "version": __version__,
                "issuer": settings.OIDC_ISSUER_URL,
            }
        )

        yield

        logger.info("Shutting down gateway")
        app.state.auth_flow = None
        if owns_client:
            await client.aclose()
        logger.info("Gateway shutdown complete")

    app = FastAPI(
        title="OIDC Gateway",
        description="Session-backed OpenID Connect relying party",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.settings = settings
    app.state.session_store = store
    app.state.auth_flow = None

    # Session cookie resolution runs innermost, CORS outermost
    app.add_middleware(SessionCookieMiddleware, settings=settings)
    app.add_middleware(ResponseSizeMiddleware)

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["*"],
        )

    # Mount routers
    app.include_router(auth_router)
    app.include_router(management_router)

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check(request: Request) -> Dict[str, Any]:
        """
        Health check endpoint.

        `ready` is false until provider discovery has completed.
        """
        return {
            "status": "ok",
            "service": "oidc-gateway",
            "version": __version__,
            "ready": request.app.state.auth_flow is not None,
        }

    # Root endpoint
    @app.get("/", tags=["System"])
    async def root(
        request: Request,
        session_id: str = Depends(get_session_id),
    ) -> Dict[str, Any]:
        """
        Root endpoint with service information and the session's login status.
        """
        session = await request.app.state.session_store.get(session_id)
        return {
            "service": "oidc-gateway",
            "version": __version__,
            "authenticated": session.is_authenticated,
            "endpoints": {
                "login": "/auth/login",
                "logout": "/auth/logout",
                "userinfo": "/management/userinfo",
                "refresh": "/management/refresh",
                "health": "/health",
            }
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        error = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            detail=str(exc) if settings.LOG_LEVEL == "DEBUG" else None,
        )
        return JSONResponse(status_code=500, content=error.model_dump())

    return app


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "oidc_gateway.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
