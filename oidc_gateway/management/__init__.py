"""
Management Package
==================

Protected endpoints that operate on an authenticated session.

Main Components:
----------------
- routes.py: FastAPI router with /management/refresh and /management/userinfo

Usage:
------
    from oidc_gateway.management import management_router
    app.include_router(management_router)
"""

from .routes import management_router

__all__ = ["management_router"]
