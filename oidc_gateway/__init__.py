"""
OIDC Gateway

A small OpenID Connect relying-party gateway: it runs the authorization
code flow against a managed identity provider, keeps the resulting tokens
in a server-side session and exposes login, callback, logout, userinfo and
refresh endpoints.
"""

__version__ = "1.0.0"
