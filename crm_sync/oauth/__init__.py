"""OAuth 2.0 support for the external CRM."""

from .client import OAuthClient, OAuthError, OAuthTokens

__all__ = ["OAuthClient", "OAuthError", "OAuthTokens"]
