"""External CRM API client."""

from .client import ApiError, TeamleaderClient

__all__ = ["ApiError", "TeamleaderClient"]
