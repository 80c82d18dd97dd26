"""External API clients."""

from .hubspot import HubSpotClient

__all__ = ["HubSpotClient"]
