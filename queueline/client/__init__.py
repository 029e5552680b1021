"""HTTP client for kiosks and staff screens."""

from .api import USER_POLL_INTERVAL, APIError, QueueAPIClient

__all__ = ["APIError", "QueueAPIClient", "USER_POLL_INTERVAL"]
