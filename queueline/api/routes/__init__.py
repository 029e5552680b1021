"""Route modules exposed by the API package."""

from . import admin, ping, profile, tickets

__all__ = ["admin", "ping", "profile", "tickets"]
