"""Route modules exposed by the API package."""

from . import health, metrics, service_requests

__all__ = ["health", "metrics", "service_requests"]
