"""
Authentication helpers for the proxy service.
"""

from .service_key import AccessGate, SERVICE_KEY_HEADER

__all__ = [
    "AccessGate",
    "SERVICE_KEY_HEADER",
]
