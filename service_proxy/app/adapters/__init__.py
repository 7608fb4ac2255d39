"""
Adapters package for the proxy service.

Contains the HTTP client for the upstream completion API. The adapter
encapsulates:

- The fixed completion payload shape
- Header copying and credential substitution
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .completion_client import ProxyForwarder, UpstreamResponse

__all__ = [
    "ProxyForwarder",
    "UpstreamResponse",
]
