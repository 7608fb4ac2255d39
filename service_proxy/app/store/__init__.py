"""
Store package for the proxy service.

Wraps the shared Redis client that durably owns balances and service
credentials.
"""

from .redis_store import RedisStore

__all__ = ["RedisStore"]
