"""
Service credential check for the proxy route.
"""

from typing import Mapping, Optional

from shared.config import redact
from shared.logging import get_logger
from shared.errors import AuthenticationError
from ..store.redis_store import RedisStore

SERVICE_KEY_HEADER = "service-key"


def credential_key(credential: str) -> str:
    return f"key-{credential}"


def first_service_key(headers: Mapping[str, str]) -> Optional[str]:
    """Return the first ``service-key`` value, matching the name case-insensitively."""
    getlist = getattr(headers, "getlist", None)
    if getlist is not None:
        values = getlist(SERVICE_KEY_HEADER)
        return values[0] if values else None

    for name, value in headers.items():
        if name.lower() == SERVICE_KEY_HEADER:
            return value
    return None


class AccessGate:
    """Admits a request when its service credential is registered in the store."""

    def __init__(self, store: RedisStore):
        self.store = store
        self.logger = get_logger("proxy.access_gate")

    async def authorize(self, headers: Mapping[str, str]) -> str:
        """Return the accepted credential or raise :class:`AuthenticationError`."""
        credential = first_service_key(headers)
        if not credential:
            self.logger.warning("Service key header missing")
            raise AuthenticationError(f"{SERVICE_KEY_HEADER} header not found")

        if not await self.store.exists(credential_key(credential)):
            self.logger.warning("Unknown service key", service_key=redact(credential))
            raise AuthenticationError("Invalid service key")

        return credential
