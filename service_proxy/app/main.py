"""
Metered completion proxy service.
"""

import math
import re
from typing import Dict, Optional

import httpx
import redis.asyncio as redis
from fastapi import Request, Response

from shared.base_service import BaseService
from shared.config import ProxyConfig, get_config, redact
from shared.errors import FormatError
from shared.logging import set_user_context
from .adapters.completion_client import ProxyForwarder
from .auth.service_key import AccessGate
from .ledger.balance import BalanceLedger, Direction
from .store.redis_store import RedisStore

ANY_METHOD = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

# ASCII digits only; no underscores, whitespace or other numerals.
USER_ID_PATTERN = re.compile(r"[+-]?[0-9]+")
AMOUNT_PATTERN = re.compile(r"[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?")


class GatewayService(BaseService):
    """Balance routes and the metered proxy route behind one FastAPI app."""

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        redis_client: Optional[redis.Redis] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("proxy", config or get_config())

        if redis_client is not None:
            self.store = RedisStore(redis_client, metrics=self.metrics)
        else:
            self.store = RedisStore.from_url(self.config.redis_url, metrics=self.metrics)

        self.ledger = BalanceLedger(
            self.store,
            metrics=self.metrics,
            allow_negative_balance=self.config.allow_negative_balance,
        )
        self.access_gate = AccessGate(self.store)
        self.forwarder = ProxyForwarder(
            self.config.upstream_url,
            self.config.upstream_api_key,
            model=self.config.completion_model,
            temperature=self.config.completion_temperature,
            max_tokens=self.config.completion_max_tokens,
            timeout=self.config.upstream_timeout_seconds,
            metrics=self.metrics,
            transport=transport,
        )

        self.logger.info(
            "Proxy configured",
            upstream_url=self.config.upstream_url,
            upstream_api_key=redact(self.config.upstream_api_key),
            allow_negative_balance=self.config.allow_negative_balance,
            legacy_error_status=self.config.legacy_error_status,
        )

        self._setup_balance_routes()
        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def on_startup(self):
        await self.store.start()

    async def on_shutdown(self):
        await self.store.stop()

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"redis": "ok" if await self.store.ping() else "error"}

    def _parse_user_id(self, value: str) -> int:
        if not USER_ID_PATTERN.fullmatch(value):
            raise FormatError(f"Invalid user id: {value}", details={"id": value})
        user_id = int(value)
        set_user_context(str(user_id))
        return user_id

    def _parse_amount(self, value: str) -> float:
        if not AMOUNT_PATTERN.fullmatch(value):
            raise FormatError(f"Invalid amount: {value}", details={"amount": value})
        amount = float(value)
        if not math.isfinite(amount):
            raise FormatError(f"Invalid amount: {value}", details={"amount": value})
        return amount

    def _setup_balance_routes(self):
        """Set up balance read and adjustment routes."""

        @self.app.get("/balance/{user_id}")
        async def get_balance(user_id: str):
            """Return the user's current balance."""
            user = await self.ledger.get_balance(self._parse_user_id(user_id))
            return user.to_dict()

        @self.app.api_route("/balance-topup/{user_id}/{amount}", methods=ANY_METHOD)
        async def top_up_balance(user_id: str, amount: str):
            """Credit the user's balance, creating it on first top-up."""
            user = await self.ledger.adjust(
                self._parse_user_id(user_id),
                self._parse_amount(amount),
                Direction.CREDIT,
            )
            return user.to_dict()

        @self.app.api_route("/balance-deduct/{user_id}/{amount}", methods=ANY_METHOD)
        async def deduct_balance(user_id: str, amount: str):
            """Debit the user's balance."""
            user = await self.ledger.adjust(
                self._parse_user_id(user_id),
                self._parse_amount(amount),
                Direction.DEBIT,
            )
            return user.to_dict()

    def _setup_proxy_routes(self):
        """Set up the metered proxy route."""

        @self.app.api_route("/chatgpt", methods=ANY_METHOD)
        async def proxy_completion(request: Request):
            """Check the service key, then relay the body to the completion API."""
            await self.access_gate.authorize(request.headers)
            upstream = await self.forwarder.forward_request(request)
            return Response(
                content=upstream.content,
                status_code=upstream.status_code,
                media_type=upstream.content_type,
            )


def create_app(
    config: Optional[ProxyConfig] = None,
    redis_client: Optional[redis.Redis] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
):
    """Create FastAPI application."""
    service = GatewayService(config, redis_client=redis_client, transport=transport)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
