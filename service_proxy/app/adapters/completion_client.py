"""
Upstream completion API client for the proxy.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx
from fastapi import Request

from shared.logging import get_logger
from shared.errors import InternalError
from shared.metrics import MetricsCollector

# Connection-level headers that describe the inbound hop, not the payload.
HOP_HEADERS = {"host", "content-length", "connection", "transfer-encoding", "keep-alive"}
# Dropped from the inbound request; the last two are re-set for the upstream.
REPLACED_HEADERS = {"service-key", "authorization", "content-type"}


def raw_header_pairs(headers: Mapping[str, str]) -> List[Tuple[bytes, bytes]]:
    """Header pairs as bytes, from Starlette/httpx headers or a plain mapping."""
    raw = getattr(headers, "raw", None)
    if raw is not None:
        return list(raw)
    return [(name.encode("latin-1"), value.encode("utf-8")) for name, value in headers.items()]


@dataclass
class UpstreamResponse:
    status_code: int
    content: bytes
    content_type: Optional[str] = None


class ProxyForwarder:
    """Relays a prompt to the upstream completion API and returns its reply verbatim.

    One attempt per call. Every failure becomes an :class:`InternalError`
    whose ``details["stage"]`` names the step that failed.
    """

    def __init__(
        self,
        upstream_url: str,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        temperature: float = 1.0,
        max_tokens: int = 100,
        timeout: float = 10.0,
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.upstream_url = upstream_url
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.metrics = metrics
        self._transport = transport
        self.logger = get_logger("proxy.completion_client")

    def build_payload(self, body: bytes) -> Dict[str, Any]:
        return {
            "prompt": body.decode("utf-8", errors="replace"),
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    def build_headers(self, headers: Mapping[str, str]) -> List[Tuple[bytes, bytes]]:
        """Copy inbound headers as raw pairs, then pin the upstream credential and JSON content type.

        Repeated headers keep every value, and values go out as the bytes that
        arrived.
        """
        upstream_headers: List[Tuple[bytes, bytes]] = []
        for name, value in raw_header_pairs(headers):
            lowered = name.decode("latin-1").lower()
            if lowered in HOP_HEADERS or lowered in REPLACED_HEADERS:
                continue
            upstream_headers.append((name, value))
        upstream_headers.append((b"Authorization", f"Bearer {self.api_key}".encode("latin-1")))
        upstream_headers.append((b"Content-Type", b"application/json"))
        return upstream_headers

    async def forward_request(self, request: Request) -> UpstreamResponse:
        """Read the inbound body and forward it."""
        try:
            body = await request.body()
        except Exception as e:
            raise self._failure("read_request", "Error reading request body", e) from e
        return await self.forward(body, request.headers)

    async def forward(self, body: bytes, headers: Mapping[str, str]) -> UpstreamResponse:
        try:
            content = json.dumps(self.build_payload(body)).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise self._failure("encode_payload", "Error creating request payload", e) from e

        start_time = time.time()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                upstream_request = client.build_request(
                    "POST",
                    self.upstream_url,
                    content=content,
                    headers=self.build_headers(headers),
                )
            except (httpx.InvalidURL, httpx.UnsupportedProtocol, ValueError, TypeError) as e:
                raise self._failure("build_request", "Error creating API request", e) from e

            try:
                response = await client.send(upstream_request, stream=True)
            except httpx.HTTPError as e:
                raise self._failure("send_request", "Error sending API request", e) from e

            try:
                payload = await response.aread()
            except httpx.HTTPError as e:
                raise self._failure("read_response", "Error reading API response", e) from e
            finally:
                await response.aclose()

        duration = time.time() - start_time
        if self.metrics:
            self.metrics.increment_counter("upstream_requests_total", status_code=str(response.status_code))
            self.metrics.observe_histogram("upstream_request_duration_seconds", duration)
            self.metrics.record_business_event("proxy_forwarded")

        self.logger.info(
            "Upstream response relayed",
            status_code=response.status_code,
            bytes=len(payload),
            duration_ms=round(duration * 1000, 2)
        )
        return UpstreamResponse(
            status_code=response.status_code,
            content=payload,
            content_type=response.headers.get("content-type"),
        )

    def _failure(self, stage: str, message: str, error: Exception) -> InternalError:
        self.logger.error(message, stage=stage, error=str(error))
        if self.metrics:
            self.metrics.increment_counter("upstream_requests_total", status_code="error")
        return InternalError(message, details={"stage": stage, "error": str(error)})
