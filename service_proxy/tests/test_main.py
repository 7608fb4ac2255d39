"""
Unit tests for the proxy service routes.
"""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
import fakeredis
from fastapi.testclient import TestClient

from service_proxy.app.main import GatewayService, create_app
from shared.config import ProxyConfig

UPSTREAM_URL = "https://upstream.example/v1/completions"


def make_config(**overrides):
    settings = {"upstream_url": UPSTREAM_URL, "upstream_api_key": "sk-test-secret"}
    settings.update(overrides)
    return ProxyConfig(**settings)


class TestGatewayService:
    """Test cases for the proxy routes."""

    @pytest.fixture
    def server(self):
        return fakeredis.FakeServer()

    @pytest.fixture
    def raw(self, server):
        """Synchronous client for seeding and inspecting the store."""
        return fakeredis.FakeRedis(server=server, decode_responses=True)

    @pytest.fixture
    def upstream_calls(self):
        return []

    @pytest.fixture
    def transport(self, upstream_calls):
        """Mock completion API answering with a fixed completion."""

        def handler(request: httpx.Request) -> httpx.Response:
            upstream_calls.append(request)
            return httpx.Response(
                200,
                content=b'{"choices":[{"text":"Hello!"}]}',
                headers={"Content-Type": "application/json"},
            )

        return httpx.MockTransport(handler)

    @pytest.fixture
    def config(self):
        return make_config()

    @pytest.fixture
    def app(self, server, transport, config):
        """Create FastAPI app on a fake Redis server."""
        client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
        return create_app(config, redis_client=client, transport=transport)

    @pytest.fixture
    def client(self, app):
        """Create test client."""
        with TestClient(app) as client:
            yield client

    def test_service_initialization(self, app):
        """Test service wiring."""
        service = app.state.gateway_service

        assert isinstance(service, GatewayService)
        assert service.service_name == "proxy"
        assert service.forwarder.upstream_url == UPSTREAM_URL
        assert service.ledger.allow_negative_balance is True

    def test_health_check(self, client):
        """Test health check endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "proxy"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"redis": "ok"}

    def test_metrics_endpoint(self, client):
        """Test metrics endpoint."""
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "balance_adjustments_total" in response.text

    def test_get_balance(self, client, raw):
        """Test reading a balance."""
        raw.set("user-42", "17.250000")

        response = client.get("/balance/42")

        assert response.status_code == 200
        assert response.json() == {"ID": 42, "Balance": 17.25}

    def test_get_balance_missing_user(self, client):
        """Test that an unknown user is a not-found envelope."""
        response = client.get("/balance/999", headers={"X-Request-ID": "req-123"})

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "NOT_FOUND"
        assert data["request_id"] == "req-123"
        assert response.headers["X-Request-ID"] == "req-123"

    def test_get_balance_requires_get(self, client, raw):
        raw.set("user-1", "1.000000")

        response = client.post("/balance/1")

        assert response.status_code == 405

    @pytest.mark.parametrize("path", ["/balance/abc", "/balance-topup/abc/1", "/balance-deduct/1.5/1"])
    def test_invalid_user_id(self, client, path):
        """Test that a non-integer id is a format error."""
        response = client.get(path)

        assert response.status_code == 400
        assert response.json()["code"] == "FORMAT_ERROR"

    @pytest.mark.parametrize("user_id", ["1_000", "%201", "%EF%BC%91", "0x10"])
    def test_user_id_must_be_plain_digits(self, client, raw, user_id):
        """Test that underscores, whitespace and non-ASCII digits are rejected."""
        raw.set("user-1000", "1.000000")
        raw.set("user-1", "1.000000")

        response = client.get(f"/balance/{user_id}")

        assert response.status_code == 400
        assert response.json()["code"] == "FORMAT_ERROR"

    def test_signed_user_id_is_accepted(self, client, raw):
        raw.set("user-7", "3.000000")

        assert client.get("/balance/+7").json() == {"ID": 7, "Balance": 3.0}

    @pytest.mark.parametrize("amount", ["abc", "nan", "inf", "-5", "1_0", "1e999", "%201"])
    def test_invalid_amount(self, client, raw, amount):
        """Test that a bad amount is rejected and the balance is unchanged."""
        raw.set("user-1", "10.000000")

        response = client.get(f"/balance-topup/1/{amount}")

        assert response.status_code == 400
        assert response.json()["code"] == "FORMAT_ERROR"
        assert raw.get("user-1") == "10.000000"

    @pytest.mark.parametrize("method", ["get", "post", "put", "delete"])
    def test_topup_any_method(self, client, raw, method):
        """Test that top-up accepts any method and returns the updated user."""
        raw.set("user-1", "10.000000")

        response = getattr(client, method)("/balance-topup/1/2.5")

        assert response.status_code == 200
        assert response.json() == {"ID": 1, "Balance": 12.5}
        assert raw.get("user-1") == "12.500000"

    def test_topup_creates_user(self, client, raw):
        """Test that the first top-up creates the balance."""
        response = client.post("/balance-topup/5/12")

        assert response.status_code == 200
        assert response.json() == {"ID": 5, "Balance": 12.0}
        assert client.get("/balance/5").json()["Balance"] == 12.0

    def test_deduct(self, client, raw):
        """Test debiting a balance."""
        raw.set("user-1", "10.000000")

        response = client.post("/balance-deduct/1/4")

        assert response.status_code == 200
        assert response.json() == {"ID": 1, "Balance": 6.0}

    def test_deduct_missing_user(self, client, raw):
        """Test that a debit on an unknown user creates nothing."""
        response = client.post("/balance-deduct/77/1")

        assert response.status_code == 404
        assert raw.exists("user-77") == 0

    def test_corrupt_stored_balance(self, client, raw):
        """Test that a corrupt stored value is a server-side format error."""
        raw.set("user-1", "abc")

        response = client.get("/balance/1")

        assert response.status_code == 500
        assert response.json()["code"] == "FORMAT_ERROR"

    def test_overdraft_guard(self, server, transport, raw):
        """Test that the floor guard maps to 402."""
        redis_client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
        app = create_app(make_config(allow_negative_balance=False), redis_client=redis_client, transport=transport)
        raw.set("user-1", "1.000000")

        with TestClient(app) as client:
            response = client.post("/balance-deduct/1/5")

        assert response.status_code == 402
        assert response.json()["code"] == "INSUFFICIENT_BALANCE"
        assert raw.get("user-1") == "1.000000"

    def test_legacy_error_status(self, server, transport):
        """Test that legacy mode keeps the envelope but answers 200."""
        redis_client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
        app = create_app(make_config(legacy_error_status=True), redis_client=redis_client, transport=transport)

        with TestClient(app) as client:
            missing = client.get("/balance/1")
            unauthorized = client.post("/chatgpt", content=b"hello")

        assert missing.status_code == 200
        assert missing.json()["code"] == "NOT_FOUND"
        assert unauthorized.status_code == 200
        assert unauthorized.json()["code"] == "AUTHENTICATION_ERROR"

    def test_proxy_authorized(self, client, raw, upstream_calls):
        """Test that an authorized prompt is relayed and the reply returned verbatim."""
        raw.set("key-abc123", "1")

        response = client.post("/chatgpt", content=b"hello", headers={"service-key": "abc123"})

        assert response.status_code == 200
        assert response.content == b'{"choices":[{"text":"Hello!"}]}'
        assert response.headers["content-type"] == "application/json"

        assert len(upstream_calls) == 1
        sent = upstream_calls[0]
        assert json.loads(sent.content)["prompt"] == "hello"
        assert sent.headers["authorization"] == "Bearer sk-test-secret"
        assert "service-key" not in sent.headers

    def test_proxy_missing_key(self, client, upstream_calls):
        """Test that a request without a credential never reaches upstream."""
        response = client.post("/chatgpt", content=b"hello")

        assert response.status_code == 401
        data = response.json()
        assert data["code"] == "AUTHENTICATION_ERROR"
        assert data["message"] == "service-key header not found"
        assert upstream_calls == []

    def test_proxy_unknown_key(self, client, upstream_calls):
        response = client.post("/chatgpt", content=b"hello", headers={"service-key": "nope"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid service key"
        assert upstream_calls == []

    def test_proxy_does_not_touch_balances(self, client, raw):
        """Test that proxying neither reads nor charges a balance."""
        raw.set("key-abc123", "1")
        raw.set("user-1", "0.000000")

        response = client.request("GET", "/chatgpt", content=b"hi", headers={"service-key": "abc123"})

        assert response.status_code == 200
        assert raw.get("user-1") == "0.000000"

    def test_proxy_upstream_unreachable(self, server, raw):
        """Test that a transport failure becomes a 500 envelope."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        redis_client = fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
        app = create_app(make_config(), redis_client=redis_client, transport=httpx.MockTransport(handler))
        raw.set("key-abc123", "1")

        with TestClient(app) as client:
            response = client.post("/chatgpt", content=b"hello", headers={"service-key": "abc123"})

        assert response.status_code == 500
        data = response.json()
        assert data["code"] == "INTERNAL_ERROR"
        assert data["details"]["stage"] == "send_request"

    def test_unexpected_error_envelope_keeps_request_id(self, app):
        """Test that the catch-all 500 envelope names the request it belongs to."""
        service = app.state.gateway_service
        service.ledger.get_balance = AsyncMock(side_effect=RuntimeError("boom"))

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/balance/1", headers={"X-Request-ID": "req-500"})

        assert response.status_code == 500
        data = response.json()
        assert data["code"] == "INTERNAL_ERROR"
        assert data["message"] == "Internal server error"
        assert data["request_id"] == "req-500"
