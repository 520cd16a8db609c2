"""
End-to-end tests for the gateway application built by create_app().

The upstream RapidAPI call and the x402 facilitator are mocked.
"""
import json
from pathlib import Path
from base64 import b64decode, b64encode
from unittest.mock import patch, AsyncMock, MagicMock

import pytest
import requests
from fastapi.testclient import TestClient
from x402.types import SettleResponse, VerifyResponse

from app.core.catalog import ConfigValidationError
from app.core.config import Settings
from app.main import create_app
from app.services.rapidapi import ProxyResult
from app.services.usage_ledger import UsageLedger
from app.x402.middleware import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER


def _settings(**overrides) -> Settings:
    values = {
        "RAPIDAPI_KEY": "test-api-key",
        "X402_ENABLED": False,
        "X402_FACILITATOR_URL": "https://facilitator.example",
    }
    values.update(overrides)
    return Settings(**values)


PAYER = "0x1234567890abcdef1234567890abcdef12345678"


def _payment_header(amount: str) -> str:
    """Create a base64-encoded exact-scheme payment header."""
    payload = {
        "x402Version": 1,
        "scheme": "exact",
        "network": "base-sepolia",
        "payload": {
            "signature": "0x" + "ab" * 65,
            "authorization": {
                "from": PAYER,
                "to": "0xABC123",
                "value": amount,
                "validAfter": "0",
                "validBefore": "9999999999",
                "nonce": "0x" + "00" * 32,
            }
        }
    }
    return b64encode(json.dumps(payload).encode()).decode()


def _facilitator() -> MagicMock:
    facilitator = MagicMock()
    facilitator.verify = AsyncMock(return_value=VerifyResponse(is_valid=True, payer=PAYER))
    facilitator.settle = AsyncMock(return_value=SettleResponse(
        success=True,
        transaction="0x" + "cd" * 32,
        network="base-sepolia",
    ))
    return facilitator


@pytest.fixture
def ledger() -> UsageLedger:
    return UsageLedger()


@pytest.fixture
def client(app_config, ledger) -> TestClient:
    """Gateway in test mode (payment bypass)."""
    return TestClient(create_app(_settings(), config=app_config, ledger=ledger))


class TestCreateApp:

    def test_missing_api_key_refuses_to_start(self, app_config):
        with pytest.raises(RuntimeError, match="RAPIDAPI_KEY"):
            create_app(_settings(RAPIDAPI_KEY=None), config=app_config)

    def test_loads_catalog_from_path(self, tmp_path, catalog_data):
        path = tmp_path / "services.json"
        path.write_text(json.dumps(catalog_data))

        app = create_app(_settings(SERVICES_CONFIG_PATH=str(path)))

        assert len(app.state.catalog.services) == 2

    def test_invalid_catalog_refuses_to_start(self, tmp_path, catalog_data):
        del catalog_data["payTo"]
        path = tmp_path / "services.json"
        path.write_text(json.dumps(catalog_data))

        with pytest.raises(ConfigValidationError, match="payTo"):
            create_app(_settings(SERVICES_CONFIG_PATH=str(path)))

    def test_bundled_catalog_serves_seven_routes(self):
        catalog_path = Path(__file__).parent.parent / "services.json"
        client = TestClient(create_app(_settings(SERVICES_CONFIG_PATH=str(catalog_path))))

        catalog = client.get("/catalog").json()

        assert len(catalog) == 7
        assert "/instagram/profile" in [entry["path"] for entry in catalog]

    def test_fresh_ledger_per_app(self, app_config):
        first = create_app(_settings(), config=app_config)
        second = create_app(_settings(), config=app_config)
        assert first.state.ledger is not second.state.ledger


class TestHealthAndCatalog:

    def test_health_reports_test_mode(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "testMode": True}

    def test_health_without_bypass(self, app_config):
        client = TestClient(create_app(_settings(X402_ENABLED=True), config=app_config, facilitator_client=MagicMock()))
        assert client.get("/health").json() == {"status": "ok"}

    def test_catalog_lists_services_in_order(self, client):
        response = client.get("/catalog")

        assert response.status_code == 200
        assert response.json() == [
            {
                "path": "/translate",
                "method": "POST",
                "price": "$0.001",
                "description": "Translate text via Google Translate",
            },
            {
                "path": "/weather",
                "method": "GET",
                "price": "$0.002",
                "description": "Current weather data",
            },
        ]

    def test_catalog_does_not_expose_backends(self, client):
        assert "rapidapi.com" not in client.get("/catalog").text


class TestPaymentGate:
    """Paid routes with payment enforcement on."""

    @patch("app.api.endpoints.proxy.proxy_to_rapidapi")
    def test_unpaid_request_gets_402(self, mock_proxy, app_config, ledger):
        client = TestClient(create_app(
            _settings(X402_ENABLED=True), config=app_config, ledger=ledger, facilitator_client=MagicMock()
        ))

        response = client.get("/weather?q=Tokyo")

        assert response.status_code == 402
        mock_proxy.assert_not_called()
        assert ledger.recent() == []

    @patch("app.api.endpoints.proxy.proxy_to_rapidapi")
    def test_paid_post_is_proxied_recorded_and_settled(self, mock_proxy, app_config, ledger):
        """Verify, forward the JSON body upstream, record usage, then settle."""
        mock_proxy.return_value = ProxyResult(status=200, data={"ok": 1})
        facilitator = _facilitator()
        client = TestClient(create_app(
            _settings(X402_ENABLED=True), config=app_config, ledger=ledger, facilitator_client=facilitator
        ))

        response = client.post(
            "/translate",
            json={"q": "hi"},
            headers={X_PAYMENT_HEADER: _payment_header("1000")},
        )

        assert response.status_code == 200
        assert response.json() == {"ok": 1}

        backend, _, _, body = mock_proxy.call_args.args
        assert backend.host == "google-translate1.p.rapidapi.com"
        assert body == {"q": "hi"}

        entries = ledger.recent()
        assert len(entries) == 1
        assert entries[0].path == "/translate"
        assert entries[0].statusCode == 200

        facilitator.verify.assert_awaited_once()
        facilitator.settle.assert_awaited_once()
        settlement = json.loads(b64decode(response.headers[X_PAYMENT_RESPONSE_HEADER]))
        assert settlement["success"] is True
        assert settlement["transaction"] == "0x" + "cd" * 32

    def test_free_routes_need_no_payment(self, app_config):
        client = TestClient(create_app(
            _settings(X402_ENABLED=True), config=app_config, facilitator_client=MagicMock()
        ))

        assert client.get("/catalog").status_code == 200
        assert client.get("/stats").status_code == 200
        assert client.get("/.well-known/x402").status_code == 200


class TestLogsAndStats:
    """Usage endpoints after proxied calls."""

    @patch("app.api.endpoints.proxy.proxy_to_rapidapi")
    def test_logs_and_stats_after_calls(self, mock_proxy, client):
        mock_proxy.return_value = ProxyResult(status=200, data={"ok": True})

        client.get("/weather?q=Tokyo")
        client.post("/translate", json={"q": "hi"})
        client.get("/weather?q=Paris")

        logs = client.get("/logs").json()
        assert [entry["path"] for entry in logs] == ["/weather", "/translate", "/weather"]
        assert logs[0]["backendHost"] == "weatherapi-com.p.rapidapi.com"
        assert logs[0]["statusCode"] == 200

        stats = client.get("/stats").json()
        assert stats["totalRequests"] == 3
        assert stats["totalCost"] == "0.0050"
        assert stats["byEndpoint"][0]["endpoint"] == "GET /weather"
        assert stats["byEndpoint"][0]["count"] == 2
        assert {h["host"] for h in stats["byHost"]} == {
            "weatherapi-com.p.rapidapi.com",
            "google-translate1.p.rapidapi.com",
        }

    @patch("app.api.endpoints.proxy.proxy_to_rapidapi")
    def test_logs_limit(self, mock_proxy, client):
        mock_proxy.return_value = ProxyResult(status=200, data={})
        for _ in range(5):
            client.get("/weather")

        assert len(client.get("/logs?limit=2").json()) == 2
        assert len(client.get("/logs?limit=abc").json()) == 5

    @patch("app.api.endpoints.proxy.proxy_to_rapidapi")
    def test_failed_call_logged_as_502(self, mock_proxy, client):
        mock_proxy.side_effect = requests.exceptions.ConnectTimeout("upstream.internal:443")

        response = client.get("/weather")

        assert response.status_code == 502
        assert "upstream.internal" not in response.text
        assert client.get("/logs").json()[0]["statusCode"] == 502

    @patch("app.api.endpoints.proxy.proxy_to_rapidapi")
    def test_delete_logs_clears(self, mock_proxy, client):
        mock_proxy.return_value = ProxyResult(status=200, data={})
        client.get("/weather")

        response = client.delete("/logs")

        assert response.status_code == 200
        assert response.json() == {"status": "cleared"}
        assert client.get("/logs").json() == []
        assert client.get("/stats").json()["totalRequests"] == 0


class TestDiscoveryEndpoint:

    def test_uses_request_base_url(self, client):
        body = client.get("/.well-known/x402").json()

        assert body["pagination"] == {"limit": 100, "offset": 0, "total": 2}
        assert body["resources"][0]["resource"] == "http://testserver/translate"
        assert body["resources"][0]["accepts"][0]["maxAmountRequired"] == "1"

    def test_uses_public_base_url(self, app_config):
        client = TestClient(create_app(
            _settings(PUBLIC_BASE_URL="https://api.example.com"), config=app_config
        ))

        body = client.get("/.well-known/x402").json()

        assert body["resources"][1]["resource"] == "https://api.example.com/weather"

    def test_pagination_query(self, client):
        body = client.get("/.well-known/x402?limit=1&offset=1").json()

        assert len(body["resources"]) == 1
        assert body["resources"][0]["description"] == "Current weather data"
        assert body["pagination"] == {"limit": 1, "offset": 1, "total": 2}

    def test_offset_past_end(self, client):
        body = client.get("/.well-known/x402?offset=10").json()
        assert body["resources"] == []
        assert body["pagination"]["total"] == 2
