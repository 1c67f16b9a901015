"""Unit tests for x402_custody.client."""

import json

import httpx
import pytest

from x402_custody.client import X402PaymentClient, extract_accepts
from x402_custody.encoding import encode_payment_response_header
from x402_custody.errors import ProtocolViolationError
from x402_custody.paywall import PAYMENT_HEADER, PAYMENT_RESPONSE_HEADER
from x402_custody.payer import PayerRule

REQUIREMENT = {
    "scheme": "exact",
    "network": "base-sepolia",
    "maxAmountRequired": "10000",
    "resource": "https://api.example.com/data",
    "description": "",
    "mimeType": "application/json",
    "payTo": "0x209693Bc6afc0C5328bA36FaF03C514EF312287C",
    "maxTimeoutSeconds": 60,
    "asset": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    "extra": {"name": "USDC", "version": "2"},
}
RULES = [PayerRule("base-sepolia:usdc", "wallet", "0x" + "11" * 32)]


# =============================================================================
# Helpers
# =============================================================================


class FakeSelection:
    def __init__(self, requirement):
        self.requirement = requirement


class FakePayment:
    def __init__(self, requirement):
        self.payment_header = "cGF5bWVudA=="
        self.selection = FakeSelection(requirement)


class FakeSelector:
    """Authorizes every request with a fixed header."""

    def __init__(self):
        self.calls: list[tuple] = []

    async def authorize(self, rules, requirements):
        self.calls.append((rules, requirements))
        return FakePayment(requirements[0])


class PaywalledServer:
    """Answers 402 until a request carries an X-PAYMENT header."""

    def __init__(self, body_402=None, paid_status=200, response_header=None):
        self.body_402 = body_402 if body_402 is not None else {"x402Version": 1, "accepts": [REQUIREMENT]}
        self.paid_status = paid_status
        self.response_header = response_header
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if PAYMENT_HEADER not in request.headers:
            return httpx.Response(402, json=self.body_402)
        headers = {}
        if self.response_header is not None:
            headers[PAYMENT_RESPONSE_HEADER] = self.response_header
        return httpx.Response(self.paid_status, json={"data": "premium"}, headers=headers)


def make_client(server, selector=None) -> X402PaymentClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return X402PaymentClient(selector or FakeSelector(), RULES, http_client=http_client)


# =============================================================================
# 402 bodies
# =============================================================================


class TestExtractAccepts:
    """Tests for extract_accepts."""

    def test_accepts(self):
        requirements = extract_accepts({"x402Version": 1, "accepts": [REQUIREMENT]})
        assert requirements[0].pay_to == REQUIREMENT["payTo"]

    def test_nested_payment_configs(self):
        requirements = extract_accepts({"error": {"paymentConfigs": [REQUIREMENT]}})
        assert requirements[0].network == "base-sepolia"

    def test_missing(self):
        assert extract_accepts({"error": "Payment required"}) == []
        assert extract_accepts("Payment required") == []

    def test_invalid_entry(self):
        with pytest.raises(ProtocolViolationError):
            extract_accepts({"accepts": [{"network": "base-sepolia"}]})


# =============================================================================
# Requests
# =============================================================================


class TestX402PaymentClient:
    """Tests for X402PaymentClient.request."""

    @pytest.mark.asyncio
    async def test_unpaid_response_is_returned(self):
        client = make_client(lambda request: httpx.Response(200, json={"free": True}))
        response = await client.request("GET", "https://api.example.com/free")
        assert response.status_code == 200
        assert response.body == {"free": True}
        assert not response.paid

    @pytest.mark.asyncio
    async def test_pays_and_retries_once(self):
        server = PaywalledServer(
            response_header=encode_payment_response_header(True, "base-sepolia", "0xhash")
        )
        selector = FakeSelector()
        client = make_client(server, selector)

        response = await client.request("POST", "https://api.example.com/data", json={"q": 1})

        assert len(server.requests) == 2
        retry = server.requests[1]
        assert retry.headers[PAYMENT_HEADER] == "cGF5bWVudA=="
        assert json.loads(retry.content) == {"q": 1}
        assert selector.calls[0][0] == RULES

        assert response.paid
        assert response.status_code == 200
        assert response.body == {"data": "premium"}
        assert response.requirement.network == "base-sepolia"
        assert response.payment_response.tx_hash == "0xhash"

    @pytest.mark.asyncio
    async def test_rejected_payment_is_not_retried_again(self):
        server = PaywalledServer(paid_status=402)
        client = make_client(server)

        response = await client.request("GET", "https://api.example.com/data")

        assert len(server.requests) == 2
        assert response.status_code == 402
        assert response.payment_response is None

    @pytest.mark.asyncio
    async def test_unreadable_payment_response_is_ignored(self):
        client = make_client(PaywalledServer(response_header="not-base64"))
        response = await client.request("GET", "https://api.example.com/data")
        assert response.status_code == 200
        assert response.payment_response is None

    @pytest.mark.asyncio
    async def test_402_without_requirements(self):
        client = make_client(PaywalledServer(body_402={"error": "pay up"}))
        with pytest.raises(ProtocolViolationError, match="no payment requirements"):
            await client.request("GET", "https://api.example.com/data")

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        client = X402PaymentClient(FakeSelector(), RULES)
        async with client:
            assert client._get_client() is not None
        assert client._http_client is None
