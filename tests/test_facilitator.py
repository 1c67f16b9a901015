"""Unit tests for x402_custody.facilitator."""

import json

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from x402_custody import facilitator as facilitator_module
from x402_custody.errors import InvalidKeyFormatError, UpstreamServiceError
from x402_custody.facilitator import (
    DEFAULT_FACILITATOR_URL,
    CdpAuthProvider,
    CreateHeadersAuthProvider,
    FacilitatorClient,
    FacilitatorConfig,
    correlation_header,
    interpret_settle_response,
)
from x402_custody.requirements import PaymentRequirementSet
from x402_custody.types import PaymentRequirements

# =============================================================================
# Helpers
# =============================================================================


def make_requirement(network: str = "base-sepolia") -> PaymentRequirements:
    return PaymentRequirements(
        network=network,
        max_amount_required="10000",
        pay_to="0x209693Bc6afc0C5328bA36FaF03C514EF312287C",
        asset="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        extra={"name": "USDC", "version": "2"},
    )


def make_evm_envelope() -> dict:
    return {
        "x402Version": 1,
        "scheme": "exact",
        "network": "base-sepolia",
        "payload": {
            "signature": "0xsig",
            "authorization": {
                "from": "0xfrom",
                "to": "0x209693Bc6afc0C5328bA36FaF03C514EF312287C",
                "value": "10000",
                "validAfter": "0",
                "validBefore": "9999999999",
                "nonce": "0x" + "00" * 32,
            },
        },
    }


def make_client(handler, **config) -> FacilitatorClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FacilitatorClient(FacilitatorConfig(http_client=http_client, **config))


def make_cdp_secret() -> str:
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


# =============================================================================
# Response interpretation
# =============================================================================


class TestInterpretSettleResponse:
    """Tests for interpret_settle_response."""

    def test_empty_response_is_failure(self):
        outcome = interpret_settle_response({})
        assert outcome.success is False
        assert outcome.error == "Facilitator did not confirm settlement"

    def test_success_flag(self):
        outcome = interpret_settle_response({"success": True, "transaction": "0xhash", "network": "base"})
        assert outcome.success is True
        assert outcome.tx_hash == "0xhash"
        assert outcome.network == "base"
        assert outcome.error is None

    def test_payment_valid_flag(self):
        assert interpret_settle_response({"paymentValid": True}).success is True

    def test_nested_payment_response_status(self):
        outcome = interpret_settle_response({"paymentResponse": {"status": 200, "txHash": "sig"}})
        assert outcome.success is True
        assert outcome.tx_hash == "sig"

    def test_nested_non_200_status(self):
        assert interpret_settle_response({"paymentResponse": {"status": 402}}).success is False

    def test_first_signal_decides(self):
        outcome = interpret_settle_response(
            {"success": False, "paymentValid": True, "errorReason": "insufficient_funds"}
        )
        assert outcome.success is False
        assert outcome.error == "insufficient_funds"

    def test_payment_valid_outranks_nested_status(self):
        outcome = interpret_settle_response({"paymentValid": False, "paymentResponse": {"status": 200}})
        assert outcome.success is False

    def test_truthy_strings_do_not_count(self):
        assert interpret_settle_response({"success": "true"}).success is False

    def test_transaction_object(self):
        outcome = interpret_settle_response({"success": True, "transaction": {"signature": "5sig"}})
        assert outcome.tx_hash == "5sig"

    def test_non_object_response(self):
        outcome = interpret_settle_response([1, 2], network="base")
        assert outcome.success is False
        assert outcome.network == "base"


# =============================================================================
# Settle
# =============================================================================


class TestSettle:
    """Tests for FacilitatorClient.settle."""

    @pytest.mark.asyncio
    async def test_posts_envelope_and_requirement(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "transaction": "0xhash"})

        client = make_client(handler)
        outcome = await client.settle(make_evm_envelope(), make_requirement(), raw_header="abc=")

        assert outcome.success is True
        assert outcome.tx_hash == "0xhash"
        assert captured["url"] == f"{DEFAULT_FACILITATOR_URL}/settle"
        assert captured["headers"]["Correlation-Context"] == correlation_header()
        body = captured["body"]
        assert body["x402Version"] == 1
        assert body["paymentPayload"] == make_evm_envelope()
        assert body["paymentRequirements"]["maxAmountRequired"] == "10000"
        assert body["paymentHeader"] == "abc="
        assert "transaction" not in body

    @pytest.mark.asyncio
    async def test_solana_body_carries_transaction(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"paymentValid": True})

        envelope = {
            "x402Version": 1,
            "scheme": "exact",
            "network": "solana-devnet",
            "payload": {"transaction": "5txid"},
        }
        client = make_client(handler)
        outcome = await client.settle(envelope, make_requirement("solana-devnet"))

        assert outcome.success is True
        assert captured["body"]["transaction"] == "5txid"
        assert "paymentHeader" not in captured["body"]

    @pytest.mark.asyncio
    async def test_empty_body_is_not_success(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        outcome = await client.settle(make_evm_envelope(), make_requirement())
        assert outcome.success is False

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_status_and_body(self):
        client = make_client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(UpstreamServiceError) as exc_info:
            await client.settle(make_evm_envelope(), make_requirement())
        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "boom"
        assert exc_info.value.url.endswith("/settle")

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>ok</html>"))
        with pytest.raises(UpstreamServiceError, match="invalid JSON"):
            await client.settle(make_evm_envelope(), make_requirement())

    @pytest.mark.asyncio
    async def test_auth_headers_are_sent(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"success": True})

        provider = CreateHeadersAuthProvider(lambda: {"settle": {"Authorization": "Bearer token"}})
        client = make_client(handler, auth_provider=provider)
        await client.settle(make_evm_envelope(), make_requirement())
        assert captured["auth"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_custom_url(self):
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, json={"success": True})

        client = make_client(handler, url="https://facilitator.example.com/")
        await client.settle(make_evm_envelope(), make_requirement())
        assert urls == ["https://facilitator.example.com/settle"]


# =============================================================================
# Verify and accepts
# =============================================================================


class TestVerifyAndAccepts:
    """Tests for FacilitatorClient.verify and FacilitatorClient.accepts."""

    @pytest.mark.asyncio
    async def test_verify(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"isValid": True, "payer": "0xfrom"})
        )
        response = await client.verify(make_evm_envelope(), make_requirement())
        assert response.is_valid
        assert response.payer == "0xfrom"

    @pytest.mark.asyncio
    async def test_verify_invalid(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"isValid": False, "invalidReason": "expired"})
        )
        response = await client.verify(make_evm_envelope(), make_requirement())
        assert not response.is_valid
        assert response.invalid_reason == "expired"

    @pytest.mark.asyncio
    async def test_accepts_merges_extra(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            accepts = [dict(item, extra={"feePayer": "FEE"}) for item in body["accepts"]]
            return httpx.Response(200, json={"accepts": accepts})

        client = make_client(handler)
        enriched = await client.accepts([make_requirement("solana-devnet")])

        assert isinstance(enriched, PaymentRequirementSet)
        assert enriched[0].extra == {"name": "USDC", "version": "2", "feePayer": "FEE"}

    @pytest.mark.asyncio
    async def test_accepts_falls_back_on_error(self):
        client = make_client(lambda request: httpx.Response(404, text="not found"))
        requirements = PaymentRequirementSet([make_requirement()])
        assert await client.accepts(requirements) is requirements

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        client = FacilitatorClient()
        async with client:
            assert client._get_client() is not None
        assert client._http_client is None


# =============================================================================
# CDP auth
# =============================================================================


class RecordingAuthHeaders:
    """Stands in for cdp-sdk's get_auth_headers and records its options."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.options = []

    def __call__(self, options):
        self.options.append(options)
        if self.error is not None:
            raise self.error
        return {
            "Authorization": f"Bearer token-for-{options.request_path}",
            "Content-Type": "application/json",
        }


class TestCdpAuthProvider:
    """Tests for CdpAuthProvider."""

    def test_one_token_per_endpoint(self, monkeypatch):
        recorder = RecordingAuthHeaders()
        monkeypatch.setattr(facilitator_module, "get_auth_headers", recorder)
        provider = CdpAuthProvider("organizations/org/apiKeys/key", "secret")

        headers = provider.get_auth_headers()

        assert [o.request_path for o in recorder.options] == [
            "/platform/v2/x402/verify",
            "/platform/v2/x402/settle",
            "/platform/v2/x402/accepts",
        ]
        for options in recorder.options:
            assert options.api_key_id == "organizations/org/apiKeys/key"
            assert options.api_key_secret == "secret"
            assert options.request_host == "api.cdp.coinbase.com"
            assert options.request_method == "POST"
            assert options.source == "x402"
        assert headers.settle["Authorization"] == "Bearer token-for-/platform/v2/x402/settle"
        assert headers.accepts["Authorization"] == "Bearer token-for-/platform/v2/x402/accepts"

    def test_custom_base_url(self, monkeypatch):
        recorder = RecordingAuthHeaders()
        monkeypatch.setattr(facilitator_module, "get_auth_headers", recorder)
        provider = CdpAuthProvider("key", "secret", base_url="https://cdp.example.com/x402/")

        provider.get_auth_headers()

        assert recorder.options[0].request_host == "cdp.example.com"
        assert recorder.options[0].request_path == "/x402/verify"

    def test_signing_failure_is_a_key_format_error(self, monkeypatch):
        recorder = RecordingAuthHeaders(error=ValueError("Invalid key format"))
        monkeypatch.setattr(facilitator_module, "get_auth_headers", recorder)
        provider = CdpAuthProvider("key", "not a key")

        with pytest.raises(InvalidKeyFormatError):
            provider.get_auth_headers()

    def test_signs_with_pem_ec_key(self):
        provider = CdpAuthProvider("organizations/org/apiKeys/key", make_cdp_secret())

        headers = provider.get_auth_headers()

        assert headers.verify["Authorization"].startswith("Bearer ")
        assert headers.settle["Authorization"].startswith("Bearer ")
        assert headers.verify["Authorization"] != headers.settle["Authorization"]

    @pytest.mark.asyncio
    async def test_settle_sends_provider_headers(self, monkeypatch):
        monkeypatch.setattr(facilitator_module, "get_auth_headers", RecordingAuthHeaders())
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"success": True, "transaction": "0xabc"})

        client = make_client(handler, auth_provider=CdpAuthProvider("key", "secret"))
        await client.settle(make_evm_envelope(), make_requirement())

        assert seen["authorization"] == "Bearer token-for-/platform/v2/x402/settle"
