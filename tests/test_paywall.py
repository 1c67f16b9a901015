"""Unit tests for x402_custody.paywall."""

import httpx
import pytest

from x402_custody.chains import get_supported_tokens
from x402_custody.encoding import decode_payment_response_header, encode_payment_header
from x402_custody.errors import UpstreamServiceError
from x402_custody.paywall import (
    PAYMENT_RESPONSE_HEADER,
    PaywallHandler,
    build_payment_required_response,
)
from x402_custody.requirements import PayeeRule, build_payment_requirements
from x402_custody.types import SettlementOutcome

NOW = 1_700_000_000
EVM_PAY_TO = "0x209693Bc6afc0C5328bA36FaF03C514EF312287C"
SOLANA_PAY_TO = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


# =============================================================================
# Helpers
# =============================================================================


class FakeFacilitator:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome or SettlementOutcome(success=True, tx_hash="0xhash")
        self.error = error
        self.calls: list[tuple] = []

    async def settle(self, envelope, requirement, raw_header=None):
        self.calls.append((envelope, requirement, raw_header))
        if self.error is not None:
            raise self.error
        return self.outcome


def make_requirements():
    return build_payment_requirements(
        [
            PayeeRule("base-sepolia:usdc", EVM_PAY_TO, "0.01"),
            PayeeRule("solana-devnet:usdc", SOLANA_PAY_TO, "0.01"),
        ],
        get_supported_tokens("staging"),
        "staging",
    )


def make_evm_header(value: str = "10000") -> str:
    return encode_payment_header(
        {
            "x402Version": 1,
            "scheme": "exact",
            "network": "base-sepolia",
            "payload": {
                "signature": "0x" + "11" * 65,
                "authorization": {
                    "from": "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23",
                    "to": EVM_PAY_TO,
                    "value": value,
                    "validAfter": str(NOW - 60),
                    "validBefore": str(NOW + 60),
                    "nonce": "0x" + "ab" * 32,
                },
            },
        }
    )


def make_handler(facilitator=None) -> PaywallHandler:
    return PaywallHandler(make_requirements(), facilitator or FakeFacilitator())


# =============================================================================
# 402 body
# =============================================================================


def test_build_payment_required_response():
    body = build_payment_required_response(make_requirements(), error="No X-PAYMENT header provided")
    assert body["x402Version"] == 1
    assert body["error"] == "No X-PAYMENT header provided"
    assert [item["network"] for item in body["accepts"]] == ["base-sepolia", "solana-devnet"]
    assert body["accepts"][0]["maxAmountRequired"] == "10000"


def test_build_payment_required_response_without_error():
    assert "error" not in build_payment_required_response(make_requirements())


# =============================================================================
# Handling
# =============================================================================


class TestPaywallHandler:
    """Tests for PaywallHandler.handle."""

    @pytest.mark.asyncio
    async def test_missing_header(self):
        decision = await make_handler().handle(None)
        assert decision.status_code == 402
        assert decision.body["error"] == "No X-PAYMENT header provided"
        assert len(decision.body["accepts"]) == 2

    @pytest.mark.asyncio
    async def test_undecodable_header(self):
        decision = await make_handler().handle("%%%")
        assert decision.body["error"] == "Invalid payment header format"

    @pytest.mark.asyncio
    async def test_wrong_shape(self):
        header = encode_payment_header({"x402Version": 1, "network": "base-sepolia", "payload": {}})
        decision = await make_handler().handle(header)
        assert decision.status_code == 402
        assert decision.body["error"].startswith("Invalid payment payload: Missing field")

    @pytest.mark.asyncio
    async def test_underpayment_is_not_settled(self):
        facilitator = FakeFacilitator()
        decision = await make_handler(facilitator).handle(make_evm_header("9999"), now=NOW)
        assert decision.status_code == 402
        assert decision.body["error"] == (
            "Invalid payment: Value too low: got 9999, requires at least 10000"
        )
        assert facilitator.calls == []

    @pytest.mark.asyncio
    async def test_settled_payment(self):
        facilitator = FakeFacilitator()
        header = make_evm_header()

        decision = await make_handler(facilitator).handle(header, now=NOW)

        assert decision.paid
        assert decision.body == {"success": True, "network": "base-sepolia", "txHash": "0xhash"}
        response = decode_payment_response_header(decision.headers[PAYMENT_RESPONSE_HEADER])
        assert response.success is True
        assert response.network_id == "base-sepolia"
        assert response.tx_hash == "0xhash"
        _, requirement, raw_header = facilitator.calls[0]
        assert requirement.network == "base-sepolia"
        assert raw_header == header

    @pytest.mark.asyncio
    async def test_settlement_rejected(self):
        facilitator = FakeFacilitator(SettlementOutcome(success=False, error="insufficient_funds"))
        decision = await make_handler(facilitator).handle(make_evm_header(), now=NOW)
        assert decision.status_code == 402
        assert decision.body["error"] == "Settle failed: insufficient_funds"
        assert decision.settlement.error == "insufficient_funds"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [UpstreamServiceError("boom", status_code=500), httpx.ConnectError("refused")],
    )
    async def test_settlement_error(self, error):
        decision = await make_handler(FakeFacilitator(error=error)).handle(make_evm_header(), now=NOW)
        assert decision.status_code == 402
        assert decision.body["error"] == "Settle failed"

    @pytest.mark.asyncio
    async def test_solana_payment_settles(self):
        header = encode_payment_header(
            {
                "x402Version": 1,
                "scheme": "exact",
                "network": "solana-devnet",
                "payload": {"transaction": "5txid"},
            }
        )
        facilitator = FakeFacilitator(SettlementOutcome(success=True, tx_hash="5txid"))
        decision = await make_handler(facilitator).handle(header, now=NOW)
        assert decision.paid
        assert decision.body["network"] == "solana-devnet"
