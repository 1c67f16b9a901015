import pytest
from pydantic import ValidationError

from x402_custody.types import (
    EIP3009Authorization,
    PaymentRequirements,
    TransactionRecord,
    TransactionStatus,
    is_solana_network,
    x402PaymentRequiredResponse,
)


def make_requirement(**overrides) -> PaymentRequirements:
    fields = dict(
        network="solana-devnet",
        max_amount_required="1000",
        pay_to="9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
        asset="4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
    )
    fields.update(overrides)
    return PaymentRequirements(**fields)


def test_payment_requirements_serde():
    original = make_requirement(extra={"feePayer": "abc"})
    expected = {
        "scheme": "exact",
        "network": "solana-devnet",
        "maxAmountRequired": "1000",
        "resource": "",
        "description": "",
        "mimeType": "application/json",
        "outputSchema": None,
        "payTo": "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin",
        "maxTimeoutSeconds": 60,
        "asset": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
        "extra": {"feePayer": "abc"},
    }
    assert original.model_dump(by_alias=True) == expected
    assert PaymentRequirements(**expected) == original
    assert original.atomic_amount == 1000


def test_payment_requirements_amount_must_be_integer_string():
    with pytest.raises(ValidationError):
        make_requirement(max_amount_required="0.5")


def test_x402_payment_required_response_serde():
    original = x402PaymentRequiredResponse(accepts=[make_requirement()], error="No X-PAYMENT header provided")
    dumped = original.model_dump(by_alias=True)
    assert dumped["x402Version"] == 1
    assert dumped["accepts"][0]["payTo"] == "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
    assert x402PaymentRequiredResponse(**dumped) == original


def test_eip3009_authorization_serde():
    expected = {
        "from": "0x123",
        "to": "0x456",
        "value": "1000",
        "validAfter": "0",
        "validBefore": "1000",
        "nonce": "0x789",
    }
    original = EIP3009Authorization(**expected)
    assert original.from_ == "0x123"
    assert original.model_dump(by_alias=True) == expected


def test_eip3009_authorization_rejects_non_integer_value():
    with pytest.raises(ValidationError):
        EIP3009Authorization(
            **{"from": "0x1", "to": "0x2", "value": "1.5", "validAfter": "0", "validBefore": "1", "nonce": "0x"}
        )


@pytest.mark.parametrize(
    "network,expected",
    [("solana", True), ("Solana-Devnet", True), ("solana-mainnet-beta", True), ("base", False), ("", False)],
)
def test_is_solana_network(network, expected):
    assert is_solana_network(network) is expected


def test_transaction_status_is_terminal():
    assert TransactionStatus.is_terminal("success")
    assert TransactionStatus.is_terminal("failed")
    assert not TransactionStatus.is_terminal("pending")
    assert not TransactionStatus.is_terminal(None)


def test_transaction_record():
    record = TransactionRecord(id="tx-1", status="success", on_chain_tx_id="sig")
    assert record.is_terminal
    assert record.succeeded
    assert not TransactionRecord(id="tx-2", status="awaiting-approval").is_terminal
