"""Unit tests for x402_custody.wallets.extractors."""

import base64

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from x402_custody.wallets.extractors import (
    TX_ID_EXTRACTORS,
    first_match,
    first_signature_of,
    on_chain_transaction_blob,
    on_chain_tx_id,
    signature_field,
    tx_id_field,
)

# =============================================================================
# Helpers
# =============================================================================


def make_message(payer: Keypair) -> MessageV0:
    return MessageV0.try_compile(payer.pubkey(), [], [], Hash.default())


def make_signed_blob() -> tuple[str, str]:
    payer = Keypair()
    transaction = VersionedTransaction(make_message(payer), [payer])
    return base64.b64encode(bytes(transaction)).decode(), str(transaction.signatures[0])


def make_unsigned_blob() -> str:
    transaction = VersionedTransaction.populate(make_message(Keypair()), [Signature.default()])
    return base64.b64encode(bytes(transaction)).decode()


# =============================================================================
# Single extractors
# =============================================================================


class TestExtractors:
    """Tests for the individual extractors."""

    def test_on_chain_tx_id(self):
        assert on_chain_tx_id({"onChain": {"txId": "5abc"}}) == "5abc"
        assert on_chain_tx_id({"onChain": {"txId": "  "}}) is None
        assert on_chain_tx_id({"onChain": "5abc"}) is None
        assert on_chain_tx_id(None) is None

    def test_signature_field(self):
        assert signature_field({"signature": " 5sig "}) == "5sig"
        assert signature_field({"signature": 42}) is None
        assert signature_field(["signature"]) is None

    def test_tx_id_field(self):
        assert tx_id_field({"txId": "5tx"}) == "5tx"
        assert tx_id_field({}) is None

    def test_signed_transaction_blob(self):
        blob, expected = make_signed_blob()
        assert first_signature_of(blob) == expected
        assert on_chain_transaction_blob({"onChain": {"transaction": blob}}) == expected

    def test_unsigned_transaction_blob(self):
        assert first_signature_of(make_unsigned_blob()) is None

    @pytest.mark.parametrize("blob", ["not base64!", base64.b64encode(b"\x01\x02").decode()])
    def test_undecodable_blob(self, blob):
        assert first_signature_of(blob) is None


# =============================================================================
# Ordering
# =============================================================================


class TestFirstMatch:
    """Tests for first_match."""

    def test_order(self):
        assert TX_ID_EXTRACTORS == (
            on_chain_tx_id,
            signature_field,
            tx_id_field,
            on_chain_transaction_blob,
        )

    def test_on_chain_tx_id_wins(self):
        blob, _ = make_signed_blob()
        response = {
            "onChain": {"txId": "from-on-chain", "transaction": blob},
            "signature": "from-signature",
            "txId": "from-tx-id",
        }
        assert first_match(response) == "from-on-chain"

    def test_signature_before_tx_id(self):
        assert first_match({"signature": "a", "txId": "b"}) == "a"

    def test_falls_through_to_blob(self):
        blob, expected = make_signed_blob()
        assert first_match({"onChain": {"transaction": blob}}) == expected

    def test_nothing_found(self):
        assert first_match({"status": "pending"}) is None

    def test_custom_extractors(self):
        assert first_match({"hash": "0xabc"}, [lambda r: r.get("hash")]) == "0xabc"
