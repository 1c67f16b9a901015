"""Message and typed-data signing for every supported key family."""

from __future__ import annotations

import json
import logging
import re
import secrets
import time
from typing import Any, Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm as _BackendUnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from . import base58, ed25519
from .chains import get_chain_id
from .errors import InvalidCharacterError, UnsupportedAlgorithmError
from .keys import KeyMaterial
from .types import ChainFamily, EIP3009Authorization, PaymentRequirements

logger = logging.getLogger(__name__)

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ]
}

_BARE_HEX_HASH = re.compile(r"^[0-9a-fA-F]{64,}$")


def _to_hex(signature: bytes) -> str:
    return f"0x{bytes(signature).hex()}"


# ============================================================================
# Message encodings
# ============================================================================


def solana_message_bytes(message: Union[bytes, str]) -> bytes:
    """Bytes to sign for a Solana message.

    Strings are Base58-decoded when they are valid Base58, otherwise taken as
    UTF-8 text.
    """
    if isinstance(message, (bytes, bytearray)):
        return bytes(message)
    if base58.is_valid(message):
        try:
            return base58.decode(message)
        except InvalidCharacterError:
            pass
    return message.encode("utf-8")


def evm_message_bytes(message: Union[bytes, str, dict[str, Any]]) -> bytes:
    """Bytes to personal-sign for an EVM message.

    Structured input is signed by its ``userOperationHash`` or ``hash``
    field, or by the Keccak-256 of its JSON text. Hex strings (``0x``
    prefixed, or bare and at least 32 bytes long) are signed as raw bytes.
    Anything else is signed as the Keccak-256 of its UTF-8 text.
    """
    if isinstance(message, (bytes, bytearray)):
        return bytes(message)

    parsed: Any = message
    if isinstance(message, str):
        try:
            parsed = json.loads(message)
        except json.JSONDecodeError:
            parsed = message

    if isinstance(parsed, dict):
        for key in ("userOperationHash", "hash"):
            value = parsed.get(key)
            if isinstance(value, str) and value:
                return bytes.fromhex(value[2:] if value.startswith("0x") else value)
        return keccak(text=json.dumps(parsed, separators=(",", ":")))

    text = message if isinstance(message, str) else str(parsed)
    if text.startswith("0x"):
        return bytes.fromhex(text[2:])
    if _BARE_HEX_HASH.match(text):
        return bytes.fromhex(text)
    return keccak(text=text)


# ============================================================================
# Message signing
# ============================================================================


def _sign_ed25519(message: bytes, key: KeyMaterial) -> bytes:
    seed = key.private_source[: ed25519.SEED_LENGTH]
    try:
        private_key = Ed25519PrivateKey.from_private_bytes(seed)
    except _BackendUnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError(
            "Ed25519 is not supported by the cryptography backend"
        ) from e
    return private_key.sign(message)


def _sign_p256(message: bytes, key: KeyMaterial) -> str:
    try:
        der = key.private_source.sign(message, ec.ECDSA(hashes.SHA256()))
    except _BackendUnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError("P-256 is not supported by the cryptography backend") from e
    r, s = decode_dss_signature(der)
    return _to_hex(r.to_bytes(32, "big") + s.to_bytes(32, "big"))


def sign_message(message: Union[bytes, str], key: KeyMaterial) -> str:
    """Sign a message with a resolved key.

    Args:
        message: Message bytes, or a string interpreted per key family
        key: Resolved key material

    Returns:
        Base58 of the 64-byte signature for Solana keys, ``0x`` hex for EVM
        keys (65-byte EIP-191 signature for secp256k1, ``r || s`` for P-256).

    Raises:
        UnsupportedAlgorithmError: If the backend lacks the needed primitive.
    """
    if key.chain_family is ChainFamily.SOLANA_ED25519:
        return base58.encode(_sign_ed25519(solana_message_bytes(message), key))

    if key.chain_family is ChainFamily.EVM_SECP256K1_LEGACY:
        signable = encode_defunct(primitive=evm_message_bytes(message))
        signed = Account.sign_message(signable, private_key=key.private_source)
        return _to_hex(signed.signature)

    if isinstance(message, str):
        payload = bytes.fromhex(message[2:]) if message.startswith("0x") else message.encode("utf-8")
    else:
        payload = bytes(message)
    return _sign_p256(payload, key)


def verify_solana_signature(message: Union[bytes, str], signature: str, address: str) -> bool:
    """Check a Base58 Ed25519 signature against a Base58 address."""
    try:
        return ed25519.verify(
            solana_message_bytes(message), base58.decode(signature), base58.decode(address)
        )
    except InvalidCharacterError:
        return False


# ============================================================================
# EIP-712
# ============================================================================


def create_nonce() -> str:
    """Create a random 32-byte hex-encoded nonce for authorization signatures."""
    return f"0x{secrets.token_hex(32)}"


def build_domain(requirement: PaymentRequirements) -> dict[str, Any]:
    """EIP-712 domain for a requirement's asset.

    The token name and version come from ``requirement.extra``.
    """
    extra = requirement.extra or {}
    return {
        "name": extra.get("name", "USD Coin"),
        "version": str(extra.get("version", "2")),
        "chainId": get_chain_id(requirement.network),
        "verifyingContract": requirement.asset,
    }


def build_transfer_authorization(
    from_address: str,
    requirement: PaymentRequirements,
    now: Optional[int] = None,
    nonce: Optional[str] = None,
) -> EIP3009Authorization:
    """Build an unsigned TransferWithAuthorization for a requirement.

    The authorization becomes valid 60 seconds in the past, to absorb clock
    skew, and expires ``max_timeout_seconds`` from now.
    """
    now = int(time.time()) if now is None else now
    return EIP3009Authorization(
        from_=from_address,
        to=requirement.pay_to,
        value=requirement.max_amount_required,
        valid_after=str(now - 60),
        valid_before=str(now + requirement.max_timeout_seconds),
        nonce=nonce or create_nonce(),
    )


def authorization_message(authorization: EIP3009Authorization) -> dict[str, Any]:
    nonce = authorization.nonce
    return {
        "from": authorization.from_,
        "to": authorization.to,
        "value": int(authorization.value),
        "validAfter": int(authorization.valid_after),
        "validBefore": int(authorization.valid_before),
        "nonce": bytes.fromhex(nonce[2:] if nonce.startswith("0x") else nonce),
    }


def sign_typed_data(
    domain: dict[str, Any],
    types: dict[str, list[dict[str, str]]],
    value: dict[str, Any],
    key: KeyMaterial,
    primary_type: str = "TransferWithAuthorization",
) -> str:
    """Sign EIP-712 typed data with a secp256k1 key.

    Args:
        domain: Domain with ``name``, ``version``, ``chainId`` and
            ``verifyingContract``
        types: Type definitions; an ``EIP712Domain`` entry is ignored
        value: Message for ``primary_type``
        key: secp256k1 key material
        primary_type: Primary type name (must be present in ``types``)

    Returns:
        ``0x`` hex of the 65-byte signature

    Raises:
        UnsupportedAlgorithmError: If the key is not a secp256k1 key.
    """
    if key.chain_family is not ChainFamily.EVM_SECP256K1_LEGACY:
        raise UnsupportedAlgorithmError(
            f"EIP-712 signing needs a secp256k1 key, got {key.chain_family.value}"
        )
    message_types = {name: fields for name, fields in types.items() if name != "EIP712Domain"}
    if primary_type not in message_types:
        raise ValueError(f"Primary type {primary_type!r} is missing from types")

    signed = Account.sign_typed_data(
        key.private_source,
        domain_data=domain,
        message_types=message_types,
        message_data=value,
    )
    return _to_hex(signed.signature)


def sign_authorization(
    authorization: EIP3009Authorization,
    requirement: PaymentRequirements,
    key: KeyMaterial,
) -> str:
    """Sign a TransferWithAuthorization for a requirement's asset."""
    domain = build_domain(requirement)
    logger.debug(
        "Signing TransferWithAuthorization on chain %s for %s",
        domain["chainId"],
        authorization.value,
    )
    return sign_typed_data(
        domain,
        TRANSFER_WITH_AUTHORIZATION_TYPES,
        authorization_message(authorization),
        key,
    )
