"""Resolve opaque secret strings into key material.

Three key families are supported:

- Solana Ed25519: Base58 of a 32-byte seed or a 64-byte ``seed || public key``
- legacy EVM secp256k1: 64 hex characters, optional ``0x`` prefix
- EVM P-256 admin signer: a JWK JSON object or a PKCS#8 key (Base64 DER or PEM)

Callers that know the family should use :func:`resolve_as`. :func:`resolve`
sniffs the string shape and is meant for boundaries that only receive an
untyped string.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from cryptography.exceptions import UnsupportedAlgorithm as _BackendUnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from eth_utils import keccak, to_checksum_address

from . import base58, ed25519
from .errors import (
    InvalidCharacterError,
    InvalidKeyFormatError,
    UnsupportedAlgorithmError,
)
from .types import ChainFamily

logger = logging.getLogger(__name__)

P256_SIGNER_TYPE = "evm-p256-keypair"
EXTERNAL_WALLET_SIGNER_TYPE = "external-wallet"

_HEX_KEY = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")
# shortest PKCS#8 P-256 key (no embedded public key) is 67 bytes of DER
_MIN_PKCS8_B64_LENGTH = 88


@dataclass(frozen=True)
class KeyMaterial:
    """Public half of a resolved key plus an opaque private source.

    ``address`` is derived from ``public_key``: Base58 of the public key for
    Solana, the EIP-55 address for secp256k1, and ``None`` for P-256 keys,
    which are identified by :attr:`signer_locator` instead.
    """

    chain_family: ChainFamily
    public_key: bytes
    address: Optional[str]
    private_source: Any = field(repr=False, compare=False)

    @property
    def public_key_b64(self) -> str:
        return base64.b64encode(self.public_key).decode("ascii")

    @property
    def signer_locator(self) -> str:
        """Locator the wallet backend uses for this signer."""
        if self.chain_family is ChainFamily.EVM_P256:
            return f"{P256_SIGNER_TYPE}:{self.public_key_b64}"
        return f"{EXTERNAL_WALLET_SIGNER_TYPE}:{self.address}"

    def admin_signer(self) -> dict[str, str]:
        """Admin signer descriptor for wallet creation."""
        if self.chain_family is ChainFamily.EVM_P256:
            return {"type": P256_SIGNER_TYPE, "publicKey": self.public_key_b64}
        return {"type": EXTERNAL_WALLET_SIGNER_TYPE, "address": self.address or ""}


# ============================================================================
# Family decoders
# ============================================================================


def _solana_from_bytes(raw: bytes) -> KeyMaterial:
    if len(raw) == ed25519.SEED_LENGTH:
        pair = ed25519.derive_from_seed(raw)
    elif len(raw) == ed25519.SECRET_KEY_LENGTH:
        pair = ed25519.derive_from_secret_key(raw)
        derived = ed25519.derive_from_seed(pair.seed)
        if derived.public_key != pair.public_key:
            raise InvalidKeyFormatError(
                "Solana secret key is inconsistent: embedded public key does not match its seed"
            )
    else:
        raise InvalidKeyFormatError(
            f"Solana private key must decode to 32 or 64 bytes, got {len(raw)}"
        )
    return KeyMaterial(
        chain_family=ChainFamily.SOLANA_ED25519,
        public_key=pair.public_key,
        address=base58.encode(pair.public_key),
        private_source=pair.secret_key,
    )


def _resolve_solana(secret: str) -> KeyMaterial:
    try:
        raw = base58.decode(secret)
    except InvalidCharacterError as e:
        raise InvalidKeyFormatError(f"Solana private key is not valid Base58: {e}") from e
    return _solana_from_bytes(raw)


def _resolve_secp256k1(secret: str) -> KeyMaterial:
    if not _HEX_KEY.match(secret):
        raise InvalidKeyFormatError("EVM private key must be 32 bytes of hex (64 characters)")
    private_bytes = bytes.fromhex(secret[2:] if secret.startswith("0x") else secret)
    try:
        private_key = ec.derive_private_key(int.from_bytes(private_bytes, "big"), ec.SECP256K1())
    except ValueError as e:
        raise InvalidKeyFormatError(f"EVM private key is out of range: {e}") from e
    public_key = private_key.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    return KeyMaterial(
        chain_family=ChainFamily.EVM_SECP256K1_LEGACY,
        public_key=public_key,
        address=ethereum_address(public_key),
        private_source=private_bytes,
    )


def _p256_material(private_key: Any) -> KeyMaterial:
    if not isinstance(private_key, ec.EllipticCurvePrivateKey) or not isinstance(
        private_key.curve, ec.SECP256R1
    ):
        raise InvalidKeyFormatError("Admin signer key must be an EC P-256 private key")
    public_key = private_key.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    return KeyMaterial(
        chain_family=ChainFamily.EVM_P256,
        public_key=public_key,
        address=None,
        private_source=private_key,
    )


def _b64url_int(value: str) -> int:
    padded = value + "=" * (-len(value) % 4)
    return int.from_bytes(base64.urlsafe_b64decode(padded), "big")


def _resolve_p256_jwk(secret: str) -> KeyMaterial:
    try:
        jwk = json.loads(secret)
    except json.JSONDecodeError as e:
        raise InvalidKeyFormatError(f"JWK is not valid JSON: {e}") from e
    if not isinstance(jwk, dict):
        raise InvalidKeyFormatError("JWK must be a JSON object")
    if jwk.get("kty") != "EC" or jwk.get("crv") != "P-256":
        raise InvalidKeyFormatError(
            f"JWK must be an EC P-256 key, got kty={jwk.get('kty')!r} crv={jwk.get('crv')!r}"
        )
    if not isinstance(jwk.get("d"), str):
        raise InvalidKeyFormatError("JWK is missing the private component 'd'")

    try:
        private_key = ec.derive_private_key(_b64url_int(jwk["d"]), ec.SECP256R1())
    except (ValueError, binascii.Error) as e:
        raise InvalidKeyFormatError(f"JWK private component is invalid: {e}") from e
    except _BackendUnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError("P-256 is not supported by the cryptography backend") from e

    material = _p256_material(private_key)
    if "x" in jwk and "y" in jwk:
        numbers = private_key.public_key().public_numbers()
        try:
            matches = _b64url_int(jwk["x"]) == numbers.x and _b64url_int(jwk["y"]) == numbers.y
        except (ValueError, binascii.Error, TypeError):
            matches = False
        if not matches:
            raise InvalidKeyFormatError("JWK public coordinates do not match its private key")
    return material


def _resolve_p256_pkcs8(secret: str) -> KeyMaterial:
    try:
        if secret.startswith("-----BEGIN"):
            private_key = serialization.load_pem_private_key(secret.encode("ascii"), password=None)
        else:
            der = base64.b64decode(secret, validate=True)
            private_key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, binascii.Error) as e:
        raise InvalidKeyFormatError(f"Admin signer key is not a PKCS#8 private key: {e}") from e
    except _BackendUnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError("P-256 is not supported by the cryptography backend") from e
    return _p256_material(private_key)


def _resolve_p256(secret: str) -> KeyMaterial:
    if secret.startswith("{"):
        return _resolve_p256_jwk(secret)
    return _resolve_p256_pkcs8(secret)


_DECODERS: dict[ChainFamily, Callable[[str], KeyMaterial]] = {
    ChainFamily.SOLANA_ED25519: _resolve_solana,
    ChainFamily.EVM_SECP256K1_LEGACY: _resolve_secp256k1,
    ChainFamily.EVM_P256: _resolve_p256,
}


# ============================================================================
# Public API
# ============================================================================


def ethereum_address(public_key: bytes) -> str:
    """EIP-55 address for an uncompressed secp256k1 public key.

    Accepts the 65-byte ``0x04``-prefixed point or the bare 64 bytes.
    """
    if len(public_key) == 65 and public_key[0] == 4:
        public_key = public_key[1:]
    if len(public_key) != 64:
        raise InvalidKeyFormatError(
            f"Uncompressed public key must be 64 bytes, got {len(public_key)}"
        )
    return to_checksum_address(keccak(public_key)[-20:])


def resolve_as(secret: str, family: "ChainFamily | str") -> KeyMaterial:
    """Resolve a secret whose key family is known.

    Args:
        secret: Private key string in the family's encoding
        family: Key family (enum member or its value)

    Returns:
        KeyMaterial for the secret

    Raises:
        InvalidKeyFormatError: If the secret is not valid for that family.
    """
    family = ChainFamily(family)
    if not isinstance(secret, str) or not secret.strip():
        raise InvalidKeyFormatError("Private key is empty")
    return _DECODERS[family](secret.strip())


def detect_family(secret: str) -> ChainFamily:
    """Guess the key family of an untyped secret from its shape.

    Raises:
        InvalidKeyFormatError: If no family's shape matches.
    """
    if not isinstance(secret, str) or not secret.strip():
        raise InvalidKeyFormatError("Private key is empty")
    secret = secret.strip()

    if secret.startswith("{"):
        return ChainFamily.EVM_P256
    if secret.startswith("-----BEGIN"):
        return ChainFamily.EVM_P256
    if _HEX_KEY.match(secret):
        return ChainFamily.EVM_SECP256K1_LEGACY
    if len(secret) >= _MIN_PKCS8_B64_LENGTH and not base58.is_valid(secret):
        return ChainFamily.EVM_P256
    if base58.is_valid(secret):
        return ChainFamily.SOLANA_ED25519
    raise InvalidKeyFormatError(
        "Unrecognised private key format. Use 64 hex characters for EVM, "
        "Base58 for Solana, or a P-256 JWK/PKCS#8 key for an EVM admin signer"
    )


def resolve(secret: str) -> KeyMaterial:
    """Resolve an untyped secret string into key material.

    Detection order: JWK JSON, PKCS#8 (PEM, or long non-Base58 Base64),
    64-character hex, then Base58 decoding to 32 or 64 bytes.

    Raises:
        InvalidKeyFormatError: If no family matches, or the matched family
            cannot decode the secret.
    """
    family = detect_family(secret)
    material = resolve_as(secret, family)
    logger.debug("Resolved %s key for %s", family.value, material.address or material.signer_locator)
    return material
