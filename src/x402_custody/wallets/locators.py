"""Wallet and recipient locator strings understood by the wallet API."""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import InvalidInputFormatError

IDENTITY_MODES = ("email", "userId", "phoneNumber", "twitter", "x")


@dataclass(frozen=True)
class WalletRef:
    """A wallet given either by address or by an owner identity.

    Attributes:
        mode: ``address`` or one of :data:`IDENTITY_MODES`
        value: The address or identity value
    """

    mode: str
    value: str


def build_wallet_locator(wallet: WalletRef, chain_type: str = "") -> str:
    """Locator for a wallet the caller controls.

    Identity locators take the form ``<mode>:<value>:<chainType>:smart``.
    """
    value = (wallet.value or "").strip()
    if not value:
        raise InvalidInputFormatError("Wallet identifier is required")
    if wallet.mode == "address":
        return value
    if wallet.mode in IDENTITY_MODES:
        if not chain_type or not chain_type.strip():
            raise InvalidInputFormatError("Chain type is required for non-address wallet locators")
        return f"{wallet.mode}:{value}:{chain_type.strip()}:smart"
    raise InvalidInputFormatError(f"Unsupported locator mode: {wallet.mode}")


def build_recipient_locator(recipient: WalletRef, chain: str = "") -> str:
    """Locator for a transfer recipient.

    Identity locators take the form ``<mode>:<value>:<chain>``.
    """
    value = (recipient.value or "").strip()
    if not value:
        raise InvalidInputFormatError("Recipient wallet value is required")
    if recipient.mode == "address":
        return value
    if recipient.mode in IDENTITY_MODES:
        if not chain or not chain.strip():
            raise InvalidInputFormatError("Chain is required for non-address recipient locators")
        return f"{recipient.mode}:{value}:{chain.strip()}"
    raise InvalidInputFormatError(f"Unsupported recipient wallet mode: {recipient.mode}")
