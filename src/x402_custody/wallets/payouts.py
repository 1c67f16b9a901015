"""Split one amount across several recipients from a single source wallet."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Sequence, Union

import httpx

from ..errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidInputFormatError,
    X402CustodyError,
)
from ..keys import KeyMaterial
from .approvals import ApprovalFlow
from .client import WalletApiClient
from .locators import WalletRef, build_recipient_locator

logger = logging.getLogger(__name__)

PERCENTAGE_TOLERANCE = Decimal("0.01")


class PayoutMode(str, Enum):
    QUANTITY = "quantity"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class PayoutRecipient:
    wallet: WalletRef
    amount: Optional[str] = None
    percentage: Optional[Union[float, str, Decimal]] = None


@dataclass
class TransferOutcome:
    recipient: str
    amount: str
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PayoutResult:
    mode: PayoutMode
    source_wallet: str
    token: str
    total_amount: Decimal
    transfers: list[TransferOutcome] = field(default_factory=list)

    @property
    def successful(self) -> list[TransferOutcome]:
        return [t for t in self.transfers if t.ok]

    @property
    def failed(self) -> list[TransferOutcome]:
        return [t for t in self.transfers if not t.ok]


def _decimal(value: Union[str, float, Decimal, None], what: str) -> Decimal:
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"Invalid {what}: {value!r}") from e
    if not result.is_finite() or result <= 0:
        raise InvalidAmountError(f"{what.capitalize()} must be a positive number, got {value!r}")
    return result


def _format(amount: Decimal) -> str:
    return format(amount.quantize(Decimal("0.000000001")).normalize(), "f")


def split_amounts(
    recipients: Sequence[PayoutRecipient],
    mode: Union[PayoutMode, str],
    total: Union[str, float, Decimal, None] = None,
) -> tuple[Decimal, list[str]]:
    """Compute each recipient's amount.

    Quantity mode sums the recipients' own amounts. Percentage mode needs
    percentages summing to 100 (within 0.01) and splits ``total``, keeping
    at most 9 decimals.

    Returns:
        The total and the per-recipient amounts, in recipient order.
    """
    mode = PayoutMode(mode)
    if not recipients:
        raise InvalidInputFormatError("At least one destination wallet must be configured")

    if mode is PayoutMode.QUANTITY:
        amounts = [
            _decimal(r.amount, f"quantity for destination {i + 1}")
            for i, r in enumerate(recipients)
        ]
        return sum(amounts, Decimal(0)), [_format(a) for a in amounts]

    percentages = []
    for i, r in enumerate(recipients):
        percentage = _decimal(r.percentage, f"percentage for destination {i + 1}")
        if percentage > 100:
            raise InvalidAmountError(
                f"Invalid percentage for destination {i + 1}: {r.percentage}. Must be between 0 and 100"
            )
        percentages.append(percentage)
    if abs(sum(percentages, Decimal(0)) - 100) > PERCENTAGE_TOLERANCE:
        raise InvalidAmountError(
            f"Percentages must sum to 100%. Current sum: {sum(percentages, Decimal(0))}%"
        )
    total_amount = _decimal(total, "total quantity")
    return total_amount, [_format(total_amount * p / 100) for p in percentages]


class PayoutRouter:
    """Checks the source balance once, then sends one transfer per recipient.

    Transfers are not awaited to completion. A failed transfer is recorded
    in the result and does not stop the others.
    """

    def __init__(
        self,
        client: WalletApiClient,
        flow: ApprovalFlow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._flow = flow
        self._logger = logger or logging.getLogger(__name__)

    async def check_balance(
        self, wallet: str, chain: str, token: str, required: Decimal
    ) -> None:
        balance = await self._client.get_token_balance(wallet, chain, token)
        if balance is None:
            raise InsufficientBalanceError(required, 0, f"{chain}:{token}")
        available = Decimal(balance.atomic) / (Decimal(10) ** balance.decimals)
        if available < required:
            raise InsufficientBalanceError(required, available, f"{chain}:{token}")

    async def run(
        self,
        source_wallet: str,
        chain: str,
        token: str,
        recipients: Sequence[PayoutRecipient],
        mode: Union[PayoutMode, str],
        key: KeyMaterial,
        total: Union[str, float, Decimal, None] = None,
    ) -> PayoutResult:
        """Pay every recipient from ``source_wallet``.

        Raises:
            InvalidAmountError: If the amounts or percentages are invalid.
            InsufficientBalanceError: If the wallet cannot cover the total.
        """
        mode = PayoutMode(mode)
        total_amount, amounts = split_amounts(recipients, mode, total)
        token_locator = f"{chain}:{token}"
        await self.check_balance(source_wallet, chain, token, total_amount)

        result = PayoutResult(
            mode=mode, source_wallet=source_wallet, token=token_locator, total_amount=total_amount
        )
        for recipient, amount in zip(recipients, amounts):
            locator = build_recipient_locator(recipient.wallet, chain)
            try:
                transfer = await self._flow.transfer(
                    source_wallet, token_locator, locator, amount, key, wait=False
                )
            except (X402CustodyError, httpx.HTTPError) as e:
                self._logger.warning("Payout of %s to %s failed: %s", amount, locator, e)
                result.transfers.append(TransferOutcome(recipient=locator, amount=amount, error=str(e)))
                continue
            result.transfers.append(
                TransferOutcome(
                    recipient=locator,
                    amount=amount,
                    transaction_id=transfer.transaction_id,
                    status=transfer.record.status if transfer.record else None,
                )
            )

        self._logger.info(
            "Payout from %s: %d succeeded, %d failed",
            source_wallet,
            len(result.successful),
            len(result.failed),
        )
        return result
