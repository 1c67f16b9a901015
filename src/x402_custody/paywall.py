"""Framework-neutral x402 paywall: decide between 402 and 200 for a request."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

import httpx

from .encoding import encode_payment_response_header
from .errors import InvalidPaymentHeaderError, X402CustodyError
from .facilitator import FacilitatorClient
from .requirements import PaymentRequirementSet
from .types import (
    X402_VERSION,
    PaymentRequirements,
    SettlementOutcome,
    x402PaymentRequiredResponse,
)
from .validation import parse_payment_header, validate_shape, verify

logger = logging.getLogger(__name__)

PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


def build_payment_required_response(
    requirements: Iterable[PaymentRequirements], error: Optional[str] = None
) -> dict[str, Any]:
    """Body of a 402 response: ``{x402Version, accepts, error?}``."""
    response = x402PaymentRequiredResponse(
        x402_version=X402_VERSION, accepts=list(requirements), error=error
    )
    return response.model_dump(by_alias=True, exclude_none=True)


@dataclass
class PaywallDecision:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    settlement: Optional[SettlementOutcome] = None

    @property
    def paid(self) -> bool:
        return self.status_code == 200


class PaywallHandler:
    """Checks an X-PAYMENT header and settles it.

    The header is decoded, shape-checked and verified against the offered
    requirements, then settled through the facilitator. Every failure turns
    into a 402 carrying the requirements and an ``error`` message.

    Args:
        requirements: Requirements offered for the resource
        facilitator: Facilitator used for settlement
        logger: Logger; defaults to this module's logger
    """

    def __init__(
        self,
        requirements: Union[PaymentRequirementSet, Iterable[PaymentRequirements]],
        facilitator: FacilitatorClient,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._requirements = (
            requirements
            if isinstance(requirements, PaymentRequirementSet)
            else PaymentRequirementSet(requirements)
        )
        self._facilitator = facilitator
        self._logger = logger or logging.getLogger(__name__)

    @property
    def requirements(self) -> PaymentRequirementSet:
        return self._requirements

    def payment_required(self, error: str) -> PaywallDecision:
        return PaywallDecision(
            status_code=402,
            body=build_payment_required_response(self._requirements, error=error),
            headers={"Content-Type": "application/json"},
        )

    async def handle(
        self, x_payment_header: Optional[str], now: Optional[int] = None
    ) -> PaywallDecision:
        """Decide the response for a request carrying ``x_payment_header``.

        Returns:
            200 with the settlement and an X-PAYMENT-RESPONSE header when the
            payment settled, otherwise 402.
        """
        if not x_payment_header:
            return self.payment_required(f"No {PAYMENT_HEADER} header provided")

        try:
            envelope = parse_payment_header(x_payment_header)
        except InvalidPaymentHeaderError as e:
            self._logger.warning("Invalid payment header: %s", e)
            return self.payment_required("Invalid payment header format")

        shape = validate_shape(envelope)
        if not shape.valid:
            return self.payment_required("Invalid payment payload: " + "; ".join(shape.errors))

        result = verify(envelope, self._requirements, now=now)
        if not result.valid or result.requirement is None:
            return self.payment_required(f"Invalid payment: {result.error_message}")
        requirement = result.requirement

        try:
            settlement = await self._facilitator.settle(
                envelope, requirement, raw_header=x_payment_header
            )
        except (X402CustodyError, httpx.HTTPError) as e:
            self._logger.error("Settlement failed on %s: %s", requirement.network, e)
            return self.payment_required("Settle failed")

        if not settlement.success:
            decision = self.payment_required(
                f"Settle failed: {settlement.error or 'Unknown error'}"
            )
            decision.settlement = settlement
            return decision

        return PaywallDecision(
            status_code=200,
            body={
                "success": True,
                "network": requirement.network,
                "txHash": settlement.tx_hash,
            },
            headers={
                "Content-Type": "application/json",
                PAYMENT_RESPONSE_HEADER: encode_payment_response_header(
                    True, requirement.network, settlement.tx_hash
                ),
            },
            settlement=settlement,
        )
