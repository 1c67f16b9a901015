"""HTTP client that pays for x402-protected resources from custodial wallets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx
from pydantic import ValidationError

from .encoding import decode_payment_response_header
from .errors import ProtocolViolationError
from .paywall import PAYMENT_HEADER, PAYMENT_RESPONSE_HEADER
from .payer import PayerRule, PayerSelector, PaymentResult
from .types import PaymentRequirements, PaymentResponseHeader

logger = logging.getLogger(__name__)


@dataclass
class PaidResponse:
    status_code: int
    body: Any
    payment_header: Optional[str] = None
    requirement: Optional[PaymentRequirements] = None
    payment_response: Optional[PaymentResponseHeader] = None
    payment: Optional[PaymentResult] = None

    @property
    def paid(self) -> bool:
        return self.payment_header is not None


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def extract_accepts(body: Any) -> list[PaymentRequirements]:
    """Requirements from a 402 body.

    They are read from ``accepts``, or from ``error.paymentConfigs`` for
    servers that nest them in the error.

    Raises:
        ProtocolViolationError: If an entry is not a valid requirement.
    """
    if not isinstance(body, dict):
        return []
    accepts = body.get("accepts")
    if not isinstance(accepts, list):
        error = body.get("error")
        accepts = error.get("paymentConfigs") if isinstance(error, dict) else None
    if not isinstance(accepts, list):
        return []
    try:
        return [PaymentRequirements.model_validate(item) for item in accepts]
    except ValidationError as e:
        raise ProtocolViolationError(f"Invalid payment requirements in 402 response: {e}") from e


class X402PaymentClient:
    """Requests a resource and pays for it once when the server answers 402.

    The payment is authorized by the first affordable payer rule. The
    server settles it when the request is retried with the X-PAYMENT
    header.

    Args:
        selector: Payer selector used to authorize payments
        rules: Payer rules in order of preference
        http_client: Optional httpx.AsyncClient; one is created otherwise
        timeout: Timeout for a created client
        logger: Logger; defaults to this module's logger
    """

    def __init__(
        self,
        selector: PayerSelector,
        rules: Sequence[PayerRule],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._selector = selector
        self._rules = list(rules)
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> X402PaymentClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        url: str,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> PaidResponse:
        """Send a request, paying and retrying once on a 402.

        Raises:
            NoAffordableRuleError: If no payer rule can pay.
            ProtocolViolationError: If the 402 offers no usable requirement.
        """
        client = self._get_client()
        base_headers = {"Accept": "application/json", **(headers or {})}

        response = await client.request(method, url, json=json, headers=base_headers)
        body = _parse_body(response)
        if response.status_code != 402:
            return PaidResponse(status_code=response.status_code, body=body)

        accepts = extract_accepts(body)
        if not accepts:
            raise ProtocolViolationError(f"402 response from {url} lists no payment requirements")
        self._logger.info(
            "Payment required for %s on %s", url, ", ".join(r.network for r in accepts)
        )

        payment = await self._selector.authorize(self._rules, accepts)
        retry = await client.request(
            method,
            url,
            json=json,
            headers={**base_headers, PAYMENT_HEADER: payment.payment_header},
        )

        payment_response = None
        encoded = retry.headers.get(PAYMENT_RESPONSE_HEADER)
        if encoded:
            try:
                payment_response = decode_payment_response_header(encoded)
            except (ValueError, ValidationError) as e:
                self._logger.warning("Ignoring unreadable %s header: %s", PAYMENT_RESPONSE_HEADER, e)

        if retry.status_code == 402:
            self._logger.warning("Payment for %s was rejected", url)

        return PaidResponse(
            status_code=retry.status_code,
            body=_parse_body(retry),
            payment_header=payment.payment_header,
            requirement=payment.selection.requirement,
            payment_response=payment_response,
            payment=payment,
        )
