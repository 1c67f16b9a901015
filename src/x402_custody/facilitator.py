"""HTTP settlement client for x402 facilitators."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Union
from urllib.parse import quote, urlparse

import httpx
from cdp.auth.utils.http import GetAuthHeadersOptions, get_auth_headers

from .errors import InvalidKeyFormatError, UpstreamServiceError
from .requirements import PaymentRequirementSet
from .types import (
    X402_VERSION,
    PaymentPayload,
    PaymentRequirements,
    SettlementOutcome,
    is_solana_network,
)

logger = logging.getLogger(__name__)

DEFAULT_FACILITATOR_URL = "https://facilitator.corbits.dev"
CDP_FACILITATOR_URL = "https://api.cdp.coinbase.com/platform/v2/x402"

_CORRELATION_CONTEXT = {
    "sdk_language": "python",
    "source": "x402",
    "source_version": "1",
}


def correlation_header() -> str:
    return ",".join(f"{key}={quote(value)}" for key, value in _CORRELATION_CONTEXT.items())


# ============================================================================
# Auth Provider Protocol
# ============================================================================


@dataclass
class AuthHeaders:
    """Authentication headers for facilitator endpoints."""

    verify: dict[str, str] = field(default_factory=dict)
    settle: dict[str, str] = field(default_factory=dict)
    accepts: dict[str, str] = field(default_factory=dict)


class AuthProvider(Protocol):
    """Generates authentication headers for facilitator requests."""

    def get_auth_headers(self) -> AuthHeaders:
        """Get authentication headers for each endpoint."""
        ...


class CreateHeadersAuthProvider:
    """AuthProvider that wraps a create_headers callable."""

    def __init__(self, create_headers: Callable[[], dict[str, dict[str, str]]]) -> None:
        self._create_headers = create_headers

    def get_auth_headers(self) -> AuthHeaders:
        result = self._create_headers()
        return AuthHeaders(
            verify=result.get("verify", {}),
            settle=result.get("settle", {}),
            accepts=result.get("accepts", {}),
        )


class CdpAuthProvider:
    """Auth headers for the Coinbase CDP facilitator.

    Each endpoint gets its own short-lived bearer token from
    ``cdp.auth.utils.http.get_auth_headers``, scoped to the request method,
    host and path.

    Args:
        api_key_id: CDP API key id.
        api_key_secret: CDP API key secret (PEM EC key or base64 Ed25519 key).
        base_url: Facilitator base URL the tokens are scoped to.
    """

    def __init__(
        self, api_key_id: str, api_key_secret: str, base_url: str = CDP_FACILITATOR_URL
    ) -> None:
        self._api_key_id = api_key_id
        self._api_key_secret = api_key_secret
        parsed = urlparse(base_url)
        self._host = parsed.netloc
        self._path = parsed.path.rstrip("/")

    def _headers_for(self, method: str, endpoint: str) -> dict[str, str]:
        options = GetAuthHeadersOptions(
            api_key_id=self._api_key_id,
            api_key_secret=self._api_key_secret,
            request_host=self._host,
            request_path=f"{self._path}/{endpoint}",
            request_method=method,
            source=_CORRELATION_CONTEXT["source"],
            source_version=_CORRELATION_CONTEXT["source_version"],
        )
        try:
            return get_auth_headers(options)
        except ValueError as e:
            raise InvalidKeyFormatError(f"CDP API key secret could not sign a token: {e}") from e

    def get_auth_headers(self) -> AuthHeaders:
        return AuthHeaders(
            verify=self._headers_for("POST", "verify"),
            settle=self._headers_for("POST", "settle"),
            accepts=self._headers_for("POST", "accepts"),
        )


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class FacilitatorConfig:
    """Configuration for the HTTP facilitator client."""

    url: str = DEFAULT_FACILITATOR_URL
    timeout: float = 30.0
    http_client: Any = None  # Optional httpx.AsyncClient
    auth_provider: Optional[AuthProvider] = None


@dataclass
class FacilitatorVerifyResponse:
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Response interpretation
# ============================================================================


def interpret_settle_response(data: Any, network: Optional[str] = None) -> SettlementOutcome:
    """Normalise a facilitator ``/settle`` response.

    Success is read, in priority order, from ``success``, ``paymentValid``
    or ``paymentResponse.status``; only ``true``/``true``/``200`` count.
    A response carrying none of them is a failure.
    """
    if not isinstance(data, dict):
        return SettlementOutcome(
            success=False,
            error="Facilitator response is not a JSON object",
            network=network,
            raw={"response": data},
        )

    payment_response = data.get("paymentResponse")
    if not isinstance(payment_response, dict):
        payment_response = {}

    # the first signal present decides; a later one never overrides it
    if "success" in data:
        success = data["success"] is True
    elif "paymentValid" in data:
        success = data["paymentValid"] is True
    elif "status" in payment_response:
        success = payment_response["status"] == 200
    else:
        success = False

    transaction = data.get("transaction")
    if isinstance(transaction, dict):
        tx_hash = transaction.get("hash") or transaction.get("signature")
    elif isinstance(transaction, str) and transaction:
        tx_hash = transaction
    else:
        tx_hash = None
    tx_hash = tx_hash or data.get("txHash") or payment_response.get("txHash")

    error = data.get("errorReason") or data.get("error") or data.get("message")
    if not success and not error:
        error = "Facilitator did not confirm settlement"

    return SettlementOutcome(
        success=success,
        tx_hash=tx_hash,
        error=None if success else str(error),
        network=data.get("network") or network,
        raw=data,
    )


def _decode_json(response: httpx.Response, endpoint: str) -> Any:
    if not response.is_success:
        raise UpstreamServiceError(
            f"Facilitator {endpoint} failed ({response.status_code}): {response.text}",
            status_code=response.status_code,
            body=response.text,
            url=str(response.request.url),
        )
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamServiceError(
            f"Facilitator {endpoint} returned invalid JSON ({response.status_code}): {response.text}",
            status_code=response.status_code,
            body=response.text,
            url=str(response.request.url),
        ) from e


# ============================================================================
# HTTP Facilitator Client
# ============================================================================


class FacilitatorClient:
    """Async client for a remote x402 facilitator."""

    def __init__(
        self,
        config: Union[FacilitatorConfig, None] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        config = config or FacilitatorConfig()
        self._url = config.url.rstrip("/")
        self._timeout = config.timeout
        self._auth_provider = config.auth_provider
        self._http_client = config.http_client
        self._owns_client = config.http_client is None
        self._logger = logger or logging.getLogger(__name__)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> FacilitatorClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def url(self) -> str:
        return self._url

    def _headers(self, endpoint: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Correlation-Context": correlation_header(),
        }
        if self._auth_provider:
            headers.update(getattr(self._auth_provider.get_auth_headers(), endpoint))
        return headers

    @staticmethod
    def _request_body(
        envelope: Union[PaymentPayload, dict[str, Any]],
        requirement: PaymentRequirements,
    ) -> dict[str, Any]:
        if isinstance(envelope, PaymentPayload):
            envelope = envelope.to_wire()
        else:
            envelope = dict(envelope)
        version = envelope.get("x402Version", X402_VERSION)
        try:
            version = int(version)
        except (TypeError, ValueError):
            version = X402_VERSION
        envelope["x402Version"] = version
        return {
            "x402Version": version,
            "paymentPayload": envelope,
            "paymentRequirements": requirement.model_dump(by_alias=True, exclude_none=True),
        }

    async def settle(
        self,
        envelope: Union[PaymentPayload, dict[str, Any]],
        requirement: PaymentRequirements,
        raw_header: Optional[str] = None,
    ) -> SettlementOutcome:
        """Settle a payment with the facilitator.

        Args:
            envelope: Payment envelope, typed or as decoded JSON
            requirement: Requirement the envelope was verified against
            raw_header: Original X-PAYMENT header, forwarded when given

        Returns:
            SettlementOutcome; ``success`` is False unless the facilitator
            signalled success explicitly.

        Raises:
            UpstreamServiceError: On a non-2xx response, or a 2xx response
                whose body is not JSON.
        """
        body = self._request_body(envelope, requirement)
        if raw_header:
            body["paymentHeader"] = raw_header
        if is_solana_network(requirement.network):
            transaction = (body["paymentPayload"].get("payload") or {}).get("transaction")
            if transaction:
                body["transaction"] = transaction

        self._logger.info(
            "Settling payment on %s (%s atomic units to %s) via %s",
            requirement.network,
            requirement.max_amount_required,
            requirement.pay_to,
            self._url,
        )
        response = await self._get_client().post(
            f"{self._url}/settle", headers=self._headers("settle"), json=body
        )
        data = _decode_json(response, "settle")
        outcome = interpret_settle_response(data, network=requirement.network)
        if outcome.success:
            self._logger.info("Settlement succeeded on %s: %s", requirement.network, outcome.tx_hash)
        else:
            self._logger.warning("Settlement not confirmed on %s: %s", requirement.network, outcome.error)
        return outcome

    async def verify(
        self,
        envelope: Union[PaymentPayload, dict[str, Any]],
        requirement: PaymentRequirements,
    ) -> FacilitatorVerifyResponse:
        """Ask the facilitator to verify a payment without settling it.

        Raises:
            UpstreamServiceError: On a non-2xx or non-JSON response.
        """
        body = self._request_body(envelope, requirement)
        response = await self._get_client().post(
            f"{self._url}/verify", headers=self._headers("verify"), json=body
        )
        data = _decode_json(response, "verify")
        if not isinstance(data, dict):
            return FacilitatorVerifyResponse(
                is_valid=False, invalid_reason="Facilitator response is not a JSON object"
            )
        return FacilitatorVerifyResponse(
            is_valid=data.get("isValid") is True,
            invalid_reason=data.get("invalidReason"),
            payer=data.get("payer"),
            raw=data,
        )

    async def accepts(
        self, requirements: Union[PaymentRequirementSet, list[PaymentRequirements]]
    ) -> PaymentRequirementSet:
        """Let the facilitator enrich requirements (fee payer, blockhash...).

        Solana settlement needs the facilitator's fee payer in ``extra``.
        When the call fails the requirements are returned unchanged.
        """
        requirements = (
            requirements
            if isinstance(requirements, PaymentRequirementSet)
            else PaymentRequirementSet(requirements)
        )
        body = {
            "x402Version": X402_VERSION,
            "accepts": [r.model_dump(by_alias=True, exclude_none=True) for r in requirements],
        }
        try:
            response = await self._get_client().post(
                f"{self._url}/accepts", headers=self._headers("accepts"), json=body
            )
            data = _decode_json(response, "accepts")
        except (httpx.HTTPError, UpstreamServiceError) as e:
            self._logger.warning("Facilitator accepts failed, using requirements as-is: %s", e)
            return requirements

        enriched = data.get("accepts") if isinstance(data, dict) else None
        if not isinstance(enriched, list):
            self._logger.warning("Facilitator accepts returned no requirements, using requirements as-is")
            return requirements

        by_network = {
            item.get("network", "").lower(): item for item in enriched if isinstance(item, dict)
        }
        merged = []
        for requirement in requirements:
            item = by_network.get(requirement.network.lower())
            if item and isinstance(item.get("extra"), dict):
                extra = dict(requirement.extra or {})
                extra.update(item["extra"])
                requirement = requirement.model_copy(update={"extra": extra})
            merged.append(requirement)
        return PaymentRequirementSet(merged)
