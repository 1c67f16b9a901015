"""Async HTTP client for the custodial wallet API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union
from urllib.parse import quote

import httpx

from ..chains import Environment
from ..errors import UpstreamServiceError

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://www.crossmint.com/api"
STAGING_BASE_URL = "https://staging.crossmint.com/api"
WALLETS_API_VERSION = "2025-06-09"


def _segment(value: str) -> str:
    return quote(str(value), safe="")


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class WalletApiConfig:
    """Configuration for the custodial wallet API client.

    ``base_url`` defaults to the production or staging host for
    ``environment``.
    """

    api_key: str
    environment: Union[Environment, str] = Environment.STAGING
    base_url: Optional[str] = None
    api_version: str = WALLETS_API_VERSION
    timeout: float = 30.0
    http_client: Any = None  # Optional httpx.AsyncClient

    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        if Environment.parse(self.environment) is Environment.PRODUCTION:
            return PRODUCTION_BASE_URL
        return STAGING_BASE_URL


@dataclass
class TokenBalance:
    """Balance of one token in a wallet."""

    token: str
    atomic: int
    decimals: int
    amount: Optional[str] = None
    raw: Optional[dict[str, Any]] = None


def _balance_entries(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        for key in ("balances", "data", "items"):
            value = data.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return []


def parse_token_balance(
    data: Any, token: str, default_decimals: int = 6
) -> Optional[TokenBalance]:
    """Extract one token's balance from a balances response.

    The list may sit at the top level or under ``balances``, ``data`` or
    ``items``. ``rawAmount`` is preferred; otherwise the decimal ``amount``
    (or ``balance``) is scaled by the token's decimals. The entry whose
    ``symbol`` or ``token`` matches is used; when none matches the token is
    not reported and None is returned.
    """
    wanted = token.lower()
    entry = next(
        (
            e
            for e in _balance_entries(data)
            if str(e.get("symbol", "")).lower() == wanted or str(e.get("token", "")).lower() == wanted
        ),
        None,
    )
    if entry is None:
        return None

    try:
        decimals = int(entry.get("decimals", default_decimals))
    except (TypeError, ValueError):
        decimals = default_decimals

    raw_amount = entry.get("rawAmount")
    human = entry.get("amount", entry.get("balance"))
    try:
        if raw_amount is not None and str(raw_amount).strip() != "":
            atomic = int(str(raw_amount))
        elif human is not None:
            atomic = int(Decimal(str(human)) * (Decimal(10) ** decimals))
        else:
            atomic = 0
    except (InvalidOperation, ValueError):
        logger.warning("Unparseable balance entry for %s: %r", token, entry)
        return None

    return TokenBalance(
        token=token,
        atomic=atomic,
        decimals=decimals,
        amount=None if human is None else str(human),
        raw=entry,
    )


# ============================================================================
# Wallet API Client
# ============================================================================


class WalletApiClient:
    """Client for wallet, transaction, approval and balance endpoints.

    Non-2xx responses raise :class:`UpstreamServiceError` carrying the
    original status and body. Transport failures surface as ``httpx``
    errors.
    """

    def __init__(self, config: WalletApiConfig) -> None:
        self._config = config
        self._base_url = f"{config.resolved_base_url()}/{config.api_version}"
        self._http_client = config.http_client
        self._owns_client = config.http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._config.timeout)
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> WalletApiClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        headers = {
            "X-API-KEY": self._config.api_key,
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}/{path}"
        response = await self._get_client().request(
            method, url, headers=headers, json=json, params=params
        )
        if not response.is_success:
            logger.warning("Wallet API %s %s failed with %d", method, path, response.status_code)
            raise UpstreamServiceError(
                f"Wallet API {method} {path} failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
                url=url,
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamServiceError(
                f"Wallet API {method} {path} returned invalid JSON: {response.text}",
                status_code=response.status_code,
                body=response.text,
                url=url,
            ) from e

    # =========================================================================
    # Wallets
    # =========================================================================

    async def create_wallet(
        self,
        chain_type: str,
        admin_signer: dict[str, str],
        owner: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a smart wallet controlled by ``admin_signer``.

        Args:
            chain_type: ``solana`` or ``evm``
            admin_signer: Signer descriptor, see ``KeyMaterial.admin_signer``
            owner: Optional owner locator such as ``email:alice@example.com``
        """
        body: dict[str, Any] = {
            "type": "smart",
            "chainType": chain_type,
            "config": {"adminSigner": admin_signer},
        }
        if owner:
            body["owner"] = owner
        return await self._request("POST", "wallets", json=body)

    async def get_wallet(self, wallet: str) -> dict[str, Any]:
        return await self._request("GET", f"wallets/{_segment(wallet)}")

    async def get_balances(self, wallet: str, chains: str, tokens: str) -> Any:
        return await self._request(
            "GET",
            f"wallets/{_segment(wallet)}/balances",
            params={"chains": chains, "tokens": tokens},
        )

    async def get_token_balance(
        self, wallet: str, chain: str, token: str, default_decimals: int = 6
    ) -> Optional[TokenBalance]:
        """Fetch and parse one token's balance, or None when not reported."""
        data = await self.get_balances(wallet, chain, token)
        return parse_token_balance(data, token, default_decimals=default_decimals)

    # =========================================================================
    # Transactions
    # =========================================================================

    async def create_transaction(
        self,
        wallet: str,
        transaction: Union[str, dict[str, Any]],
        signer: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a transaction from a serialized transaction or call params."""
        params: dict[str, Any] = (
            {"transaction": transaction} if isinstance(transaction, str) else dict(transaction)
        )
        if signer:
            params["signer"] = signer
        return await self._request(
            "POST", f"wallets/{_segment(wallet)}/transactions", json={"params": params}
        )

    async def create_transfer(
        self, wallet: str, token: str, recipient: str, amount: str
    ) -> dict[str, Any]:
        """Create a token transfer.

        Args:
            wallet: Source wallet locator
            token: Token locator, ``<chain>:<symbol or address>``
            recipient: Recipient locator or address
            amount: Decimal amount in token units
        """
        return await self._request(
            "POST",
            f"wallets/{_segment(wallet)}/tokens/{_segment(token)}/transfers",
            json={"recipient": recipient, "amount": str(amount).strip()},
        )

    async def submit_approval(
        self, wallet: str, transaction_id: str, signer: str, signature: str
    ) -> dict[str, Any]:
        """Submit a signature for a pending approval.

        Args:
            signer: Signer locator, e.g. ``external-wallet:<address>``
        """
        body = {"approvals": [{"signer": signer, "signature": signature}]}
        return await self._request(
            "POST",
            f"wallets/{_segment(wallet)}/transactions/{_segment(transaction_id)}/approvals",
            json=body,
        )

    async def get_transaction(self, wallet: str, transaction_id: str) -> dict[str, Any]:
        return await self._request(
            "GET", f"wallets/{_segment(wallet)}/transactions/{_segment(transaction_id)}"
        )
