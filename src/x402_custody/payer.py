"""Pick the first payer rule that can afford a resource, then pay with it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

import httpx

from .chains import Environment, TokenCatalog, get_supported_tokens
from .encoding import encode_payment_header
from .errors import (
    ConfigurationError,
    InvalidInputFormatError,
    InvalidKeyFormatError,
    NoAffordableRuleError,
    TransactionIdNotFoundError,
    UpstreamServiceError,
)
from .facilitator import FacilitatorClient
from .keys import KeyMaterial, resolve
from .requirements import PaymentRequirementSet, ResolvedToken, resolve_token
from .signing import build_transfer_authorization, sign_authorization
from .types import (
    X402_VERSION,
    EvmAuthorizationPayload,
    PaymentPayload,
    PaymentRequirements,
    SettlementOutcome,
    SvmTransactionPayload,
    is_solana_network,
)
from .wallets.approvals import ApprovalFlow, ApprovalResult
from .wallets.client import WalletApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayerRule:
    """One way the payer is willing to pay.

    Attributes:
        payment_token: Token reference, ``"<network>:<symbol or address>"``
        from_wallet: Wallet locator or address holding the funds
        private_key: Secret of the signer; never logged
    """

    payment_token: str
    from_wallet: str
    private_key: str = field(repr=False)


@dataclass
class Selection:
    """A rule that matched a requirement and can afford it."""

    rule: PayerRule
    index: int
    requirement: PaymentRequirements
    token: ResolvedToken
    available: int

    @property
    def required(self) -> int:
        return requirement_amount(self.requirement)


@dataclass
class PaymentResult:
    selection: Selection
    payload: PaymentPayload
    payment_header: str
    settlement: Optional[SettlementOutcome] = None
    transfer: Optional[ApprovalResult] = None

    @property
    def success(self) -> bool:
        return self.settlement is not None and self.settlement.success


def requirement_amount(requirement: PaymentRequirements) -> int:
    try:
        return int(requirement.max_amount_required)
    except (TypeError, ValueError):
        return 0


def _same_asset(network: str, left: str, right: str) -> bool:
    # Solana mints are case sensitive
    if is_solana_network(network):
        return left == right
    return left.lower() == right.lower()


def find_requirement(
    token: ResolvedToken, requirements: Iterable[PaymentRequirements]
) -> Optional[PaymentRequirements]:
    """Requirement on the token's network for the token's asset, if any."""
    for requirement in requirements:
        if requirement.network.lower() != token.network.lower():
            continue
        if not _same_asset(token.network, requirement.asset, token.asset):
            continue
        if requirement_amount(requirement) <= 0:
            continue
        return requirement
    return None


class PayerSelector:
    """Chooses a payer rule by live wallet balance and pays with it.

    Rules are tried in order. A rule is skipped when it cannot be resolved,
    matches no requirement or cannot afford it. EVM rules are also skipped
    when the signer's address is not the rule's wallet, since the signed
    authorization spends from the signer. Only running out of rules is an
    error.

    Args:
        wallet_client: Wallet API client used for balances
        approval_flow: Flow driving custodial transfers (Solana rules)
        facilitator: Facilitator used to settle the payment
        environment: Environment used to resolve network aliases
        catalog: Token catalog; defaults to the environment's catalog
        logger: Logger; defaults to this module's logger
    """

    def __init__(
        self,
        wallet_client: WalletApiClient,
        approval_flow: ApprovalFlow,
        facilitator: Optional[FacilitatorClient] = None,
        environment: Union[str, Environment] = Environment.STAGING,
        catalog: Optional[TokenCatalog] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._wallets = wallet_client
        self._flow = approval_flow
        self._facilitator = facilitator
        self._environment = Environment.parse(environment)
        self._catalog = catalog if catalog is not None else get_supported_tokens(self._environment)
        self._logger = logger or logging.getLogger(__name__)

    def _check_evm_signer(self, rule: PayerRule) -> None:
        key = resolve(rule.private_key)
        if key.address and key.address.lower() != rule.from_wallet.lower():
            raise ConfigurationError(
                f"EVM signer {key.address} is not the paying wallet {rule.from_wallet}"
            )

    async def _available(self, wallet: str, token: ResolvedToken) -> Optional[int]:
        balance = await self._wallets.get_token_balance(
            wallet, token.network, token.token["symbol"], default_decimals=token.decimals
        )
        return None if balance is None else balance.atomic

    async def select(
        self,
        rules: Sequence[PayerRule],
        requirements: Union[PaymentRequirementSet, Iterable[PaymentRequirements]],
    ) -> Selection:
        """Return the first rule that matches a requirement and can afford it.

        Raises:
            NoAffordableRuleError: If no rule qualifies; carries one reason
                per rule.
        """
        requirements = list(requirements)
        reasons: list[str] = []

        for index, rule in enumerate(rules):
            label = f"Rule {index + 1} ({rule.payment_token})"
            try:
                token = resolve_token(rule.payment_token, self._catalog, self._environment)
            except (InvalidInputFormatError, ConfigurationError) as e:
                reasons.append(f"{label}: {e}")
                continue

            requirement = find_requirement(token, requirements)
            if requirement is None:
                reasons.append(f"{label}: no requirement for {token.asset} on {token.network}")
                continue

            # EIP-3009 moves funds out of the signer's own address
            if not is_solana_network(token.network):
                try:
                    self._check_evm_signer(rule)
                except (InvalidKeyFormatError, ConfigurationError) as e:
                    self._logger.warning("%s skipped: %s", label, e)
                    reasons.append(f"{label}: {e}")
                    continue

            try:
                available = await self._available(rule.from_wallet, token)
            except (UpstreamServiceError, httpx.HTTPError) as e:
                self._logger.warning("%s: balance lookup failed: %s", label, e)
                reasons.append(f"{label}: balance lookup failed: {e}")
                continue

            required = requirement_amount(requirement)
            if available is None or available < required:
                reasons.append(
                    f"{label}: insufficient balance, required {required}, available {available or 0}"
                )
                self._logger.info(
                    "%s skipped: balance %s below %s", label, available or 0, required
                )
                continue

            self._logger.info("%s selected for %s on %s", label, required, token.network)
            return Selection(
                rule=rule,
                index=index,
                requirement=requirement,
                token=token,
                available=available,
            )

        raise NoAffordableRuleError(reasons)

    async def _solana_payload(
        self, selection: Selection, key: KeyMaterial
    ) -> tuple[SvmTransactionPayload, ApprovalResult]:
        requirement = selection.requirement
        amount = Decimal(selection.required) / (Decimal(10) ** selection.token.decimals)
        transfer = await self._flow.transfer(
            selection.rule.from_wallet,
            f"{selection.token.network}:{selection.token.token['symbol']}",
            requirement.pay_to,
            format(amount.normalize(), "f"),
            key,
            wait=True,
        )
        if not transfer.tx_id:
            raise TransactionIdNotFoundError(
                f"No on-chain transaction id for transfer {transfer.transaction_id}"
            )
        return SvmTransactionPayload(transaction=transfer.tx_id), transfer

    def _evm_payload(self, selection: Selection, key: KeyMaterial) -> EvmAuthorizationPayload:
        from_address = key.address or selection.rule.from_wallet
        authorization = build_transfer_authorization(from_address, selection.requirement)
        signature = sign_authorization(authorization, selection.requirement, key)
        return EvmAuthorizationPayload(signature=signature, authorization=authorization)

    async def authorize(
        self,
        rules: Sequence[PayerRule],
        requirements: Union[PaymentRequirementSet, Iterable[PaymentRequirements]],
    ) -> PaymentResult:
        """Select a rule and produce its signed X-PAYMENT header, without settling.

        Solana rules move the funds through a custodial transfer; the
        resulting on-chain id becomes ``payload.transaction``. EVM rules
        sign an EIP-3009 TransferWithAuthorization.

        Raises:
            NoAffordableRuleError: If no rule qualifies.
            TransactionIdNotFoundError: If a Solana transfer produced no
                on-chain id.
        """
        selection = await self.select(rules, requirements)
        requirement = selection.requirement
        key = resolve(selection.rule.private_key)

        transfer = None
        if is_solana_network(requirement.network):
            payload, transfer = await self._solana_payload(selection, key)
        else:
            payload = self._evm_payload(selection, key)

        envelope = PaymentPayload(
            x402_version=X402_VERSION,
            scheme=requirement.scheme,
            network=requirement.network,
            payload=payload,
        )
        return PaymentResult(
            selection=selection,
            payload=envelope,
            payment_header=encode_payment_header(envelope),
            transfer=transfer,
        )

    async def pay(
        self,
        rules: Sequence[PayerRule],
        requirements: Union[PaymentRequirementSet, Iterable[PaymentRequirements]],
    ) -> PaymentResult:
        """Select, sign and settle a payment through the facilitator.

        Raises:
            NoAffordableRuleError: If no rule qualifies.
            ConfigurationError: If the selector has no facilitator.
            UpstreamServiceError: If the facilitator call fails.
        """
        if self._facilitator is None:
            raise ConfigurationError("A facilitator is required to settle payments")
        result = await self.authorize(rules, requirements)
        result.settlement = await self._facilitator.settle(
            result.payload, result.selection.requirement, raw_header=result.payment_header
        )
        return result
