"""Payment requirements built from payee rules and the token catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Iterator, Optional, Union

from .chains import Environment, KnownToken, TokenCatalog, find_token, normalize_network
from .errors import (
    DuplicateNetworkRequirementError,
    InvalidAmountError,
    InvalidTokenReferenceError,
    UnsupportedTokenError,
)
from .types import PaymentRequirements

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 6
DEFAULT_MAX_TIMEOUT_SECONDS = 60
# amounts at or above this are taken as already being atomic units
ATOMIC_THRESHOLD = 10**6

Amount = Union[int, float, str, Decimal]


@dataclass(frozen=True)
class TokenReference:
    network: str
    token: str

    def __str__(self) -> str:
        return f"{self.network}:{self.token}"


@dataclass(frozen=True)
class ResolvedToken:
    network: str
    token: KnownToken

    @property
    def asset(self) -> str:
        return self.token["address"]

    @property
    def decimals(self) -> int:
        return self.token["decimals"]


@dataclass(frozen=True)
class PayeeRule:
    """One accepted way to pay for a resource.

    Attributes:
        payment_token: Token reference, ``"<network>:<symbol or address>"``
        pay_to_address: Recipient address on that network
        payment_amount: Human amount (e.g. ``"0.01"``) or atomic units
    """

    payment_token: str
    pay_to_address: str
    payment_amount: Amount


def parse_token_reference(reference: str) -> TokenReference:
    """Split ``"network:token"`` into its parts.

    Raises:
        InvalidTokenReferenceError: If either part is missing.
    """
    if not isinstance(reference, str) or ":" not in reference:
        raise InvalidTokenReferenceError(
            f"Token reference must look like 'network:token', got {reference!r}"
        )
    network, token = reference.split(":", 1)
    network, token = network.strip(), token.strip()
    if not network or not token:
        raise InvalidTokenReferenceError(
            f"Token reference must look like 'network:token', got {reference!r}"
        )
    return TokenReference(network=network, token=token)


def resolve_token(
    reference: Union[str, TokenReference],
    catalog: TokenCatalog,
    environment: Union[str, Environment],
) -> ResolvedToken:
    """Resolve a token reference against the catalog.

    The generic network alias is mapped to the environment's concrete
    network first.

    Raises:
        InvalidTokenReferenceError: If the reference is malformed.
        UnsupportedTokenError: If the token is not in the catalog.
    """
    if isinstance(reference, str):
        reference = parse_token_reference(reference)
    network = normalize_network(reference.network, environment)
    token = find_token(catalog, network, reference.token)
    if token is None:
        raise UnsupportedTokenError(
            f"Token {reference.token!r} is not supported on {network}"
        )
    return ResolvedToken(network=network, token=token)


def to_atomic_units(amount: Amount, decimals: int = DEFAULT_DECIMALS) -> int:
    """Convert a payment amount to atomic units.

    Amounts of at least 10^6 are taken to be atomic already and floored.
    Smaller amounts are scaled by ``10**decimals`` and rounded half up.

    Raises:
        InvalidAmountError: If the amount is not a positive finite number.
    """
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"Invalid payment amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise InvalidAmountError(f"Payment amount must be a positive number, got {amount!r}")

    if value >= ATOMIC_THRESHOLD:
        return int(value.to_integral_value(rounding=ROUND_FLOOR))
    atomic = int((value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_HALF_UP))
    if atomic <= 0:
        raise InvalidAmountError(
            f"Payment amount {amount!r} is below the smallest unit of a {decimals}-decimal token"
        )
    return atomic


class PaymentRequirementSet:
    """Ordered payment requirements with at most one entry per network.

    Duplicates are rejected when the set is built.
    """

    def __init__(self, requirements: Iterable[PaymentRequirements] = ()) -> None:
        items: list[PaymentRequirements] = []
        seen: set[str] = set()
        for requirement in requirements:
            key = requirement.network.lower()
            if key in seen:
                raise DuplicateNetworkRequirementError(requirement.network)
            seen.add(key)
            items.append(requirement)
        self._items = tuple(items)

    def __iter__(self) -> Iterator[PaymentRequirements]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> PaymentRequirements:
        return self._items[index]

    def __repr__(self) -> str:
        return f"PaymentRequirementSet({[r.network for r in self._items]})"

    @property
    def networks(self) -> list[str]:
        return [r.network for r in self._items]

    def for_network(self, network: str) -> Optional[PaymentRequirements]:
        """Find the requirement for a network, case-insensitively."""
        wanted = (network or "").lower()
        for requirement in self._items:
            if requirement.network.lower() == wanted:
                return requirement
        return None

    def to_list(self) -> list[PaymentRequirements]:
        return list(self._items)


def build_payment_requirement(
    rule: PayeeRule,
    catalog: TokenCatalog,
    environment: Union[str, Environment],
    resource: str = "",
    description: str = "",
    mime_type: str = "application/json",
    max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS,
) -> PaymentRequirements:
    resolved = resolve_token(rule.payment_token, catalog, environment)
    amount = to_atomic_units(rule.payment_amount, resolved.decimals)
    extra = {
        "name": resolved.token["name"],
        "version": resolved.token["version"],
        "tokenName": resolved.token["symbol"].upper(),
        "decimals": resolved.decimals,
    }
    pay_to = rule.pay_to_address.strip()
    if not pay_to:
        raise InvalidTokenReferenceError(
            f"Payee rule for {rule.payment_token} has no pay-to address"
        )
    return PaymentRequirements(
        scheme="exact",
        network=resolved.network,
        max_amount_required=str(amount),
        resource=resource,
        description=description,
        mime_type=mime_type,
        pay_to=pay_to,
        max_timeout_seconds=max_timeout_seconds,
        asset=resolved.asset,
        extra=extra,
    )


def build_payment_requirements(
    rules: Iterable[PayeeRule],
    catalog: TokenCatalog,
    environment: Union[str, Environment],
    resource: str = "",
    description: str = "",
    mime_type: str = "application/json",
    max_timeout_seconds: int = DEFAULT_MAX_TIMEOUT_SECONDS,
) -> PaymentRequirementSet:
    """Build the requirements offered for one resource.

    Args:
        rules: Payee rules, one per accepted network
        catalog: Token catalog from :func:`get_supported_tokens`
        environment: Environment used to resolve network aliases
        resource: URL of the paid resource
        description: Human readable description
        mime_type: Resource MIME type
        max_timeout_seconds: Validity window given to payers

    Returns:
        PaymentRequirementSet in rule order

    Raises:
        DuplicateNetworkRequirementError: If two rules resolve to one network.
        UnsupportedTokenError: If a rule's token is not in the catalog.
        InvalidAmountError: If a rule's amount is not positive.
    """
    requirements = [
        build_payment_requirement(
            rule,
            catalog,
            environment,
            resource=resource,
            description=description,
            mime_type=mime_type,
            max_timeout_seconds=max_timeout_seconds,
        )
        for rule in rules
    ]
    requirement_set = PaymentRequirementSet(requirements)
    logger.debug(
        "Built %d payment requirement(s) for %s: %s",
        len(requirement_set),
        resource or "<resource>",
        ", ".join(requirement_set.networks),
    )
    return requirement_set
