from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

X402_VERSION = 1


class ChainFamily(str, Enum):
    """Key and signature family of a chain."""

    SOLANA_ED25519 = "solana-ed25519"
    EVM_SECP256K1_LEGACY = "evm-secp256k1"
    EVM_P256 = "evm-p256"


def is_solana_network(network: str) -> bool:
    """Solana networks are recognised by a case-insensitive ``solana`` substring."""
    return "solana" in (network or "").lower()


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# Payment requirements
# ============================================================================


class PaymentRequirements(_CamelModel):
    scheme: str = "exact"
    network: str
    max_amount_required: str
    resource: str = ""
    description: str = ""
    mime_type: str = "application/json"
    output_schema: Optional[Any] = None
    pay_to: str
    max_timeout_seconds: int = 60
    asset: str
    extra: Optional[dict[str, Any]] = None

    @field_validator("max_amount_required")
    def validate_max_amount_required(cls, v):
        try:
            int(v)
        except ValueError:
            raise ValueError(
                "max_amount_required must be an integer encoded as a string"
            )
        return v

    @property
    def atomic_amount(self) -> int:
        return int(self.max_amount_required)


class x402PaymentRequiredResponse(_CamelModel):
    x402_version: int = X402_VERSION
    accepts: list[PaymentRequirements]
    error: Optional[str] = None


# ============================================================================
# Payment envelope
# ============================================================================


class EIP3009Authorization(_CamelModel):
    from_: str = Field(alias="from")
    to: str
    value: str
    valid_after: str
    valid_before: str
    nonce: str

    @field_validator("value", "valid_after", "valid_before")
    def validate_integer_string(cls, v):
        try:
            int(v)
        except ValueError:
            raise ValueError("value must be an integer encoded as a string")
        return v


class EvmAuthorizationPayload(_CamelModel):
    signature: str
    authorization: EIP3009Authorization


class SvmTransactionPayload(_CamelModel):
    transaction: str


class PaymentPayload(_CamelModel):
    """The x402 envelope carried, Base64 encoded, in the X-PAYMENT header."""

    x402_version: int = X402_VERSION
    scheme: str = "exact"
    network: str
    payload: Union[EvmAuthorizationPayload, SvmTransactionPayload]

    @property
    def is_solana(self) -> bool:
        return is_solana_network(self.network)

    def to_wire(self) -> dict[str, Any]:
        """Dump with wire (camelCase) field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# Settlement
# ============================================================================


class SettlementOutcome(BaseModel):
    """Normalised result of a facilitator ``/settle`` call.

    ``success`` is only true when the facilitator signalled it explicitly.
    """

    success: bool = False
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    network: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class PaymentResponseHeader(_CamelModel):
    success: bool
    network_id: str
    tx_hash: Optional[str] = None


# ============================================================================
# Custodial wallet records
# ============================================================================


class TransactionStatus(str, Enum):
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting-approval"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @classmethod
    def is_terminal(cls, status: Optional[str]) -> bool:
        return status in (cls.SUCCESS.value, cls.FAILED.value)


class PendingApproval(BaseModel):
    """An approval the wallet backend is waiting for."""

    transaction_id: str
    message: str
    signer_address: str


class TransactionRecord(BaseModel):
    """Last observed state of a custodial wallet transaction."""

    id: str
    status: Optional[str] = None
    on_chain_tx_id: Optional[str] = None
    attempts: int = 0
    exhausted: bool = False
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return TransactionStatus.is_terminal(self.status)

    @property
    def succeeded(self) -> bool:
        return self.status == TransactionStatus.SUCCESS.value
