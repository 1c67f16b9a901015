"""x402-custody: custodial wallet approvals and x402 payments."""

# Keys and signing
from x402_custody.keys import KeyMaterial, detect_family, resolve, resolve_as
from x402_custody.signing import (
    build_transfer_authorization,
    sign_authorization,
    sign_message,
    sign_typed_data,
)

# Requirements and validation
from x402_custody.chains import Environment, get_chain_id, get_supported_tokens
from x402_custody.requirements import (
    PayeeRule,
    PaymentRequirementSet,
    build_payment_requirements,
    to_atomic_units,
)
from x402_custody.validation import parse_payment_header, validate_shape, verify
from x402_custody.encoding import (
    decode_payment_header,
    decode_payment_response_header,
    encode_payment_header,
    encode_payment_response_header,
)

# Settlement, payers and paywall
from x402_custody.facilitator import FacilitatorClient, FacilitatorConfig
from x402_custody.payer import PayerRule, PayerSelector, PaymentResult, Selection
from x402_custody.paywall import PaywallDecision, PaywallHandler, build_payment_required_response
from x402_custody.client import PaidResponse, X402PaymentClient
from x402_custody.config import Settings

# Wallets
from x402_custody.wallets import (
    ApprovalFlow,
    ApprovalResult,
    PollingConfig,
    PayoutRouter,
    WalletApiClient,
    WalletApiConfig,
)

# Types
from x402_custody.types import (
    ChainFamily,
    PaymentPayload,
    PaymentRequirements,
    SettlementOutcome,
    TransactionRecord,
    x402PaymentRequiredResponse,
)

from x402_custody.errors import X402CustodyError

__all__ = [
    "KeyMaterial",
    "detect_family",
    "resolve",
    "resolve_as",
    "build_transfer_authorization",
    "sign_authorization",
    "sign_message",
    "sign_typed_data",
    "Environment",
    "get_chain_id",
    "get_supported_tokens",
    "PayeeRule",
    "PaymentRequirementSet",
    "build_payment_requirements",
    "to_atomic_units",
    "parse_payment_header",
    "validate_shape",
    "verify",
    "decode_payment_header",
    "decode_payment_response_header",
    "encode_payment_header",
    "encode_payment_response_header",
    "FacilitatorClient",
    "FacilitatorConfig",
    "PayerRule",
    "PayerSelector",
    "PaymentResult",
    "Selection",
    "PaywallDecision",
    "PaywallHandler",
    "build_payment_required_response",
    "PaidResponse",
    "X402PaymentClient",
    "Settings",
    "ApprovalFlow",
    "ApprovalResult",
    "PollingConfig",
    "PayoutRouter",
    "WalletApiClient",
    "WalletApiConfig",
    "ChainFamily",
    "PaymentPayload",
    "PaymentRequirements",
    "SettlementOutcome",
    "TransactionRecord",
    "x402PaymentRequiredResponse",
    "X402CustodyError",
]
