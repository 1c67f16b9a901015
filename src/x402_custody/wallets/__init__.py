from .approvals import (
    ApprovalFlow,
    ApprovalResult,
    ApprovalState,
    PollingConfig,
    extract_pending_approval,
    signer_address_of,
)
from .client import TokenBalance, WalletApiClient, WalletApiConfig, parse_token_balance
from .extractors import TX_ID_EXTRACTORS, first_match
from .locators import WalletRef, build_recipient_locator, build_wallet_locator
from .payouts import PayoutMode, PayoutRecipient, PayoutResult, PayoutRouter

__all__ = [
    "ApprovalFlow",
    "ApprovalResult",
    "ApprovalState",
    "PollingConfig",
    "extract_pending_approval",
    "signer_address_of",
    "TokenBalance",
    "WalletApiClient",
    "WalletApiConfig",
    "parse_token_balance",
    "TX_ID_EXTRACTORS",
    "first_match",
    "WalletRef",
    "build_recipient_locator",
    "build_wallet_locator",
    "PayoutMode",
    "PayoutRecipient",
    "PayoutResult",
    "PayoutRouter",
]
