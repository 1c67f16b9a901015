"""Exception hierarchy for x402_custody."""

from __future__ import annotations

from typing import Any, Optional


class X402CustodyError(Exception):
    """Base class for all x402_custody errors."""

    pass


# ============================================================================
# Input format errors (user-correctable, never retried)
# ============================================================================


class InvalidInputFormatError(X402CustodyError, ValueError):
    """Raised when a key, address, header or token reference is malformed."""

    pass


class InvalidKeyFormatError(InvalidInputFormatError):
    """Raised when a secret does not match any supported key family."""

    pass


class InvalidCharacterError(InvalidInputFormatError):
    """Raised when a Base58 string contains a character outside the alphabet."""

    def __init__(self, character: str, position: int) -> None:
        self.character = character
        self.position = position
        super().__init__(f"Invalid Base58 character {character!r} at position {position}")


class InvalidSeedLengthError(InvalidInputFormatError):
    """Raised when an Ed25519 seed is not 32 bytes."""

    pass


class InvalidSecretKeyLengthError(InvalidInputFormatError):
    """Raised when an Ed25519 secret key is not 64 bytes."""

    pass


class InvalidPaymentHeaderError(InvalidInputFormatError):
    """Raised when an X-PAYMENT header cannot be decoded into a JSON object."""

    pass


class InvalidTokenReferenceError(InvalidInputFormatError):
    """Raised when a token reference is not of the form ``network:token``."""

    pass


# ============================================================================
# Configuration errors
# ============================================================================


class ConfigurationError(X402CustodyError):
    """Raised when user-supplied rules or settings are inconsistent."""

    pass


class DuplicateNetworkRequirementError(ConfigurationError):
    """Raised when two payment requirements target the same network."""

    def __init__(self, network: str) -> None:
        self.network = network
        super().__init__(
            f"Only one payment requirement per network is allowed, got duplicate for {network}"
        )


class UnsupportedTokenError(ConfigurationError):
    """Raised when a token reference does not resolve against the token catalog."""

    pass


class InvalidAmountError(ConfigurationError):
    """Raised when a payment amount is not a positive finite number."""

    pass


# ============================================================================
# Upstream service errors (propagated with status and body, never retried)
# ============================================================================


class UpstreamServiceError(X402CustodyError):
    """Raised when the wallet backend or facilitator answers with an error.

    Attributes:
        status_code: HTTP status of the response.
        body: Raw response text.
        url: Request URL.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        url: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(message)


# ============================================================================
# Protocol violations (fatal)
# ============================================================================


class ProtocolViolationError(X402CustodyError):
    """Raised when a collaborator breaks the expected protocol."""

    pass


class NoApprovalFoundError(ProtocolViolationError):
    """Raised when a transaction carries no pending approval although one is needed."""

    pass


class ShapeMismatchError(ProtocolViolationError):
    """Raised when a payment envelope does not have its network's shape.

    Attributes:
        errors: One message per missing or mistyped field.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class TransactionIdNotFoundError(ProtocolViolationError):
    """Raised when no on-chain transaction id can be found after approval."""

    pass


# ============================================================================
# Flow errors
# ============================================================================


class PollingError(X402CustodyError):
    """Raised when an I/O error interrupts status polling.

    The original error is available as ``__cause__``.
    """

    def __init__(self, message: str, transaction_id: Optional[str] = None) -> None:
        self.transaction_id = transaction_id
        super().__init__(message)


class NoAffordableRuleError(X402CustodyError):
    """Raised when every payer rule was skipped.

    Attributes:
        reasons: Skip reason per rule, in rule order.
    """

    def __init__(self, reasons: list[str]) -> None:
        self.reasons = list(reasons)
        detail = "; ".join(self.reasons) if self.reasons else "no payer rules configured"
        super().__init__(f"No payer rule can afford any payment requirement: {detail}")


class InsufficientBalanceError(X402CustodyError):
    """Raised when a wallet cannot cover a payout."""

    def __init__(self, required: Any, available: Any, token: str) -> None:
        self.required = required
        self.available = available
        self.token = token
        super().__init__(
            f"Insufficient balance. Required: {required} {token}, Available: {available} {token}"
        )


class UnsupportedAlgorithmError(X402CustodyError):
    """Raised when the runtime lacks a required signature primitive, or a key
    family cannot perform the requested kind of signature."""

    pass
