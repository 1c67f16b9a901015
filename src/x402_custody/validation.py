"""Decode, shape-check and verify x402 payment envelopes."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from .encoding import decode_payment_header
from .errors import ShapeMismatchError
from .requirements import PaymentRequirementSet
from .types import (
    EIP3009Authorization,
    EvmAuthorizationPayload,
    PaymentPayload,
    PaymentRequirements,
    SvmTransactionPayload,
    is_solana_network,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_FIELDS = ("from", "to", "value", "validAfter", "validBefore", "nonce")

# (path, expected type name)
_COMMON_SHAPE = (
    ("x402Version", "number"),
    ("scheme", "string"),
    ("network", "string"),
)
_SOLANA_SHAPE = (("payload.transaction", "string"),)
_EVM_SHAPE = (("payload.signature", "string"),) + tuple(
    (f"payload.authorization.{name}", "string") for name in AUTHORIZATION_FIELDS
)


@dataclass
class ShapeValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class VerificationResult:
    """Outcome of semantic verification.

    Attributes:
        valid: True when no check failed.
        errors: Every failed check, in check order.
        requirement: Requirement matched by network, if any.
    """

    valid: bool
    errors: list[str] = field(default_factory=list)
    requirement: Optional[PaymentRequirements] = None

    @property
    def error_message(self) -> str:
        return "; ".join(self.errors)


def parse_payment_header(header: str) -> dict[str, Any]:
    """Base64 decode, UTF-8 decode and JSON parse an X-PAYMENT header.

    No semantic checks happen here.

    Raises:
        InvalidPaymentHeaderError: If the header cannot be decoded.
    """
    return decode_payment_header(header)


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _check_path(envelope: Any, path: str, expected: str) -> Optional[str]:
    current = envelope
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current or current[part] is None:
            return f"Missing field: {path}"
        current = current[part]
    actual = _type_name(current)
    if actual != expected:
        return f"Invalid type at {path}: expected {expected}, got {actual}"
    return None


def validate_shape(envelope: Any) -> ShapeValidation:
    """Check that an envelope has the fields its network family requires.

    Solana envelopes (``network`` contains ``solana``, any case) need
    ``payload.transaction``; every other network needs
    ``payload.signature`` and the six ``payload.authorization`` fields.
    All problems are reported, not just the first.
    """
    if not isinstance(envelope, dict):
        return ShapeValidation(valid=False, errors=["Payment envelope must be a JSON object"])

    network = envelope.get("network")
    family_shape = (
        _SOLANA_SHAPE
        if isinstance(network, str) and is_solana_network(network)
        else _EVM_SHAPE
    )
    errors = [
        error
        for path, expected in _COMMON_SHAPE + family_shape
        if (error := _check_path(envelope, path, expected)) is not None
    ]
    return ShapeValidation(valid=not errors, errors=errors)


def _loc(parts: tuple) -> str:
    return ".".join(str(part) for part in parts)


def to_payment_payload(envelope: dict[str, Any]) -> PaymentPayload:
    """Turn a shape-checked envelope into a typed PaymentPayload.

    Raises:
        ShapeMismatchError: If the envelope does not pass shape validation or
            a field holds a value its type rejects.
    """
    shape = validate_shape(envelope)
    if not shape.valid:
        raise ShapeMismatchError(shape.errors)

    body = envelope["payload"]
    if is_solana_network(envelope["network"]):
        payload: Union[SvmTransactionPayload, EvmAuthorizationPayload] = SvmTransactionPayload(
            transaction=body["transaction"]
        )
    else:
        try:
            authorization = EIP3009Authorization.model_validate(body["authorization"])
        except ValidationError as e:
            raise ShapeMismatchError(
                [
                    f"Invalid value at payload.authorization.{_loc(err['loc'])}: {err['msg']}"
                    for err in e.errors()
                ]
            ) from e
        payload = EvmAuthorizationPayload(signature=body["signature"], authorization=authorization)

    try:
        x402_version = int(envelope["x402Version"])
    except (ValueError, OverflowError) as e:
        raise ShapeMismatchError([f"Invalid value at x402Version: {e}"]) from e
    return PaymentPayload(
        x402_version=x402_version,
        scheme=envelope["scheme"],
        network=envelope["network"],
        payload=payload,
    )


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _verify_evm(
    authorization: dict[str, Any], requirement: PaymentRequirements, now: int
) -> list[str]:
    errors: list[str] = []

    value = _as_int(authorization.get("value"))
    required = int(requirement.max_amount_required)
    if value is None:
        errors.append(f"Invalid value: {authorization.get('value')!r} is not an integer")
    elif value < required:
        errors.append(f"Value too low: got {value}, requires at least {required}")

    to = str(authorization.get("to", ""))
    if to.lower() != requirement.pay_to.lower():
        errors.append(f"Invalid 'to' address: expected {requirement.pay_to}, got {to}")

    valid_after = _as_int(authorization.get("validAfter"))
    valid_before = _as_int(authorization.get("validBefore"))
    if valid_after is None or valid_before is None:
        errors.append("Invalid validity window: validAfter and validBefore must be integers")
    else:
        if now < valid_after:
            errors.append(f"Payment has not activated yet: validAfter {valid_after}, now {now}")
        if now > valid_before:
            errors.append(f"Payment has expired: validBefore {valid_before}, now {now}")
    return errors


def verify(
    envelope: Union[dict[str, Any], PaymentPayload],
    requirements: Union[PaymentRequirementSet, Iterable[PaymentRequirements]],
    now: Optional[int] = None,
) -> VerificationResult:
    """Verify an envelope against the requirements offered for a resource.

    The requirement is matched by network, case-insensitively. EVM
    envelopes are checked for amount, recipient and validity window against
    the server clock. Solana envelopes are only checked for a transaction;
    their amount and recipient are left to the facilitator.

    Args:
        envelope: Decoded envelope, or a typed PaymentPayload
        requirements: Requirements offered for the resource
        now: Unix time to check against; defaults to the current time

    Returns:
        VerificationResult with every failed check
    """
    if isinstance(envelope, PaymentPayload):
        envelope = envelope.to_wire()
    if not isinstance(requirements, PaymentRequirementSet):
        requirements = PaymentRequirementSet(requirements)
    now = int(time.time()) if now is None else now

    network = envelope.get("network") if isinstance(envelope, dict) else None
    requirement = requirements.for_network(network) if isinstance(network, str) else None
    if requirement is None:
        return VerificationResult(
            valid=False,
            errors=[f"Invalid or unsupported network: {network}"],
        )

    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        errors = ["Missing field: payload"]
    elif is_solana_network(requirement.network):
        errors = [] if payload.get("transaction") else ["Missing Solana transaction in payload"]
    elif not isinstance(payload.get("authorization"), dict):
        errors = ["Missing field: payload.authorization"]
    else:
        errors = _verify_evm(payload["authorization"], requirement, now)

    if errors:
        logger.info("Payment verification failed on %s: %s", requirement.network, "; ".join(errors))
    return VerificationResult(valid=not errors, errors=errors, requirement=requirement)
