import base64
import binascii
import json
from typing import Any, Union

from x402_custody.errors import InvalidPaymentHeaderError
from x402_custody.types import PaymentPayload, PaymentResponseHeader


def safe_base64_encode(data: Union[str, bytes]) -> str:
    """Safely encode string or bytes to base64 string.

    Args:
        data: String or bytes to encode

    Returns:
        Base64 encoded string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def safe_base64_decode(data: str) -> str:
    """Safely decode base64 string to bytes and then to utf-8 string.

    Args:
        data: Base64 encoded string

    Returns:
        Decoded utf-8 string
    """
    return base64.b64decode(data).decode("utf-8")


def decode_payment_header(header: str) -> dict[str, Any]:
    """Decode an X-PAYMENT header into its JSON object.

    Only the transport encoding is checked: Base64, then UTF-8, then JSON.

    Args:
        header: Base64 encoded X-PAYMENT header

    Returns:
        The decoded envelope as a dict

    Raises:
        InvalidPaymentHeaderError: If any decoding step fails or the JSON is
            not an object.
    """
    if not header or not header.strip():
        raise InvalidPaymentHeaderError("Payment header is empty")
    try:
        decoded = base64.b64decode(header.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise InvalidPaymentHeaderError(f"Payment header is not valid base64: {e}") from e
    try:
        envelope = json.loads(decoded)
    except json.JSONDecodeError as e:
        raise InvalidPaymentHeaderError(f"Payment header is not valid JSON: {e}") from e
    if not isinstance(envelope, dict):
        raise InvalidPaymentHeaderError("Payment header must encode a JSON object")
    return envelope


def encode_payment_header(payload: Union[PaymentPayload, dict[str, Any]]) -> str:
    """Encode a payment envelope to an X-PAYMENT header value."""
    if isinstance(payload, PaymentPayload):
        payload = payload.to_wire()
    return safe_base64_encode(json.dumps(payload, separators=(",", ":")))


def encode_payment_response_header(
    success: bool, network: str, tx_hash: Union[str, None] = None
) -> str:
    """Encode the X-PAYMENT-RESPONSE header value.

    Args:
        success: Whether settlement succeeded
        network: Network the payment settled on
        tx_hash: Optional settlement transaction hash

    Returns:
        Base64 encoded string
    """
    header = PaymentResponseHeader(success=success, network_id=network, tx_hash=tx_hash)
    return safe_base64_encode(header.model_dump_json(by_alias=True, exclude_none=True))


def decode_payment_response_header(header: str) -> PaymentResponseHeader:
    """Decode an X-PAYMENT-RESPONSE header.

    Args:
        header: Base64 encoded header

    Returns:
        Decoded PaymentResponseHeader
    """
    json_str = safe_base64_decode(header)
    return PaymentResponseHeader.model_validate_json(json_str)
