"""Base58 codec using the Bitcoin alphabet."""

from __future__ import annotations

from typing import Union

from .errors import InvalidCharacterError

ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

_INDEX = {char: index for index, char in enumerate(ALPHABET)}


def encode(data: Union[bytes, bytearray]) -> str:
    """Encode bytes to a Base58 string.

    Each leading zero byte becomes a leading ``1``. Empty input encodes to
    the empty string.

    Args:
        data: Bytes to encode

    Returns:
        Base58 string
    """
    data = bytes(data)
    if not data:
        return ""

    zeros = 0
    while zeros < len(data) and data[zeros] == 0:
        zeros += 1

    # little-endian base-58 digits
    digits: list[int] = []
    for byte in data[zeros:]:
        carry = byte
        for i in range(len(digits)):
            carry += digits[i] << 8
            digits[i] = carry % 58
            carry //= 58
        while carry:
            digits.append(carry % 58)
            carry //= 58

    return ALPHABET[0] * zeros + "".join(ALPHABET[d] for d in reversed(digits))


def decode(text: str) -> bytes:
    """Decode a Base58 string to bytes.

    Args:
        text: Base58 string

    Returns:
        Decoded bytes

    Raises:
        InvalidCharacterError: If the string contains a character outside
            the alphabet.
    """
    if not text:
        return b""

    zeros = 0
    while zeros < len(text) and text[zeros] == ALPHABET[0]:
        zeros += 1

    # little-endian base-256 digits
    out: list[int] = []
    for position, char in enumerate(text[zeros:], start=zeros):
        value = _INDEX.get(char)
        if value is None:
            raise InvalidCharacterError(char, position)
        carry = value
        for i in range(len(out)):
            carry += out[i] * 58
            out[i] = carry & 0xFF
            carry >>= 8
        while carry:
            out.append(carry & 0xFF)
            carry >>= 8

    return b"\x00" * zeros + bytes(reversed(out))


def is_valid(text: str) -> bool:
    """Check whether a string is non-empty and only uses the Base58 alphabet."""
    return bool(text) and all(char in _INDEX for char in text)
