"""Parsing helpers for provider payloads."""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(B58_ALPHABET)}

SOLANA_PUBKEY_LENGTH = 32


def parse_decimal(value: Any) -> Decimal | None:
    """
    Parse a provider amount to Decimal.

    Handles:
    - Numeric strings ("-12.34", "1,234.56")
    - ints and floats (converted through str to avoid binary noise)

    Args:
        value: Raw value from a JSON payload

    Returns:
        Decimal if successful, None otherwise
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        value = str(value)

    if not isinstance(value, str):
        return None

    value = value.strip().replace(",", "")
    if not value:
        return None

    try:
        result = Decimal(value)
    except InvalidOperation:
        return None

    return result if result.is_finite() else None


def parse_epoch(value: Any) -> datetime | None:
    """Convert a Unix timestamp in seconds to an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def to_epoch(value: datetime) -> int:
    """Convert a datetime to whole Unix seconds (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def b58decode(value: str) -> bytes:
    """
    Decode a base58 (Bitcoin alphabet) string.

    Raises:
        ValueError: If the string contains a character outside the alphabet
    """
    number = 0
    for char in value:
        try:
            number = number * 58 + _B58_INDEX[char]
        except KeyError:
            raise ValueError(f"Invalid base58 character: {char!r}") from None

    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    leading_zeros = len(value) - len(value.lstrip("1"))
    return b"\x00" * leading_zeros + body


def is_valid_solana_address(address: str) -> bool:
    """Return True if address is a base58 string encoding a 32-byte public key."""
    if not isinstance(address, str) or not 32 <= len(address) <= 44:
        return False
    try:
        return len(b58decode(address)) == SOLANA_PUBKEY_LENGTH
    except ValueError:
        return False


def mask_address(address: str) -> str:
    """Shorten an address for display, keeping the first and last 4 characters."""
    if len(address) <= 8:
        return address
    return f"{address[:4]}...{address[-4:]}"
