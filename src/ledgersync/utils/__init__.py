"""Utility functions for ledgersync."""

from ledgersync.utils.parsing import (
    b58decode,
    is_valid_solana_address,
    mask_address,
    parse_decimal,
    parse_epoch,
    to_epoch,
)

__all__ = [
    "b58decode",
    "is_valid_solana_address",
    "mask_address",
    "parse_decimal",
    "parse_epoch",
    "to_epoch",
]
