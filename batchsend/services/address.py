"""Helpers for validating recipient addresses."""

from __future__ import annotations

import re
from functools import lru_cache

from eth_utils import is_checksum_address

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

ZERO_ADDRESS = "0x" + "0" * 40


@lru_cache(maxsize=1024)
def is_valid_evm_address(address: str) -> bool:
    """Return True for a well-formed 20-byte hex address.

    Mixed-case addresses must carry a valid EIP-55 checksum; all-lower and
    all-upper hex are accepted as-is.
    """
    if not address or not _EVM_ADDRESS_RE.match(address):
        return False
    body = address[2:]
    if body.islower() or body.isupper() or body.isdigit():
        return True
    return is_checksum_address(address)


class AddressValidator:
    """Decides whether a transfer recipient is acceptable."""

    def __init__(self, allow_zero_address: bool = False, blocked: frozenset = frozenset()):
        self.allow_zero_address = allow_zero_address
        self.blocked = frozenset(a.lower() for a in blocked)

    def is_valid_recipient(self, address: str) -> bool:
        if not is_valid_evm_address(address):
            return False
        lowered = address.lower()
        if not self.allow_zero_address and lowered == ZERO_ADDRESS:
            return False
        return lowered not in self.blocked


__all__ = [
    "ZERO_ADDRESS",
    "AddressValidator",
    "is_valid_evm_address",
]
