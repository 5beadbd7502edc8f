"""Address normalization helpers."""

from __future__ import annotations

import re

_EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def normalize_address(value: str | None) -> str:
    """Normalize on-chain address keys for internal maps/dedup."""
    return str(value or "").strip().lower()


def is_evm_address(value: str | None) -> bool:
    return bool(_EVM_ADDRESS_RE.match(normalize_address(value)))


def short_address(value: str | None) -> str:
    addr = normalize_address(value)
    if len(addr) <= 12:
        return addr
    return f"{addr[:6]}...{addr[-4:]}"
