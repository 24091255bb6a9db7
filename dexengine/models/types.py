"""Shared type definitions: token identifiers, pair keys and amounts.

Two token namespaces are supported:
- EVM addresses (0x + 40 hex chars), normalized to lowercase
- Opaque ledger account ids (e.g. "keeta_anq..."), kept as given

Pair keys and pool ids are derived from the canonical (sorted) pair so that
(A, B) and (B, A) always resolve to the same pool.
"""

from __future__ import annotations

import hashlib
import re
from typing import Annotated, Any

from pydantic import BeforeValidator, Field, PlainSerializer

from dexengine.errors import IdenticalTokens, InvalidToken
from dexengine.safe_int import UINT256_MAX

PAIR_KEY_SEPARATOR = ":"

_EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")
_LEDGER_ID = re.compile(r"^[A-Za-z0-9_\-.]{1,255}$")


def validate_uint256(value: Any) -> int:
    """Validate that a value is a non-negative integer within uint256 range.

    Accepts ints and decimal strings (JSON clients send big amounts as strings).

    Raises:
        ValueError: If value is not a valid non-negative integer within uint256 range
    """
    if isinstance(value, bool):
        raise ValueError("Uint256 must be an integer, got bool")
    if isinstance(value, str):
        try:
            value = int(value)
        except ValueError as err:
            raise ValueError(f"Uint256 must be a decimal integer string: '{value}'") from err
    if not isinstance(value, int):
        raise ValueError(f"Uint256 must be string or int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"Uint256 cannot be negative: {value}")
    if value > UINT256_MAX:
        raise ValueError(f"Uint256 overflow: {value} > 2^256-1")
    return value


# Token amount in atomic units (decimal strings on the wire, ints in Python)
Amount = Annotated[
    int,
    BeforeValidator(validate_uint256),
    PlainSerializer(str, return_type=str, when_used="json"),
    Field(description="Amount in atomic units"),
]


def is_evm_address(token: str) -> bool:
    return bool(_EVM_ADDRESS.match(token))


def normalize_token(token: str) -> str:
    """Normalize a token identifier.

    EVM addresses are lowercased; ledger ids are stripped but otherwise kept.

    Raises:
        InvalidToken: If the identifier is empty or malformed
    """
    if not isinstance(token, str):
        raise InvalidToken(f"Token must be a string, got {type(token).__name__}")
    token = token.strip()
    if token.lower().startswith("0x"):
        if not is_evm_address(token):
            raise InvalidToken(f"Invalid address: {token} (must be 0x + 40 hex chars)")
        return token.lower()
    if not _LEDGER_ID.match(token):
        raise InvalidToken(f"Invalid token identifier: {token!r}")
    return token


def canonical_pair(token_a: str, token_b: str) -> tuple[str, str]:
    """Return the pair in canonical (lexicographic) order.

    Raises:
        InvalidToken: If either token is malformed
        IdenticalTokens: If both sides are the same token
    """
    a = normalize_token(token_a)
    b = normalize_token(token_b)
    if a == b:
        raise IdenticalTokens(f"Identical tokens: {a}")
    return (a, b) if a < b else (b, a)


def pair_key(token_a: str, token_b: str) -> str:
    """Order-independent key for a token pair."""
    token0, token1 = canonical_pair(token_a, token_b)
    return f"{token0}{PAIR_KEY_SEPARATOR}{token1}"


def parse_pair_key(key: str) -> tuple[str, str]:
    token0, _, token1 = key.partition(PAIR_KEY_SEPARATOR)
    if not token0 or not token1:
        raise InvalidToken(f"Malformed pair key: {key!r}")
    return token0, token1


def derive_pool_id(namespace: str, token_a: str, token_b: str) -> str:
    """Deterministic pool identifier for a pair.

    sha256(0xff ++ namespace ++ sha256(pair key)), keeping the low 20 bytes
    as an address-shaped hex string. This is not an EVM CREATE2 address. The
    id is known before the pool exists, so clients can address it ahead of
    creation.
    """
    salt = hashlib.sha256(pair_key(token_a, token_b).encode()).digest()
    digest = hashlib.sha256(b"\xff" + namespace.encode() + salt).hexdigest()
    return "0x" + digest[-40:]


__all__ = [
    "Amount",
    "PAIR_KEY_SEPARATOR",
    "validate_uint256",
    "is_evm_address",
    "normalize_token",
    "canonical_pair",
    "pair_key",
    "parse_pair_key",
    "derive_pool_id",
]
