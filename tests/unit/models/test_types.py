"""Tests for token identifiers, pair keys and pool ids."""

import hashlib

import pytest

from dexengine.errors import IdenticalTokens, InvalidToken
from dexengine.models.types import (
    canonical_pair,
    derive_pool_id,
    normalize_token,
    pair_key,
    parse_pair_key,
    validate_uint256,
)
from dexengine.safe_int import UINT256_MAX
from tests.helpers import DAI, KTA, RIDE, USDC, WETH


class TestNormalizeToken:
    def test_evm_address_lowercased(self):
        assert normalize_token("0xC02AAA39B223FE8D0A0E5C4F27EAD9083C756CC2") == WETH

    def test_whitespace_stripped(self):
        assert normalize_token(f"  {USDC} ") == USDC

    def test_ledger_id_kept_as_given(self):
        assert normalize_token("keeta_ANQ-token.1") == "keeta_ANQ-token.1"

    @pytest.mark.parametrize("token", ["", "0x123", "0x" + "zz" * 20, "has space", "a/b"])
    def test_malformed(self, token):
        with pytest.raises(InvalidToken):
            normalize_token(token)

    def test_non_string(self):
        with pytest.raises(InvalidToken):
            normalize_token(123)


class TestCanonicalPair:
    def test_sorted_regardless_of_order(self):
        assert canonical_pair(WETH, USDC) == (USDC, WETH)
        assert canonical_pair(USDC, WETH) == (USDC, WETH)
        assert canonical_pair(WETH, DAI) == (DAI, WETH)

    def test_mixed_namespaces(self):
        assert canonical_pair(KTA, WETH) == (WETH, KTA)

    def test_identical_after_normalization(self):
        with pytest.raises(IdenticalTokens):
            canonical_pair(WETH, WETH.upper().replace("0X", "0x"))

    def test_pair_key_is_order_independent(self):
        assert pair_key(RIDE, KTA) == pair_key(KTA, RIDE) == f"{KTA}:{RIDE}"

    def test_parse_pair_key(self):
        assert parse_pair_key(pair_key(USDC, WETH)) == (USDC, WETH)
        with pytest.raises(InvalidToken):
            parse_pair_key("no-separator")


class TestDerivePoolId:
    """Pool ids are known before the pool exists."""

    def test_format(self):
        pool_id = derive_pool_id("dexengine", USDC, WETH)
        assert pool_id.startswith("0x")
        assert len(pool_id) == 42
        int(pool_id, 16)

    def test_order_independent(self):
        assert derive_pool_id("dexengine", USDC, WETH) == derive_pool_id("dexengine", WETH, USDC)

    def test_namespace_and_pair_matter(self):
        base = derive_pool_id("dexengine", USDC, WETH)
        assert derive_pool_id("other", USDC, WETH) != base
        assert derive_pool_id("dexengine", DAI, WETH) != base

    def test_low_bytes_of_sha256_over_namespace_and_pair(self):
        salt = hashlib.sha256(pair_key(USDC, WETH).encode()).digest()
        expected = hashlib.sha256(b"\xff" + b"dexengine" + salt).hexdigest()[-40:]
        assert derive_pool_id("dexengine", WETH, USDC) == "0x" + expected


class TestValidateUint256:
    def test_accepts_int_and_decimal_string(self):
        assert validate_uint256(5) == 5
        assert validate_uint256(str(UINT256_MAX)) == UINT256_MAX

    @pytest.mark.parametrize("value", [-1, UINT256_MAX + 1, "1.5", "0x10", True, 1.0, None])
    def test_rejects(self, value):
        with pytest.raises(ValueError):
            validate_uint256(value)
