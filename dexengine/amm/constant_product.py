"""Constant-product (x * y = k) pricing and liquidity math.

One set of pure integer formulas shared by every pool backend. Division
always truncates, and the operand order is chosen so the truncation remainder
stays with the pool:
- swap outputs round down
- required swap inputs round up
- minted shares and burned amounts round down
"""

from __future__ import annotations

from typing import ClassVar

import structlog
from eth_abi import encode  # type: ignore[attr-defined]

from dexengine.amm.base import AMM
from dexengine.constants import BPS_DENOMINATOR, MINIMUM_LIQUIDITY
from dexengine.errors import (
    InsufficientInitialLiquidity,
    InsufficientLiquidity,
    InvalidAmount,
    InvalidPath,
    InvalidToken,
    SlippageExceeded,
)
from dexengine.models.types import is_evm_address
from dexengine.safe_int import S

logger = structlog.get_logger()


class ConstantProductAMM(AMM):
    """Constant-product AMM math and router encoding.

    Formula (exact input):
        amount_in_with_fee = amount_in * (10000 - fee_bps) // 10000
        amount_out = reserve_out * amount_in_with_fee // (reserve_in + amount_in_with_fee)
    """

    # Router contract the calldata targets (overridable per deployment)
    ROUTER_ADDRESS: ClassVar[str] = "0x0000000000000000000000000000000000000000"

    # Function selectors of the V2-style router surface
    SWAP_EXACT_TOKENS_SELECTOR: ClassVar[str] = "0x38ed1739"  # swapExactTokensForTokens
    SWAP_TOKENS_FOR_EXACT_SELECTOR: ClassVar[str] = "0x8803dbee"  # swapTokensForExactTokens
    ADD_LIQUIDITY_SELECTOR: ClassVar[str] = "0xe8e33700"  # addLiquidity
    REMOVE_LIQUIDITY_SELECTOR: ClassVar[str] = "0xbaa2abde"  # removeLiquidity

    def __init__(self, router_address: str | None = None) -> None:
        self.router_address = (router_address or self.ROUTER_ADDRESS).lower()

    # --- Swap pricing --------------------------------------------------------

    def amount_in_with_fee(self, amount_in: int, fee_bps: int) -> int:
        """Input left after the LP fee, truncated in the pool's favour."""
        return (S(amount_in) * (BPS_DENOMINATOR - fee_bps) // BPS_DENOMINATOR).value

    def quote_out(
        self,
        amount_in: int,
        reserve_in: int,
        reserve_out: int,
        fee_bps: int = 30,
    ) -> int:
        """Calculate output amount for an exact input.

        Args:
            amount_in: Input token amount
            reserve_in: Reserve of input token in pool
            reserve_out: Reserve of output token in pool
            fee_bps: LP fee in basis points

        Returns:
            Output token amount (rounded down)

        Raises:
            InvalidAmount: If amount_in <= 0
            InsufficientLiquidity: If either reserve is zero
        """
        if amount_in <= 0:
            raise InvalidAmount(f"Amount in must be positive, got {amount_in}")
        if reserve_in <= 0 or reserve_out <= 0:
            raise InsufficientLiquidity("Pool has no liquidity")

        with_fee = S(self.amount_in_with_fee(amount_in, fee_bps))
        numerator = S(reserve_out) * with_fee
        denominator = S(reserve_in) + with_fee

        return (numerator // denominator).value

    def quote_in(
        self,
        amount_out: int,
        reserve_in: int,
        reserve_out: int,
        fee_bps: int = 30,
    ) -> int:
        """Calculate the input required for an exact output.

        Both divisions round up: the pre-fee input is ceil(reserve_in * out /
        (reserve_out - out)), then it is grossed up by the fee with a second
        ceiling. A single "+1" after two floors is not enough once the fee
        gross-up truncates as well.

        Raises:
            InvalidAmount: If amount_out <= 0
            InsufficientLiquidity: If amount_out >= reserve_out or a reserve is zero
        """
        if amount_out <= 0:
            raise InvalidAmount(f"Amount out must be positive, got {amount_out}")
        if reserve_in <= 0 or reserve_out <= 0:
            raise InsufficientLiquidity("Pool has no liquidity")
        if amount_out >= reserve_out:
            raise InsufficientLiquidity(
                f"Requested {amount_out} but only {reserve_out} in reserve"
            )

        before_fee = (S(reserve_in) * S(amount_out)).ceiling_div(S(reserve_out) - S(amount_out))
        gross = (before_fee * BPS_DENOMINATOR).ceiling_div(BPS_DENOMINATOR - fee_bps)

        return gross.value

    def quote(self, amount_a: int, reserve_a: int, reserve_b: int) -> int:
        """Equivalent amount of the other token at the current ratio (no fee).

        Raises:
            InvalidAmount: If amount_a <= 0
            InsufficientLiquidity: If either reserve is zero
        """
        if amount_a <= 0:
            raise InvalidAmount(f"Amount must be positive, got {amount_a}")
        if reserve_a <= 0 or reserve_b <= 0:
            raise InsufficientLiquidity("Pool has no liquidity")
        return (S(amount_a) * S(reserve_b) // S(reserve_a)).value

    # --- Liquidity math ------------------------------------------------------

    def optimal_amounts(
        self,
        amount_a_desired: int,
        amount_b_desired: int,
        amount_a_min: int,
        amount_b_min: int,
        reserve_a: int,
        reserve_b: int,
    ) -> tuple[int, int]:
        """Deposit amounts that preserve the current reserve ratio.

        Exactly one desired amount is used in full; the other is scaled down.
        An empty pool takes both desired amounts as they are.

        Raises:
            SlippageExceeded: If the scaled amount falls below its minimum
        """
        if reserve_a == 0 and reserve_b == 0:
            return amount_a_desired, amount_b_desired

        amount_b_optimal = self.quote(amount_a_desired, reserve_a, reserve_b)
        if amount_b_optimal <= amount_b_desired:
            if amount_b_optimal < amount_b_min:
                raise SlippageExceeded(
                    f"Insufficient B amount: {amount_b_optimal} < min {amount_b_min}"
                )
            return amount_a_desired, amount_b_optimal

        amount_a_optimal = self.quote(amount_b_desired, reserve_b, reserve_a)
        # amount_b_optimal > amount_b_desired implies this holds
        assert amount_a_optimal <= amount_a_desired
        if amount_a_optimal < amount_a_min:
            raise SlippageExceeded(
                f"Insufficient A amount: {amount_a_optimal} < min {amount_a_min}"
            )
        return amount_a_optimal, amount_b_desired

    def shares_for_deposit(
        self,
        amount_a: int,
        amount_b: int,
        reserve_a: int,
        reserve_b: int,
        total_shares: int,
    ) -> tuple[int, int]:
        """Shares minted for a deposit.

        Returns:
            (shares_to_provider, shares_locked). The locked part is
            MINIMUM_LIQUIDITY on the first deposit and 0 afterwards.

        Raises:
            InsufficientInitialLiquidity: If a first deposit yields no shares
        """
        if total_shares == 0:
            liquidity = S(amount_a) * S(amount_b)
            root = liquidity.sqrt()
            if root <= MINIMUM_LIQUIDITY:
                raise InsufficientInitialLiquidity(
                    f"sqrt({amount_a} * {amount_b}) = {root.value} does not exceed "
                    f"the {MINIMUM_LIQUIDITY} locked shares"
                )
            return (root - MINIMUM_LIQUIDITY).value, MINIMUM_LIQUIDITY

        # min() so a provider never mints more than their true proportional share
        shares_a = S(amount_a) * S(total_shares) // S(reserve_a)
        shares_b = S(amount_b) * S(total_shares) // S(reserve_b)
        return shares_a.min(shares_b).value, 0

    def amounts_for_shares(
        self,
        shares: int,
        reserve_a: int,
        reserve_b: int,
        total_shares: int,
    ) -> tuple[int, int]:
        """Redeemable amounts for burning `shares` (rounded down)."""
        if shares <= 0:
            raise InvalidAmount(f"Shares must be positive, got {shares}")
        amount_a = S(shares) * S(reserve_a) // S(total_shares)
        amount_b = S(shares) * S(reserve_b) // S(total_shares)
        return amount_a.value, amount_b.value

    # --- Fees and display ----------------------------------------------------

    def split_fee(self, amount_in: int, fee_bps: int) -> tuple[int, int]:
        """Take a flat fee off the top of an input.

        Returns:
            (net_amount, fee) with fee = amount_in * fee_bps // 10000
        """
        fee = (S(amount_in) * fee_bps // BPS_DENOMINATOR).value
        return amount_in - fee, fee

    def price_impact_pct(
        self,
        amount_in: int,
        amount_out: int,
        reserve_in: int,
        reserve_out: int,
    ) -> float:
        """Price impact in percent, for display only.

        (1 - actual_price / expected_price) * 100, clamped to non-negative,
        with expected = reserve_out / reserve_in and actual = amount_out / amount_in.
        """
        if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
            return 0.0
        expected_price = reserve_out / reserve_in
        actual_price = amount_out / amount_in
        return max(0.0, (1 - actual_price / expected_price) * 100)

    # --- Path traversal ------------------------------------------------------

    def get_amounts_out(
        self,
        amount_in: int,
        hops: list[tuple[int, int, int]],
    ) -> list[int]:
        """Amounts along a path for an exact input.

        Args:
            amount_in: Input into the first hop
            hops: (reserve_in, reserve_out, fee_bps) per hop, in path order

        Returns:
            [amount_in, out_hop_1, ..., out_hop_n]
        """
        if not hops:
            raise InvalidPath("Path must contain at least one hop")
        amounts = [amount_in]
        for reserve_in, reserve_out, fee_bps in hops:
            amounts.append(self.quote_out(amounts[-1], reserve_in, reserve_out, fee_bps))
        return amounts

    def get_amounts_in(
        self,
        amount_out: int,
        hops: list[tuple[int, int, int]],
    ) -> list[int]:
        """Amounts along a path for an exact output, computed backwards.

        Returns:
            [in_hop_1, ..., in_hop_n, amount_out]
        """
        if not hops:
            raise InvalidPath("Path must contain at least one hop")
        amounts = [amount_out]
        for reserve_in, reserve_out, fee_bps in reversed(hops):
            amounts.insert(0, self.quote_in(amounts[0], reserve_in, reserve_out, fee_bps))
        return amounts

    # --- Router calldata -----------------------------------------------------

    def _path_bytes(self, path: list[str], recipient: str) -> tuple[list[bytes], bytes]:
        for i, addr in enumerate(path):
            if not is_evm_address(addr):
                raise InvalidToken(f"Invalid address in path[{i}]: {addr}")
        if not is_evm_address(recipient):
            raise InvalidToken(f"Invalid recipient address: {recipient}")
        return [bytes.fromhex(a[2:]) for a in path], bytes.fromhex(recipient[2:])

    def encode_swap(
        self,
        amount_in: int,
        amount_out_min: int,
        path: list[str],
        recipient: str,
        deadline: int,
    ) -> tuple[str, str]:
        """Encode swapExactTokensForTokens(uint256,uint256,address[],address,uint256).

        Returns:
            Tuple of (router_address, calldata)

        Raises:
            InvalidToken: If any address is not an EVM address
        """
        path_bytes, recipient_bytes = self._path_bytes(path, recipient)
        encoded_args = encode(
            ["uint256", "uint256", "address[]", "address", "uint256"],
            [amount_in, amount_out_min, path_bytes, recipient_bytes, deadline],
        )
        return self.router_address, self.SWAP_EXACT_TOKENS_SELECTOR + encoded_args.hex()

    def encode_swap_exact_output(
        self,
        amount_out: int,
        amount_in_max: int,
        path: list[str],
        recipient: str,
        deadline: int,
    ) -> tuple[str, str]:
        """Encode swapTokensForExactTokens(uint256,uint256,address[],address,uint256)."""
        path_bytes, recipient_bytes = self._path_bytes(path, recipient)
        encoded_args = encode(
            ["uint256", "uint256", "address[]", "address", "uint256"],
            [amount_out, amount_in_max, path_bytes, recipient_bytes, deadline],
        )
        return self.router_address, self.SWAP_TOKENS_FOR_EXACT_SELECTOR + encoded_args.hex()

    def encode_add_liquidity(
        self,
        token_a: str,
        token_b: str,
        amount_a_desired: int,
        amount_b_desired: int,
        amount_a_min: int,
        amount_b_min: int,
        recipient: str,
        deadline: int,
    ) -> tuple[str, str]:
        """Encode addLiquidity(address,address,uint256,uint256,uint256,uint256,address,uint256)."""
        (a, b), to = self._path_bytes([token_a, token_b], recipient)
        encoded_args = encode(
            ["address", "address", "uint256", "uint256", "uint256", "uint256", "address", "uint256"],
            [a, b, amount_a_desired, amount_b_desired, amount_a_min, amount_b_min, to, deadline],
        )
        return self.router_address, self.ADD_LIQUIDITY_SELECTOR + encoded_args.hex()

    def encode_remove_liquidity(
        self,
        token_a: str,
        token_b: str,
        liquidity: int,
        amount_a_min: int,
        amount_b_min: int,
        recipient: str,
        deadline: int,
    ) -> tuple[str, str]:
        """Encode removeLiquidity(address,address,uint256,uint256,uint256,address,uint256)."""
        (a, b), to = self._path_bytes([token_a, token_b], recipient)
        encoded_args = encode(
            ["address", "address", "uint256", "uint256", "uint256", "address", "uint256"],
            [a, b, liquidity, amount_a_min, amount_b_min, to, deadline],
        )
        return self.router_address, self.REMOVE_LIQUIDITY_SELECTOR + encoded_args.hex()


# Singleton instance
constant_product = ConstantProductAMM()


__all__ = [
    "ConstantProductAMM",
    "constant_product",
]
