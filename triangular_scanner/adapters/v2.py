"""
PancakeSwap V2 style adapter for constant-product AMM pools.

Implements the x*y=k swap math used for local estimates and an async client
for the factory, pair, ERC20 and router reads the scanner needs. web3 calls
are synchronous, so each one runs in the default thread pool to keep the
event loop free.
"""

import asyncio
from decimal import ROUND_DOWN, Decimal, getcontext
from typing import List, Optional, Sequence, Tuple

from web3 import Web3

from ..abi import ERC20_ABI, FACTORY_ABI, PAIR_ABI, ROUTER_ABI, ZERO_ADDRESS
from ..exceptions import NetworkError
from ..utils import get_logger

# Reserves reach 10**30 in base units; keep headroom for chained hops
getcontext().prec = 50

logger = get_logger(__name__)


def to_units(raw, decimals: int) -> Decimal:
    """Scale a base-unit integer to human units."""
    return Decimal(raw) / (Decimal(10) ** decimals)


def to_base_units(human: Decimal, decimals: int) -> int:
    """Scale a human amount to base units, truncating dust below one unit."""
    scaled = Decimal(human) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def swap_out(
    amount_in: Decimal, reserve_in: Decimal, reserve_out: Decimal, fee: Decimal
) -> Decimal:
    """
    Calculate output amount for a V2 swap using constant-product formula.

    Formula (with fee embedded):
        amountInWithFee = amountIn * (1 - fee)
        amountOut = (reserveOut * amountInWithFee) / (reserveIn + amountInWithFee)

    The result is always strictly below ``reserve_out``.

    Args:
        amount_in: Input token amount
        reserve_in: Reserve of input token
        reserve_out: Reserve of output token
        fee: Fee as decimal (e.g., 0.0025 for 25 bps)

    Returns:
        Output token amount

    Raises:
        ValueError: If inputs are invalid (negative, zero reserves, etc.)
    """
    if amount_in <= 0:
        raise ValueError(f"amount_in must be positive: {amount_in}")
    if reserve_in <= 0 or reserve_out <= 0:
        raise ValueError(
            f"Reserves must be positive: in={reserve_in}, out={reserve_out}"
        )
    if fee < 0 or fee >= 1:
        raise ValueError(f"Fee must be in [0, 1): {fee}")

    amount_in_with_fee = amount_in * (Decimal(1) - fee)

    numerator = reserve_out * amount_in_with_fee
    denominator = reserve_in + amount_in_with_fee

    return numerator / denominator


def chain_swap_out(
    amount_in: Decimal, hops: Sequence[Tuple[Decimal, Decimal]], fee: Decimal
) -> Decimal:
    """Feed ``amount_in`` through consecutive (reserve_in, reserve_out) hops."""
    amount = amount_in
    for reserve_in, reserve_out in hops:
        amount = swap_out(amount, reserve_in, reserve_out, fee)
    return amount


def flash_loan_fee(amount: Decimal, numerator: int = 3, denominator: int = 997) -> Decimal:
    """
    Fee owed on a flash-swapped amount.

    A V2 flash swap repays ``amount / (1 - 0.003)``, i.e. the surcharge is
    ``amount * 3 / 997``.
    """
    return amount * Decimal(numerator) / Decimal(denominator)


class V2ChainClient:
    """
    Async read-only client for a V2 factory, its pairs, their tokens and the router.

    Every failing read is raised as NetworkError with the original exception
    chained, so callers can tell transient RPC trouble from bad data.
    """

    def __init__(self, web3: Web3, factory_address: str, router_address: str):
        self.web3 = web3
        self.factory = web3.eth.contract(
            address=Web3.to_checksum_address(factory_address), abi=FACTORY_ABI
        )
        self.router = web3.eth.contract(
            address=Web3.to_checksum_address(router_address), abi=ROUTER_ABI
        )

    @classmethod
    def connect(
        cls, rpc_url: str, factory_address: str, router_address: str
    ) -> "V2ChainClient":
        """
        Create a client over an HTTP provider.

        No request is made here; an unreachable endpoint surfaces as
        NetworkError from the first read, where the initial load retries it.
        """
        web3 = Web3(Web3.HTTPProvider(rpc_url))
        logger.info(f"Using RPC: {rpc_url}")
        return cls(web3, factory_address, router_address)

    async def _call(self, fn, label: str):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn.call)
        except Exception as e:
            raise NetworkError(f"{label} failed: {e}") from e

    def _pair(self, pair_address: str):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(pair_address), abi=PAIR_ABI
        )

    def _erc20(self, token_address: str):
        return self.web3.eth.contract(
            address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
        )

    async def all_pairs_length(self) -> int:
        return int(await self._call(self.factory.functions.allPairsLength(), "allPairsLength"))

    async def pair_address_at(self, index: int) -> str:
        address = await self._call(
            self.factory.functions.allPairs(index), f"allPairs({index})"
        )
        return address.lower()

    async def get_pair(self, token_a: str, token_b: str) -> Optional[str]:
        """Return the pair address for two tokens, or None if no pair exists."""
        address = await self._call(
            self.factory.functions.getPair(
                Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b)
            ),
            f"getPair({token_a}, {token_b})",
        )
        if not address or address.lower() == ZERO_ADDRESS:
            return None
        return address.lower()

    async def pair_state(self, pair_address: str) -> Tuple[str, str, int, int, int]:
        """
        Fetch token addresses, raw reserves and LP total supply of a pair.

        Returns:
            Tuple of (token0, token1, reserve0, reserve1, total_supply)
        """
        pair = self._pair(pair_address)
        token0, token1, reserves, total_supply = await asyncio.gather(
            self._call(pair.functions.token0(), f"{pair_address}.token0"),
            self._call(pair.functions.token1(), f"{pair_address}.token1"),
            self._call(pair.functions.getReserves(), f"{pair_address}.getReserves"),
            self._call(pair.functions.totalSupply(), f"{pair_address}.totalSupply"),
        )
        return (
            token0.lower(),
            token1.lower(),
            int(reserves[0]),
            int(reserves[1]),
            int(total_supply),
        )

    async def token_name(self, token_address: str) -> str:
        return await self._call(self._erc20(token_address).functions.name(), f"{token_address}.name")

    async def token_symbol(self, token_address: str) -> str:
        return await self._call(
            self._erc20(token_address).functions.symbol(), f"{token_address}.symbol"
        )

    async def token_decimals(self, token_address: str) -> int:
        return int(
            await self._call(
                self._erc20(token_address).functions.decimals(), f"{token_address}.decimals"
            )
        )

    async def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        """Quote ``amount_in`` (base units) along ``path`` through the router."""
        checksum_path = [Web3.to_checksum_address(a) for a in path]
        amounts = await self._call(
            self.router.functions.getAmountsOut(amount_in, checksum_path),
            "getAmountsOut",
        )
        return [int(a) for a in amounts]

    async def gas_price_wei(self) -> int:
        loop = asyncio.get_running_loop()
        try:
            return int(await loop.run_in_executor(None, lambda: self.web3.eth.gas_price))
        except Exception as e:
            raise NetworkError(f"gas_price failed: {e}") from e
