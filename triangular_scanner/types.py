"""
Core data types for triangular arbitrage scanning.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Tuple, Union

# Pool index used for priority pairs discovered by getPair rather than the registry
PRIORITY_INDEX = -1

UNKNOWN_NAME = "UNKNOWN_NAME"
UNKNOWN_SYMBOL = "UNKNOWN_SYMBOL"
DEFAULT_DECIMALS = 18


@dataclass(frozen=True)
class TokenInfo:
    """
    Immutable ERC20 metadata.

    Attributes:
        address: Lowercase token address
        name: Display name (UNKNOWN_NAME if name() reverted)
        symbol: Ticker symbol
        decimals: Decimal precision (DEFAULT_DECIMALS if decimals() reverted)
        decimals_fallback: True when decimals is the fallback, not an on-chain value
    """

    address: str
    name: str
    symbol: str
    decimals: int
    decimals_fallback: bool = False


@dataclass(frozen=True)
class Resolved:
    """Token metadata that resolved well enough to price the token."""

    info: TokenInfo


@dataclass(frozen=True)
class Unknown:
    """Token whose metadata could not be resolved; pools holding it are dropped."""

    address: str
    reason: str = ""


TokenResolution = Union[Resolved, Unknown]


@dataclass(frozen=True)
class PoolToken:
    """One side of a pool: token reference plus human-scaled reserve."""

    token: TokenInfo
    reserve: Decimal

    @property
    def address(self) -> str:
        return self.token.address

    @property
    def symbol(self) -> str:
        return self.token.symbol

    @property
    def decimals(self) -> int:
        return self.token.decimals


@dataclass
class PoolRecord:
    """
    Cached state of one constant-product pool.

    Attributes:
        pool_index: Position in the factory registry, or PRIORITY_INDEX
        address: Lowercase pair address
        token0: First token and its reserve
        token1: Second token and its reserve
        prices: Spot rates keyed "A_PER_B" (units of A per one B)
        liquidity_usd: Stablecoin-derived liquidity estimate, None when unknown
        total_supply: LP token total supply (18 decimals)
        last_updated: Unix timestamp of the last successful fetch
    """

    pool_index: int
    address: str
    token0: PoolToken
    token1: PoolToken
    prices: Dict[str, Decimal]
    liquidity_usd: Optional[Decimal]
    total_supply: Decimal
    last_updated: float

    @property
    def is_priority(self) -> bool:
        return self.pool_index == PRIORITY_INDEX

    def has_token(self, address: str) -> bool:
        return address in (self.token0.address, self.token1.address)

    def side(self, address: str) -> PoolToken:
        """Return the side holding ``address``."""
        if self.token0.address == address:
            return self.token0
        if self.token1.address == address:
            return self.token1
        raise KeyError(f"Token {address} not in pool {self.address}")

    def other_side(self, address: str) -> PoolToken:
        """Return the side opposite to ``address``."""
        if self.token0.address == address:
            return self.token1
        if self.token1.address == address:
            return self.token0
        raise KeyError(f"Token {address} not in pool {self.address}")

    def reserves_for(self, token_in: str) -> Tuple[Decimal, Decimal]:
        """Return (reserve_in, reserve_out) for a swap starting with ``token_in``."""
        return self.side(token_in).reserve, self.other_side(token_in).reserve

    def to_dict(self) -> dict:
        return {
            "index": self.pool_index,
            "address": self.address,
            "token0": _pool_token_dict(self.token0),
            "token1": _pool_token_dict(self.token1),
            "prices": {k: str(v) for k, v in self.prices.items()},
            "liquidityUSD": (
                str(self.liquidity_usd) if self.liquidity_usd is not None else "Unknown"
            ),
            "totalSupply": str(self.total_supply),
            "updated": self.last_updated,
        }


def _pool_token_dict(side: PoolToken) -> dict:
    return {
        "address": side.address,
        "name": side.token.name,
        "symbol": side.symbol,
        "decimals": side.decimals,
        "reserve": str(side.reserve),
    }


@dataclass(frozen=True)
class PathStep:
    """One hop of a cycle."""

    pool_address: str
    token_in: str
    token_out: str
    token_in_symbol: str
    token_out_symbol: str
    token_in_decimals: int
    token_out_decimals: int


@dataclass(frozen=True)
class TestResult:
    """
    Outcome of evaluating a cycle at one input size.

    The local-formula numbers are always present. The verified numbers are
    present only when the local estimate cleared the pre-filter and the
    router quote succeeded.
    """

    __test__ = False  # not a pytest test class

    amount: Decimal
    local_end_amount: Decimal
    local_profit: Decimal
    local_profit_percent: Decimal
    verified_end_amount: Optional[Decimal] = None
    verified_profit: Optional[Decimal] = None
    verified_profit_percent: Optional[Decimal] = None
    verified_net_profit: Optional[Decimal] = None
    skipped_on_chain: bool = False
    error: Optional[str] = None

    @property
    def is_verified(self) -> bool:
        return self.verified_profit_percent is not None


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """A verified-profitable three-hop cycle found in one scan pass."""

    start_token: str
    path: Tuple[PathStep, PathStep, PathStep]
    test_results: Tuple[TestResult, ...]
    best_amount: Optional[Decimal]
    expected_profit: Decimal
    profit_percent: Decimal
    net_profit: Decimal
    estimated_gas_cost: Decimal
    timestamp: str = field(default="")

    @property
    def pool_addresses(self) -> Tuple[str, str, str]:
        return tuple(step.pool_address for step in self.path)

    @property
    def tokens(self) -> Tuple[str, str, str, str]:
        """Token addresses visited, start token first and last."""
        return (
            self.path[0].token_in,
            self.path[0].token_out,
            self.path[1].token_out,
            self.path[2].token_out,
        )

    @property
    def route_label(self) -> str:
        symbols = [self.path[0].token_in_symbol] + [s.token_out_symbol for s in self.path]
        return " → ".join(symbols)
