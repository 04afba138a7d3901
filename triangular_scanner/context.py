"""
Shared scanner state.

One ScannerContext is built by the runner and passed to every component.
It owns the pool records, the token->pools index, the resolved token
metadata and the sampling bookkeeping; nothing in the package keeps this
state in module globals.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .interfaces import (
    RandomProvider,
    SystemRandomProvider,
    SystemTimeProvider,
    TimeProvider,
)
from .types import PoolRecord, TokenResolution


class TokenPoolIndex:
    """
    Inverted index from token address to the addresses of pools holding it.

    Holds addresses only; pool data lives in ScannerContext.pools.
    """

    def __init__(self):
        self._pools_by_token: Dict[str, Set[str]] = {}

    def add(self, token_address: str, pool_address: str) -> None:
        self._pools_by_token.setdefault(token_address, set()).add(pool_address)

    def pools_for(self, token_address: str) -> Set[str]:
        # Copy so callers can iterate while a refresh adds entries
        return set(self._pools_by_token.get(token_address, ()))

    def tokens(self) -> List[str]:
        return list(self._pools_by_token)

    def clear(self) -> None:
        self._pools_by_token.clear()

    def __contains__(self, token_address: str) -> bool:
        return token_address in self._pools_by_token

    def __len__(self) -> int:
        return len(self._pools_by_token)


@dataclass
class ScannerContext:
    """
    Mutable state shared by the store, finder, dispatcher and scheduler.

    Attributes:
        pools: Pool records keyed by lowercase pair address
        token_pools: Token -> pool addresses index
        tokens: Resolved (or unknown) token metadata keyed by lowercase address
        priority_pairs: (symbol_a, symbol_b) -> pair address for the priority clique
        current_pool_indices: Registry indices of the current random sample
        total_pools: Size of the factory registry at the last load
        random_end: Upper bound for sampled indices, clamped to total_pools - 1
        last_profit_found: Timestamp of the last qualifying opportunity or reset
    """

    clock: TimeProvider = field(default_factory=SystemTimeProvider)
    rng: RandomProvider = field(default_factory=SystemRandomProvider)
    pools: Dict[str, PoolRecord] = field(default_factory=dict)
    token_pools: TokenPoolIndex = field(default_factory=TokenPoolIndex)
    tokens: Dict[str, TokenResolution] = field(default_factory=dict)
    priority_pairs: Dict[Tuple[str, str], str] = field(default_factory=dict)
    current_pool_indices: List[int] = field(default_factory=list)
    total_pools: int = 0
    random_end: int = 0
    last_profit_found: float = 0.0

    def __post_init__(self):
        if not self.last_profit_found:
            self.last_profit_found = self.clock.current_timestamp()

    def now(self) -> float:
        return self.clock.current_timestamp()

    def get_pool(self, address: str) -> Optional[PoolRecord]:
        return self.pools.get(address)

    def store_pool(self, record: PoolRecord) -> None:
        """Insert or overwrite a record and index both of its tokens."""
        self.pools[record.address] = record
        self.token_pools.add(record.token0.address, record.address)
        self.token_pools.add(record.token1.address, record.address)

    def iter_pools(self) -> Iterator[PoolRecord]:
        return iter(list(self.pools.values()))

    def clear_pools(self) -> None:
        """Drop all pool records and the index; token metadata is kept."""
        self.pools.clear()
        self.token_pools.clear()

    def mark_profit_found(self) -> None:
        self.last_profit_found = max(self.last_profit_found, self.now())

    def idle_seconds(self) -> float:
        return self.now() - self.last_profit_found

    @property
    def priority_pool_addresses(self) -> List[str]:
        return list(dict.fromkeys(self.priority_pairs.values()))
