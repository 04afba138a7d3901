"""
Pool state store.

Loads pair reserves from chain into the shared context, with age-gated
refresh: priority pairs go stale after the priority refresh interval,
sampled pairs after the full refresh interval.
"""

import asyncio
from decimal import Decimal
from typing import Iterable, List, Optional

from .adapters.v2 import V2ChainClient, to_units
from .config import ScannerConfig
from .context import ScannerContext
from .exceptions import DataError, NetworkError
from .token_cache import TokenMetadataCache
from .types import PRIORITY_INDEX, PoolRecord, PoolToken, Resolved
from .utils import get_logger

logger = get_logger(__name__)

LP_DECIMALS = 18


def price_key(base_symbol: str, quote_symbol: str) -> str:
    """Key of the rate giving units of ``base_symbol`` per one ``quote_symbol``."""
    return f"{base_symbol}_PER_{quote_symbol}"


def estimate_liquidity_usd(
    side0: PoolToken, side1: PoolToken, stablecoins: Iterable[str]
) -> Optional[Decimal]:
    """
    Estimate USD liquidity from stablecoin reserves.

    Both sides stable: sum of reserves. One side stable: twice that reserve.
    Otherwise None (unknown).
    """
    stable = set(stablecoins)
    stable0 = side0.address in stable
    stable1 = side1.address in stable
    if stable0 and stable1:
        return side0.reserve + side1.reserve
    if stable0:
        return side0.reserve * 2
    if stable1:
        return side1.reserve * 2
    return None


class PoolStateStore:
    """Fetches, derives and caches PoolRecords in the scanner context."""

    def __init__(
        self,
        context: ScannerContext,
        client: V2ChainClient,
        token_cache: TokenMetadataCache,
        config: ScannerConfig,
    ):
        self.context = context
        self.client = client
        self.token_cache = token_cache
        self.config = config
        self._stablecoins = config.tokens.stablecoin_addresses

    def refresh_interval(self, pool_index: int) -> float:
        if pool_index == PRIORITY_INDEX:
            return self.config.timing.priority_refresh_interval
        return self.config.timing.full_refresh_interval

    def is_fresh(self, record: PoolRecord, pool_index: int) -> bool:
        age = self.context.now() - record.last_updated
        return age < self.refresh_interval(pool_index)

    async def load_pool(
        self, address: str, pool_index: int, force_refresh: bool = False
    ) -> Optional[PoolRecord]:
        """
        Return the record for ``address``, fetching it when missing or stale.

        Args:
            address: Pair address (any case)
            pool_index: Registry index, or PRIORITY_INDEX for priority pairs
            force_refresh: Skip the age check

        Returns:
            The stored PoolRecord, or None when the pair holds an unresolvable
            token or any read failed. Failed loads never leave a partial record.
        """
        address = address.lower()

        existing = self.context.get_pool(address)
        if existing is not None and not force_refresh:
            if self.is_fresh(existing, pool_index):
                return existing

        try:
            record = await self._fetch_record(address, pool_index)
        except DataError as e:
            logger.info(f"Skipping pool {address}: {e}")
            return None
        except NetworkError as e:
            logger.warning(f"Error processing pair {address} ({pool_index}): {e}")
            # Damp retry storms against a rate-limited endpoint
            await self.context.clock.sleep(self.config.timing.pool_error_delay)
            return None

        self.context.store_pool(record)
        return record

    async def load_pool_by_index(self, index: int) -> Optional[PoolRecord]:
        """Resolve registry index ``index`` to a pair address and load it."""
        try:
            address = await self.client.pair_address_at(index)
        except NetworkError as e:
            logger.warning(f"Error loading pool at index {index}: {e}")
            await self.context.clock.sleep(self.config.timing.pool_error_delay)
            return None
        return await self.load_pool(address, index)

    async def load_many(
        self, addresses: List[str], pool_index: int, force_refresh: bool = False
    ) -> List[Optional[PoolRecord]]:
        """Load a batch of pools concurrently; see load_pool."""
        return await asyncio.gather(
            *(self.load_pool(a, pool_index, force_refresh) for a in addresses)
        )

    async def _fetch_record(self, address: str, pool_index: int) -> PoolRecord:
        token0, token1, raw0, raw1, raw_supply = await self.client.pair_state(address)

        if token0 == token1:
            raise DataError(
                "pair reports identical tokens", source="pair_state", address=address
            )

        res0, res1 = await asyncio.gather(
            self.token_cache.resolve(token0), self.token_cache.resolve(token1)
        )
        for res in (res0, res1):
            if not isinstance(res, Resolved):
                raise DataError(
                    f"unknown token {res.address}", source="token", address=address
                )

        info0, info1 = res0.info, res1.info
        side0 = PoolToken(token=info0, reserve=to_units(raw0, info0.decimals))
        side1 = PoolToken(token=info1, reserve=to_units(raw1, info1.decimals))

        prices = {}
        if side0.reserve > 0 and side1.reserve > 0:
            prices[price_key(info0.symbol, info1.symbol)] = side0.reserve / side1.reserve
            prices[price_key(info1.symbol, info0.symbol)] = side1.reserve / side0.reserve

        return PoolRecord(
            pool_index=pool_index,
            address=address,
            token0=side0,
            token1=side1,
            prices=prices,
            liquidity_usd=estimate_liquidity_usd(side0, side1, self._stablecoins),
            total_supply=to_units(raw_supply, LP_DECIMALS),
            last_updated=self.context.now(),
        )
