"""
Scan scheduler.

Runs the initial load, then three timers: the idle-reset watchdog, the full
refresh of every tracked pool and the faster priority refresh. All passes
that touch the pool store go through one state machine so a priority pass
never interleaves with a full pass or a reload.
"""

import asyncio
import itertools
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from .adapters.v2 import V2ChainClient
from .config import ScannerConfig
from .context import ScannerContext
from .dispatch import Dispatcher
from .exceptions import NetworkError, ScannerError
from .finder import OpportunityFinder
from .history import OpportunityHistory
from .pool_store import PoolStateStore
from .sampling import SamplingStrategy
from .types import PRIORITY_INDEX, ArbitrageOpportunity
from .utils import format_amount, format_duration, format_profit, get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ScannerState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    FULL_SCAN = "full_scan"
    PRIORITY_SCAN = "priority_scan"


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class Scheduler:
    """Owns the scan timers and the state that keeps passes exclusive."""

    def __init__(
        self,
        context: ScannerContext,
        config: ScannerConfig,
        client: V2ChainClient,
        store: PoolStateStore,
        sampling: SamplingStrategy,
        finder: OpportunityFinder,
        dispatcher: Dispatcher,
        history: OpportunityHistory,
    ):
        self.context = context
        self.config = config
        self.client = client
        self.store = store
        self.sampling = sampling
        self.finder = finder
        self.dispatcher = dispatcher
        self.history = history

        self.state = ScannerState.IDLE
        self.reset_count = 0
        self._lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _enter(self, state: ScannerState) -> bool:
        """Move from IDLE to ``state``; False if another pass holds the store."""
        async with self._lock:
            if self.state is not ScannerState.IDLE:
                logger.debug(f"Skipping {state.value}: scanner is {self.state.value}")
                return False
            self.state = state
            return True

    async def _exit(self) -> None:
        async with self._lock:
            self.state = ScannerState.IDLE

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def discover_priority_pairs(self) -> List[str]:
        """Look up the pair of every two priority tokens once per process."""
        tokens = self.config.tokens.priority_tokens
        for (sym_a, addr_a), (sym_b, addr_b) in itertools.combinations(tokens.items(), 2):
            if (sym_a, sym_b) in self.context.priority_pairs:
                continue
            try:
                pair = await self.client.get_pair(addr_a, addr_b)
            except NetworkError as e:
                logger.warning(f"Error looking up {sym_a}-{sym_b} pool: {e}")
                continue
            if pair is None:
                continue
            self.context.priority_pairs[(sym_a, sym_b)] = pair
        return self.context.priority_pool_addresses

    async def load_priority_pools(self, force_refresh: bool = False) -> int:
        """Load every priority pair in small batches; returns pools loaded."""
        addresses = await self.discover_priority_pairs()
        loaded = 0
        for batch in chunked(addresses, self.config.sampling.priority_batch_size):
            records = await self.store.load_many(list(batch), PRIORITY_INDEX, force_refresh)
            loaded += sum(1 for r in records if r is not None)
        return loaded

    async def load_sampled_pools(self, indices: Sequence[int]) -> int:
        """Load registry indices in index order, in batches with a delay between batches."""
        loaded = 0
        batches = chunked(sorted(indices), self.config.sampling.batch_size)
        for n, batch in enumerate(batches):
            logger.debug(f"Loading batch {n + 1}/{len(batches)} ({len(batch)} pools)")
            records = await asyncio.gather(
                *(self.store.load_pool_by_index(i) for i in batch)
            )
            loaded += sum(1 for r in records if r is not None)
            if n + 1 < len(batches):
                await self.context.clock.sleep(self.config.timing.batch_delay)
        return loaded

    async def load_initial(self) -> None:
        """
        Read the registry size, draw a fresh sample and load it.

        Raises:
            NetworkError: If the registry size cannot be read
        """
        total = await self.client.all_pairs_length()
        logger.info(f"Found {total} total pairs in the factory")
        self.sampling.update_universe(total)
        indices = self.sampling.reset_sampling()

        priority = await self.load_priority_pools()
        logger.info(f"Loaded {priority} priority pools")
        sampled = await self.load_sampled_pools(indices)
        logger.info(
            f"Loaded {sampled}/{len(indices)} sampled pools, "
            f"{len(self.context.pools)} pools in memory"
        )

    async def initial_load_with_retry(self) -> None:
        """Run load_initial until it succeeds, waiting a fixed delay between tries."""
        async with self._lock:
            self.state = ScannerState.LOADING
        try:
            attempt = 0
            while True:
                attempt += 1
                try:
                    await self.load_initial()
                    return
                except ScannerError as e:
                    delay = self.config.timing.initial_load_retry_delay
                    logger.error(
                        f"Initial load failed (attempt {attempt}): {e}; "
                        f"retrying in {format_duration(delay)}"
                    )
                    await self.context.clock.sleep(delay)
        finally:
            await self._exit()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def check_idle_reset(self) -> bool:
        """Resample and reload when no opportunity was found for the reset interval."""
        if not self.sampling.reset_due():
            return False
        if not await self._enter(ScannerState.LOADING):
            return False
        try:
            idle = self.context.idle_seconds()
            logger.info(
                f"No profitable opportunities found in {format_duration(idle)}. "
                "Resetting pool selection."
            )
            # Restart the window now so a failed reload does not re-fire at once
            self.context.last_profit_found = self.context.now()
            self.reset_count += 1
            await self.load_initial()
        except ScannerError as e:
            logger.error(f"Pool reset failed: {e}")
        finally:
            await self._exit()
        return True

    def _full_refresh_work(self) -> List[Tuple[Optional[str], int]]:
        """(address, index) for every tracked pool; address None if never loaded."""
        work = [(a, PRIORITY_INDEX) for a in self.context.priority_pool_addresses]
        seen = set(a for a, _ in work)
        by_index = {}
        for record in self.context.iter_pools():
            if record.address in seen:
                continue
            if record.pool_index == PRIORITY_INDEX:
                work.append((record.address, PRIORITY_INDEX))
                seen.add(record.address)
            else:
                by_index[record.pool_index] = record.address
        for index in sorted(self.context.current_pool_indices):
            work.append((by_index.get(index), index))
        return work

    async def _refresh_one(self, address: Optional[str], index: int):
        if address is None:
            return await self.store.load_pool_by_index(index)
        return await self.store.load_pool(address, index, force_refresh=True)

    async def full_refresh(self) -> bool:
        """
        Force-refresh every tracked pool in batches, scanning after each batch.

        Returns:
            False when skipped because another pass was running
        """
        if not await self._enter(ScannerState.FULL_SCAN):
            return False
        try:
            started = time.perf_counter()
            batches = chunked(self._full_refresh_work(), self.config.sampling.batch_size)
            logger.info(f"Performing periodic refresh of pool data ({len(batches)} batches)")
            for n, batch in enumerate(batches):
                await asyncio.gather(*(self._refresh_one(a, i) for a, i in batch))
                opportunities = await self.finder.find_opportunities()
                await self.handle_opportunities(opportunities, top_n=5, label="full scan")
                if n + 1 < len(batches):
                    await self.context.clock.sleep(self.config.timing.batch_delay)
            logger.info(
                f"Full refresh completed in {format_duration(time.perf_counter() - started)}"
            )
        finally:
            await self._exit()
        return True

    async def priority_refresh(self) -> bool:
        """Force-refresh the priority pools and scan once."""
        if not await self._enter(ScannerState.PRIORITY_SCAN):
            return False
        try:
            await self.load_priority_pools(force_refresh=True)
            opportunities = await self.finder.find_opportunities()
            await self.handle_opportunities(opportunities, top_n=3, label="priority scan")
        finally:
            await self._exit()
        return True

    async def handle_opportunities(
        self, opportunities: List[ArbitrageOpportunity], top_n: int, label: str
    ) -> List[str]:
        """Log the best opportunities, persist the pass and queue every one."""
        if not opportunities:
            logger.info(f"No profitable arbitrage opportunities found in {label}")
            return []

        logger.info(f"Found {len(opportunities)} potential arbitrage opportunities in {label}")
        for rank, opp in enumerate(opportunities[:top_n], 1):
            symbol = opp.path[0].token_in_symbol
            logger.info(
                f"#{rank}: {opp.route_label} | profit {format_profit(opp.profit_percent)} "
                f"({format_amount(opp.expected_profit)} {symbol}) | "
                f"gas ~{format_amount(opp.estimated_gas_cost)} {symbol} | "
                f"net {format_amount(opp.net_profit)} {symbol} | "
                f"pools {' → '.join(opp.pool_addresses)}"
            )

        self.history.save(opportunities)

        job_ids = []
        for opp in opportunities:
            job_ids.extend(await self.dispatcher.dispatch(opp))
        return job_ids

    async def scan_once(self) -> List[ArbitrageOpportunity]:
        """Run the finder over the current cache and handle the results."""
        opportunities = await self.finder.find_opportunities()
        await self.handle_opportunities(opportunities, top_n=5, label="scan")
        return opportunities

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _every(
        self, interval: float, body: Callable[[], Awaitable[object]], name: str
    ) -> None:
        while True:
            await self.context.clock.sleep(interval)
            try:
                await body()
            except Exception as e:
                logger.exception(f"Error during {name}: {e}")

    async def run(self, once: bool = False) -> None:
        """Load, scan, then keep refreshing until stop() is called."""
        await self.initial_load_with_retry()
        await self.scan_once()
        if once:
            return

        timing = self.config.timing
        self._tasks = [
            asyncio.create_task(
                self._every(timing.reset_check_interval, self.check_idle_reset, "reset check")
            ),
            asyncio.create_task(
                self._every(timing.full_refresh_interval, self.full_refresh, "periodic refresh")
            ),
            asyncio.create_task(
                self._every(
                    timing.priority_refresh_interval, self.priority_refresh, "priority refresh"
                )
            ),
        ]
        logger.info("Starting real-time arbitrage monitoring")
        await asyncio.gather(*self._tasks, return_exceptions=True)

    def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
