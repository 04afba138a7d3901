"""
Triangular opportunity finder.

Walks the token->pools index from every priority token to enumerate
start -> mid -> dest -> start cycles over three distinct cached pools, then
evaluates each cycle in two stages:

1. Local estimate: chain the constant-product formula over the cached
   reserves for each configured test size and subtract the flash-loan fee.
2. Verified estimate: only for sizes whose local profit percent clears the
   threshold, quote the full path through the router and subtract gas.

Only the router-verified numbers decide whether a cycle is reported.
"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterator, List, Optional, Sequence, Tuple

from .adapters.v2 import (
    V2ChainClient,
    chain_swap_out,
    flash_loan_fee,
    to_base_units,
    to_units,
)
from .config import ScannerConfig
from .context import ScannerContext
from .exceptions import NetworkError
from .types import ArbitrageOpportunity, PathStep, PoolRecord, TestResult
from .utils import get_logger, timestamp_to_iso

logger = get_logger(__name__)

GWEI = Decimal("1e-9")


@dataclass(frozen=True)
class Cycle:
    """Three distinct pools closing start -> mid -> dest -> start."""

    start: str
    mid: str
    dest: str
    pools: Tuple[PoolRecord, PoolRecord, PoolRecord]

    @property
    def token_path(self) -> List[str]:
        return [self.start, self.mid, self.dest, self.start]

    def hop_reserves(self) -> List[Tuple[Decimal, Decimal]]:
        p1, p2, p3 = self.pools
        return [
            p1.reserves_for(self.start),
            p2.reserves_for(self.mid),
            p3.reserves_for(self.dest),
        ]

    def steps(self) -> Tuple[PathStep, PathStep, PathStep]:
        hops = zip(self.pools, (self.start, self.mid, self.dest))
        return tuple(_path_step(pool, token_in) for pool, token_in in hops)

    @property
    def start_decimals(self) -> int:
        return self.pools[0].side(self.start).decimals


def _path_step(pool: PoolRecord, token_in: str) -> PathStep:
    side_in = pool.side(token_in)
    side_out = pool.other_side(token_in)
    return PathStep(
        pool_address=pool.address,
        token_in=side_in.address,
        token_out=side_out.address,
        token_in_symbol=side_in.symbol,
        token_out_symbol=side_out.symbol,
        token_in_decimals=side_in.decimals,
        token_out_decimals=side_out.decimals,
    )


class OpportunityFinder:
    """Enumerates and prices triangular cycles over the cached pool graph."""

    def __init__(
        self,
        context: ScannerContext,
        client: V2ChainClient,
        config: ScannerConfig,
        history=None,
    ):
        """
        Args:
            context: Shared scanner state (pools, index)
            client: Chain client used for router quotes and gas price
            config: Scanner configuration
            history: Optional OpportunityHistory receiving verification mismatches
        """
        self.context = context
        self.client = client
        self.config = config
        self.history = history

        tokens = config.tokens
        self.base_asset = tokens.base_asset_address
        self.start_tokens = [
            a for a in tokens.priority_addresses if a != self.base_asset
        ]

    # ------------------------------------------------------------------
    # Cycle enumeration
    # ------------------------------------------------------------------

    def _usable(self, pool: Optional[PoolRecord]) -> bool:
        if pool is None:
            return False
        # Unknown liquidity is kept; only a known value below the floor prunes
        if pool.liquidity_usd is None:
            return True
        return pool.liquidity_usd >= self.config.profit.min_liquidity_usd

    def enumerate_cycles(self) -> Iterator[Cycle]:
        """Yield every closed three-pool cycle reachable from a start token."""
        ctx = self.context
        for start in self.start_tokens:
            for addr1 in ctx.token_pools.pools_for(start):
                pool1 = ctx.get_pool(addr1)
                if not self._usable(pool1):
                    continue
                mid = pool1.other_side(start).address
                if mid == self.base_asset:
                    continue

                for addr2 in ctx.token_pools.pools_for(mid):
                    if addr2 == addr1:
                        continue
                    pool2 = ctx.get_pool(addr2)
                    if not self._usable(pool2):
                        continue
                    dest = pool2.other_side(mid).address
                    if dest == start or dest == self.base_asset:
                        continue

                    for addr3 in ctx.token_pools.pools_for(dest):
                        if addr3 == addr1 or addr3 == addr2:
                            continue
                        pool3 = ctx.get_pool(addr3)
                        if not self._usable(pool3):
                            continue
                        if pool3.other_side(dest).address != start:
                            continue
                        yield Cycle(start, mid, dest, (pool1, pool2, pool3))

    # ------------------------------------------------------------------
    # Cost model
    # ------------------------------------------------------------------

    async def current_gas_price_gwei(self) -> Decimal:
        try:
            wei = await self.client.gas_price_wei()
        except NetworkError as e:
            logger.debug(f"Gas price read failed, using configured value: {e}")
            return self.config.profit.gas_price_gwei
        return Decimal(wei) * GWEI

    def gas_cost_in(self, start_token: str, gas_price_gwei: Decimal) -> Decimal:
        """
        Estimated transaction cost expressed in ``start_token`` units.

        Converts through a cached base-asset/start-token pool; without one,
        falls back to the configured base-asset price.
        """
        profit = self.config.profit
        gas_cost_base = Decimal(profit.gas_units) * gas_price_gwei * GWEI

        if start_token == self.base_asset:
            return gas_cost_base

        for address in self.context.token_pools.pools_for(self.base_asset):
            pool = self.context.get_pool(address)
            if pool is None or not pool.has_token(start_token):
                continue
            reserve_base, reserve_start = pool.reserves_for(self.base_asset)
            if reserve_base <= 0:
                continue
            return gas_cost_base * reserve_start / reserve_base

        return gas_cost_base * profit.fallback_base_asset_price

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def local_estimate(
        self, cycle: Cycle, amount: Decimal
    ) -> Tuple[Decimal, Decimal, Decimal]:
        """
        Simulate the cycle over cached reserves.

        Returns:
            Tuple of (end_amount, profit, profit_percent) where profit is net
            of the flash-loan repayment
        """
        profit_cfg = self.config.profit
        end_amount = chain_swap_out(amount, cycle.hop_reserves(), profit_cfg.swap_fee)
        repay = amount + flash_loan_fee(
            amount, profit_cfg.flash_fee_numerator, profit_cfg.flash_fee_denominator
        )
        profit = end_amount - repay
        return end_amount, profit, profit / amount

    async def _evaluate_size(
        self,
        cycle: Cycle,
        amount: Decimal,
        gas_cost: Decimal,
        semaphore: asyncio.Semaphore,
    ) -> TestResult:
        profit_cfg = self.config.profit
        local_end, local_profit, local_pct = self.local_estimate(cycle, amount)

        if local_pct <= profit_cfg.min_profit_threshold:
            return TestResult(
                amount=amount,
                local_end_amount=local_end,
                local_profit=local_profit,
                local_profit_percent=local_pct,
                skipped_on_chain=True,
            )

        decimals = cycle.start_decimals
        amount_in = to_base_units(amount, decimals)
        try:
            async with semaphore:
                amounts = await self.client.get_amounts_out(amount_in, cycle.token_path)
        except NetworkError as e:
            return TestResult(
                amount=amount,
                local_end_amount=local_end,
                local_profit=local_profit,
                local_profit_percent=local_pct,
                error=str(e),
            )

        repay = amount + flash_loan_fee(
            amount, profit_cfg.flash_fee_numerator, profit_cfg.flash_fee_denominator
        )
        verified_end = to_units(amounts[-1], decimals)
        verified_profit = verified_end - repay
        return TestResult(
            amount=amount,
            local_end_amount=local_end,
            local_profit=local_profit,
            local_profit_percent=local_pct,
            verified_end_amount=verified_end,
            verified_profit=verified_profit,
            verified_profit_percent=verified_profit / amount,
            verified_net_profit=verified_profit - gas_cost,
        )

    @staticmethod
    def select_best(results: Sequence[TestResult]) -> Optional[TestResult]:
        """Highest verified profit percent among sizes with positive profit and net profit."""
        candidates = [
            r
            for r in results
            if r.is_verified
            and r.verified_profit_percent > 0
            and r.verified_net_profit > 0
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda r: r.verified_profit_percent)

    async def evaluate_cycle(
        self,
        cycle: Cycle,
        gas_price_gwei: Decimal,
        semaphore: Optional[asyncio.Semaphore] = None,
    ) -> Optional[ArbitrageOpportunity]:
        """Price ``cycle`` at every test size; return an opportunity if it qualifies."""
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.config.profit.max_concurrent_quotes)

        if any(r_in <= 0 or r_out <= 0 for r_in, r_out in cycle.hop_reserves()):
            return None

        gas_cost = self.gas_cost_in(cycle.start, gas_price_gwei)
        results = []
        for amount in self.config.profit.test_amounts:
            results.append(await self._evaluate_size(cycle, amount, gas_cost, semaphore))

        best = self.select_best(results)
        threshold = self.config.profit.min_profit_threshold

        if best is None or best.verified_profit_percent <= threshold:
            if any(r.is_verified for r in results):
                self._record_mismatch(cycle, results)
            return None

        return ArbitrageOpportunity(
            start_token=cycle.start,
            path=cycle.steps(),
            test_results=tuple(results),
            best_amount=best.amount,
            expected_profit=best.verified_profit,
            profit_percent=best.verified_profit_percent,
            net_profit=best.verified_net_profit,
            estimated_gas_cost=gas_cost,
            timestamp=timestamp_to_iso(self.context.now()),
        )

    def _record_mismatch(self, cycle: Cycle, results: Sequence[TestResult]) -> None:
        """Local math predicted profit that the router did not confirm."""
        steps = cycle.steps()
        route = " → ".join([steps[0].token_in_symbol] + [s.token_out_symbol for s in steps])
        logger.debug(f"Verification mismatch on {route}")
        if self.history is not None and self.config.output.analysis_enabled:
            self.history.record_mismatch(
                {
                    "timestamp": timestamp_to_iso(self.context.now()),
                    "route": route,
                    "startToken": cycle.start,
                    "pools": [p.address for p in cycle.pools],
                    "results": list(results),
                }
            )

    async def find_opportunities(self) -> List[ArbitrageOpportunity]:
        """
        Scan the cached graph once.

        Returns:
            Qualifying opportunities sorted by net profit, highest first
        """
        started = time.perf_counter()
        cycles = list(self.enumerate_cycles())
        if not cycles:
            logger.debug("No closed cycles in the cached pool graph")
            return []

        gas_price = await self.current_gas_price_gwei()
        semaphore = asyncio.Semaphore(self.config.profit.max_concurrent_quotes)
        evaluated = await asyncio.gather(
            *(self.evaluate_cycle(c, gas_price, semaphore) for c in cycles)
        )

        opportunities = [o for o in evaluated if o is not None]
        opportunities.sort(key=lambda o: o.net_profit, reverse=True)

        if opportunities:
            self.context.mark_profit_found()

        logger.info(
            f"Scan of {len(cycles)} cycles completed in "
            f"{time.perf_counter() - started:.2f} seconds, "
            f"{len(opportunities)} profitable"
        )
        return opportunities
