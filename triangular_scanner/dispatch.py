"""
Sizing and dispatch of verified opportunities to the execution queue.

A job carries the borrow token and amount, the two intermediate tokens,
the pools of each hop and one minimum-output factor per hop. The factor is
per mille of the expected output (997 keeps 99.7%) and gets looser as the
trade takes a larger share of that hop's liquidity.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from .adapters.v2 import to_base_units
from .config import ScannerConfig
from .context import ScannerContext
from .exceptions import DispatchError, ScannerError, ValidationError
from .job_queue import JobQueue
from .types import ArbitrageOpportunity, TestResult
from .utils import format_profit, get_logger

logger = get_logger(__name__)

DEFAULT_SLIPPAGE = 997

# (share of pool liquidity, minimum-output factor), checked largest first
SLIPPAGE_BREAKPOINTS = (
    (Decimal("0.05"), 990),
    (Decimal("0.02"), 992),
    (Decimal("0.01"), 995),
)

# (liquidity ceiling, fraction of the thinnest hop used for a scaled job)
SCALE_FRACTIONS = (
    (Decimal("100000"), Decimal("0.005")),
    (Decimal("1000000"), Decimal("0.01")),
)
SCALE_FRACTION_DEEP = Decimal("0.02")

# Inverted priority: a 100% opportunity maps to 1, smaller ones to larger numbers
PRIORITY_SCALE = 10000


def slippage_for(amount: Decimal, liquidity: Optional[Decimal]) -> int:
    """Minimum-output factor for trading ``amount`` through a pool of ``liquidity``."""
    if not liquidity or liquidity <= 0:
        return DEFAULT_SLIPPAGE
    share = Decimal(amount) / Decimal(liquidity)
    for breakpoint, factor in SLIPPAGE_BREAKPOINTS:
        if share > breakpoint:
            return factor
    return DEFAULT_SLIPPAGE


def calculate_adaptive_slippage(
    amount: Decimal, liquidities: Sequence[Optional[Decimal]]
) -> List[int]:
    """Per-hop factors; hops of unknown liquidity get the default."""
    if not liquidities:
        return [DEFAULT_SLIPPAGE] * 3
    return [slippage_for(amount, liquidity) for liquidity in liquidities]


def calculate_priority(profit_percent: Decimal) -> int:
    """Queue priority where a lower number is served first."""
    return max(1, PRIORITY_SCALE - int(Decimal(profit_percent) * PRIORITY_SCALE))


def is_profit_increasing(results: Sequence[TestResult]) -> bool:
    """
    True when every tested size was verified and verified profit percent
    rises strictly with size.
    """
    if len(results) < 2 or not all(r.is_verified for r in results):
        return False
    percents = [r.verified_profit_percent for r in results]
    return all(b > a for a, b in zip(percents, percents[1:]))


def scale_fraction(liquidity: Decimal) -> Decimal:
    for ceiling, fraction in SCALE_FRACTIONS:
        if liquidity < ceiling:
            return fraction
    return SCALE_FRACTION_DEEP


class Dispatcher:
    """Validates opportunities and turns them into prioritized queue jobs."""

    def __init__(self, context: ScannerContext, config: ScannerConfig, queue: JobQueue):
        self.context = context
        self.config = config
        self.queue = queue
        self.base_asset = config.tokens.base_asset_address

    def hop_liquidities(self, opportunity: ArbitrageOpportunity) -> List[Optional[Decimal]]:
        liquidities = []
        for address in opportunity.pool_addresses:
            pool = self.context.get_pool(address)
            liquidities.append(pool.liquidity_usd if pool is not None else None)
        return liquidities

    def validate(self, opportunity: ArbitrageOpportunity) -> None:
        """
        Reject opportunities that must not reach the queue.

        Raises:
            ValidationError: Structurally incomplete opportunity
            DispatchError: Opportunity violates the dispatch policy
        """
        if opportunity is None or not opportunity.start_token:
            raise ValidationError("Invalid opportunity data")
        if opportunity.best_amount is None:
            raise ValidationError("Opportunity has no best amount")
        if not opportunity.path or len(opportunity.path) != 3:
            raise ValidationError("Invalid path data")
        tokens = opportunity.tokens
        if tokens[0] != opportunity.start_token or tokens[-1] != opportunity.start_token:
            raise ValidationError("Path does not close on the start token")

        if self.base_asset in tokens:
            raise DispatchError(
                f"Route {opportunity.route_label} touches the base asset",
                reason="base_asset",
            )
        threshold = self.config.profit.min_profit_threshold
        if opportunity.profit_percent <= threshold or opportunity.net_profit <= 0:
            raise DispatchError(
                f"Route {opportunity.route_label} below profit threshold",
                reason="below_threshold",
            )
        if opportunity.best_amount < self.config.dispatch.min_borrow_amount:
            raise DispatchError(
                f"Borrow amount {opportunity.best_amount} below minimum "
                f"{self.config.dispatch.min_borrow_amount}",
                reason="below_minimum",
            )

    def build_payload(
        self, opportunity: ArbitrageOpportunity, amount: Decimal, slippages: List[int]
    ) -> Dict[str, Any]:
        first, second = opportunity.path[0], opportunity.path[1]
        return {
            "token0": opportunity.start_token,
            "borrowAmount": str(to_base_units(amount, first.token_in_decimals)),
            "token1": first.token_out,
            "token2": second.token_out,
            "deadLineMin": self.config.dispatch.deadline_minutes,
            "slippages": slippages,
            "pools": list(opportunity.pool_addresses),
        }

    def scaled_amount(self, opportunity: ArbitrageOpportunity) -> Optional[Decimal]:
        """
        Larger probe size taken from the thinnest hop, or None.

        None when any hop has unknown liquidity or the probe would not exceed
        the best tested amount.
        """
        liquidities = self.hop_liquidities(opportunity)
        if any(liquidity is None or liquidity <= 0 for liquidity in liquidities):
            return None
        thinnest = min(liquidities)
        amount = thinnest * scale_fraction(thinnest)
        if amount <= opportunity.best_amount:
            return None
        return amount

    async def _enqueue(self, payload: Dict[str, Any], priority: int) -> Optional[str]:
        dispatch = self.config.dispatch
        try:
            return await self.queue.add(dispatch.job_name, payload, priority, attempts=1)
        except DispatchError as e:
            logger.error(f"Failed to queue arbitrage job: {e}")
            return None

    async def dispatch(self, opportunity: ArbitrageOpportunity) -> List[str]:
        """
        Queue one job for ``opportunity`` plus a scaled job when profit
        was still rising at the largest tested size.

        Returns:
            Ids of the queued jobs; empty when the opportunity was rejected
        """
        try:
            self.validate(opportunity)
        except ScannerError as e:
            logger.warning(f"Opportunity rejected: {e}")
            return []

        amount = opportunity.best_amount
        liquidities = self.hop_liquidities(opportunity)
        slippages = calculate_adaptive_slippage(amount, liquidities)
        priority = calculate_priority(opportunity.profit_percent)

        job_ids = []
        job_id = await self._enqueue(
            self.build_payload(opportunity, amount, slippages), priority
        )
        if job_id is None:
            return job_ids
        job_ids.append(job_id)

        symbol = opportunity.path[0].token_in_symbol
        logger.info(
            f"Arbitrage job queued with ID: {job_id}, {opportunity.route_label}, "
            f"amount {amount} {symbol}, expected profit "
            f"{opportunity.expected_profit} {symbol} "
            f"({format_profit(opportunity.profit_percent)})"
        )

        if self.config.dispatch.scale_up_enabled and is_profit_increasing(
            opportunity.test_results
        ):
            scaled = self.scaled_amount(opportunity)
            if scaled is not None:
                scaled_id = await self._enqueue(
                    self.build_payload(
                        opportunity, scaled, calculate_adaptive_slippage(scaled, liquidities)
                    ),
                    priority + self.config.dispatch.scaled_priority_offset,
                )
                if scaled_id is not None:
                    logger.info(
                        f"Scaled job queued with ID: {scaled_id}, amount {scaled} {symbol}"
                    )
                    job_ids.append(scaled_id)

        return job_ids
