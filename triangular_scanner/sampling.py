"""
Pool sampling strategy.

The registry holds far more pairs than can be tracked, so the scanner keeps
the priority clique plus a bounded random sample of registry indices. When
nothing profitable turns up for a while the sample is thrown away and drawn
again.
"""

from typing import List

from .config import ScannerConfig
from .context import ScannerContext
from .utils import get_logger

logger = get_logger(__name__)


def generate_random_indices(
    context: ScannerContext, count: int, min_index: int, max_index: int
) -> List[int]:
    """
    Draw up to ``count`` distinct indices uniformly from [min_index, max_index].

    ``max_index`` is clamped to ``context.total_pools - 1``; if the range
    holds fewer than ``count`` indices, every index in it is returned.
    """
    max_index = min(max_index, context.total_pools - 1)
    available = max_index - min_index + 1
    if count <= 0 or available <= 0:
        return []

    logger.info(
        f"Generating {min(count, available)} random pool indices between "
        f"{min_index} and {max_index}"
    )

    chosen = {}
    while len(chosen) < count and len(chosen) < available:
        index = context.rng.randint(min_index, max_index)
        # dict keeps first-draw order
        chosen.setdefault(index, None)
    return list(chosen)


class SamplingStrategy:
    """Owns the random sample and its periodic reshuffle."""

    def __init__(self, context: ScannerContext, config: ScannerConfig):
        self.context = context
        self.config = config

    def update_universe(self, total_pools: int) -> None:
        """Record the registry size and clamp the sampling upper bound to it."""
        self.context.total_pools = total_pools
        self.context.random_end = min(self.config.sampling.random_end, total_pools - 1)

    def draw(self) -> List[int]:
        sampling = self.config.sampling
        upper = self.context.random_end if self.context.total_pools else sampling.random_end
        self.context.current_pool_indices = generate_random_indices(
            self.context, sampling.pools_to_sample, sampling.random_start, upper
        )
        return self.context.current_pool_indices

    def reset_sampling(self) -> List[int]:
        """
        Clear all pool state, draw a new sample and restart the idle timer.

        Token metadata survives the reset.
        """
        logger.info("Resetting pool selection - clearing memory and selecting new pools")
        self.context.clear_pools()
        indices = self.draw()
        self.context.last_profit_found = self.context.now()
        return indices

    def reset_due(self) -> bool:
        return self.context.idle_seconds() > self.config.timing.reset_interval
