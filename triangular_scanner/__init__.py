"""
Triangular arbitrage scanner for constant-product DEX pools.

Tracks a priority token clique plus a rotating random sample of the pool
universe, searches the cached pool graph for three-hop cycles, verifies
candidates against the router quote and hands profitable ones to a
prioritized execution queue.
"""

from triangular_scanner.version import __version__

PROJECT_NAME = "triangular-scanner"
VERSION = __version__

from triangular_scanner.config import ScannerConfig, load_config
from triangular_scanner.context import ScannerContext
from triangular_scanner.dispatch import Dispatcher
from triangular_scanner.finder import OpportunityFinder
from triangular_scanner.pool_store import PoolStateStore
from triangular_scanner.scheduler import Scheduler, ScannerState
from triangular_scanner.token_cache import TokenMetadataCache

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "ScannerConfig",
    "load_config",
    "ScannerContext",
    "Dispatcher",
    "OpportunityFinder",
    "PoolStateStore",
    "Scheduler",
    "ScannerState",
    "TokenMetadataCache",
]
