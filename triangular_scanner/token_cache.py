"""
Token metadata cache.

Resolves name, symbol and decimals of ERC20 tokens once per process. Each
field is read independently with its own fallback so one non-standard
getter does not throw away the others.
"""

import asyncio
from typing import Dict, Optional

from .adapters.v2 import V2ChainClient
from .context import ScannerContext
from .types import (
    DEFAULT_DECIMALS,
    UNKNOWN_NAME,
    Resolved,
    TokenInfo,
    TokenResolution,
    Unknown,
)
from .utils import get_logger

logger = get_logger(__name__)


class TokenMetadataCache:
    """Memoizing resolver for immutable token facts."""

    def __init__(self, context: ScannerContext, client: V2ChainClient):
        self.context = context
        self.client = client
        self._inflight: Dict[str, asyncio.Future] = {}

    def cached(self, address: str) -> Optional[TokenResolution]:
        return self.context.tokens.get(address.lower())

    async def resolve(self, address: str) -> TokenResolution:
        """
        Return the metadata of ``address``, reading it from chain on first use.

        Concurrent calls for the same address share one set of reads.

        Returns:
            Resolved(TokenInfo) or Unknown when symbol() could not be read
        """
        address = address.lower()
        cached = self.context.tokens.get(address)
        if cached is not None:
            return cached

        pending = self._inflight.get(address)
        if pending is not None:
            return await pending

        future = asyncio.get_running_loop().create_future()
        self._inflight[address] = future
        try:
            resolution = await self._fetch(address)
            self.context.tokens[address] = resolution
            future.set_result(resolution)
            return resolution
        except BaseException as e:
            future.set_exception(e)
            # Waiters re-raise it; mark retrieved so the loop does not warn
            future.exception()
            raise
        finally:
            del self._inflight[address]

    async def _fetch(self, address: str) -> TokenResolution:
        name, symbol, decimals = await asyncio.gather(
            self.client.token_name(address),
            self.client.token_symbol(address),
            self.client.token_decimals(address),
            return_exceptions=True,
        )

        if isinstance(name, BaseException):
            logger.debug(f"name() failed for {address}: {name}")
            name = UNKNOWN_NAME

        decimals_fallback = False
        if isinstance(decimals, BaseException):
            logger.debug(f"decimals() failed for {address}: {decimals}")
            decimals = DEFAULT_DECIMALS
            decimals_fallback = True

        if isinstance(symbol, BaseException) or not symbol:
            reason = str(symbol) if isinstance(symbol, BaseException) else "empty symbol"
            logger.info(f"Token {address} unresolved: {reason}")
            return Unknown(address=address, reason=reason)

        return Resolved(
            TokenInfo(
                address=address,
                name=str(name),
                symbol=str(symbol),
                decimals=int(decimals),
                decimals_fallback=decimals_fallback,
            )
        )

