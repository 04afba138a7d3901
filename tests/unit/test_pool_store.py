"""Tests for the pool state store."""

from decimal import Decimal

import pytest

from chain_fakes import (
    BUSD,
    CAKE,
    UNIT,
    USDT,
    XTK,
    FakeChainClient,
    make_config,
    make_context,
)
from triangular_scanner.exceptions import NetworkError
from triangular_scanner.pool_store import (
    PoolStateStore,
    estimate_liquidity_usd,
    price_key,
)
from triangular_scanner.token_cache import TokenMetadataCache
from triangular_scanner.types import PRIORITY_INDEX, PoolToken, TokenInfo

POOL_A = "0x" + "0a" * 20
POOL_B = "0x" + "0b" * 20


@pytest.fixture
def client():
    client = FakeChainClient()
    client.add_token(USDT, "USDT")
    client.add_token(BUSD, "BUSD")
    client.add_token(CAKE, "CAKE")
    client.add_token(XTK, "XTK", decimals=6)
    client.add_pair(POOL_A, USDT, CAKE, 1_000_000 * UNIT, 500_000 * UNIT)
    return client


@pytest.fixture
def context():
    return make_context()


@pytest.fixture
def store(context, client):
    config = make_config(timing={"pool_error_delay": 1})
    return PoolStateStore(context, client, TokenMetadataCache(context, client), config)


def side(address, symbol, reserve):
    return PoolToken(TokenInfo(address, symbol, symbol, 18), Decimal(reserve))


class TestLiquidityEstimate:

    def test_both_stable_sums(self):
        result = estimate_liquidity_usd(side(USDT, "USDT", 10), side(BUSD, "BUSD", 12), [USDT, BUSD])
        assert result == Decimal(22)

    def test_one_stable_doubles(self):
        assert estimate_liquidity_usd(side(CAKE, "CAKE", 5), side(USDT, "USDT", 10), [USDT]) == 20
        assert estimate_liquidity_usd(side(USDT, "USDT", 7), side(CAKE, "CAKE", 5), [USDT]) == 14

    def test_no_stable_unknown(self):
        assert estimate_liquidity_usd(side(CAKE, "CAKE", 5), side(XTK, "XTK", 10), [USDT]) is None


@pytest.mark.asyncio
async def test_load_pool_builds_record(store, context):
    record = await store.load_pool(POOL_A.upper().replace("0X", "0x"), 3)

    assert record.address == POOL_A
    assert record.pool_index == 3
    assert record.token0.address != record.token1.address
    assert record.token0.reserve == Decimal(1_000_000)
    assert record.token1.reserve == Decimal(500_000)
    assert record.prices[price_key("USDT", "CAKE")] == Decimal(2)
    assert record.prices[price_key("CAKE", "USDT")] == Decimal("0.5")
    assert record.liquidity_usd == Decimal(2_000_000)
    assert record.total_supply == Decimal(1000)
    assert record.last_updated == context.now()

    assert context.get_pool(POOL_A) is record
    assert POOL_A in context.token_pools.pools_for(USDT)
    assert POOL_A in context.token_pools.pools_for(CAKE)


@pytest.mark.asyncio
async def test_reserves_scaled_by_token_decimals(store, client):
    client.add_pair(POOL_B, CAKE, XTK, 10 * UNIT, 20 * 10**6)
    record = await store.load_pool(POOL_B, 0)
    assert record.side(XTK).reserve == Decimal(20)
    assert record.prices[price_key("XTK", "CAKE")] == Decimal(2)
    assert record.liquidity_usd is None


@pytest.mark.asyncio
async def test_unexpired_record_served_without_calls(store, client):
    first = await store.load_pool(POOL_A, 0)
    snapshot = first.to_dict()
    client.calls.clear()

    second = await store.load_pool(POOL_A, 0)

    assert second is first
    assert second.to_dict() == snapshot
    assert sum(client.calls.values()) == 0


@pytest.mark.asyncio
async def test_priority_pools_expire_sooner(store, client, context):
    await store.load_pool(POOL_A, PRIORITY_INDEX)
    context.clock.advance_time(19)
    await store.load_pool(POOL_A, PRIORITY_INDEX)
    assert client.calls["pair_state"] == 1

    context.clock.advance_time(1)
    await store.load_pool(POOL_A, PRIORITY_INDEX)
    assert client.calls["pair_state"] == 2


@pytest.mark.asyncio
async def test_sampled_pools_use_full_interval(store, client, context):
    await store.load_pool(POOL_A, 5)
    context.clock.advance_time(299)
    await store.load_pool(POOL_A, 5)
    assert client.calls["pair_state"] == 1

    context.clock.advance_time(1)
    client.pairs[POOL_A][2] = 900_000 * UNIT
    record = await store.load_pool(POOL_A, 5)
    assert client.calls["pair_state"] == 2
    assert record.token0.reserve == Decimal(900_000)


@pytest.mark.asyncio
async def test_force_refresh_refetches(store, client):
    await store.load_pool(POOL_A, 0)
    await store.load_pool(POOL_A, 0, force_refresh=True)
    assert client.calls["pair_state"] == 2
    # Token metadata is not re-read
    assert client.calls["token_symbol"] == 2


@pytest.mark.asyncio
async def test_decimals_failure_keeps_pool(store, client, context):
    client.token_meta[XTK]["decimals"] = NetworkError("decimals reverted")
    client.add_pair(POOL_B, CAKE, XTK, 10 * UNIT, 20 * UNIT)

    record = await store.load_pool(POOL_B, 0)

    assert record is not None
    assert record.side(XTK).decimals == 18
    assert record.side(XTK).token.decimals_fallback
    assert context.get_pool(POOL_B) is record


@pytest.mark.asyncio
async def test_unknown_token_excludes_pool(store, client, context):
    client.token_meta[XTK]["symbol"] = NetworkError("symbol reverted")
    client.add_pair(POOL_B, CAKE, XTK, 10 * UNIT, 20 * UNIT)

    assert await store.load_pool(POOL_B, 0) is None
    assert context.get_pool(POOL_B) is None
    assert POOL_B not in context.token_pools.pools_for(CAKE)


@pytest.mark.asyncio
async def test_identical_tokens_rejected(store, client, context):
    client.add_pair(POOL_B, CAKE, CAKE, UNIT, UNIT)
    assert await store.load_pool(POOL_B, 0) is None
    assert context.get_pool(POOL_B) is None


@pytest.mark.asyncio
async def test_fetch_error_waits_and_caches_nothing(store, client, context):
    client.failing.add("pair_state")

    assert await store.load_pool(POOL_A, 0) is None
    assert context.get_pool(POOL_A) is None
    assert context.clock.sleeps == [1]


@pytest.mark.asyncio
async def test_failed_refresh_keeps_previous_record(store, client, context):
    first = await store.load_pool(POOL_A, 0)
    client.failing.add("pair_state")
    assert await store.load_pool(POOL_A, 0, force_refresh=True) is None
    assert context.get_pool(POOL_A) is first


@pytest.mark.asyncio
async def test_zero_reserves_have_no_prices(store, client):
    client.add_pair(POOL_B, USDT, CAKE, 0, 5 * UNIT)
    record = await store.load_pool(POOL_B, 0)
    assert record.prices == {}
    assert record.liquidity_usd == Decimal(0)


@pytest.mark.asyncio
async def test_load_by_index(store, client, context):
    record = await store.load_pool_by_index(0)
    assert record.address == POOL_A
    assert record.pool_index == 0

    assert await store.load_pool_by_index(99) is None
    assert context.clock.sleeps == [1]


@pytest.mark.asyncio
async def test_load_many(store, client, context):
    client.add_pair(POOL_B, USDT, BUSD, 10 * UNIT, 10 * UNIT)
    records = await store.load_many([POOL_A, POOL_B], PRIORITY_INDEX)
    assert [r.address for r in records] == [POOL_A, POOL_B]
    assert all(r.is_priority for r in records)
    assert records[1].liquidity_usd == Decimal(20)
