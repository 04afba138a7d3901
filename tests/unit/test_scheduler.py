"""Tests for the scan scheduler state machine and passes."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from chain_fakes import (
    BUSD,
    CAKE,
    UNIT,
    USDT,
    WBNB,
    XTK,
    FakeChainClient,
    add_mispriced_triangle,
    make_config,
    make_context,
)
from triangular_scanner.dispatch import Dispatcher
from triangular_scanner.finder import OpportunityFinder
from triangular_scanner.job_queue import InMemoryJobQueue
from triangular_scanner.pool_store import PoolStateStore
from triangular_scanner.sampling import SamplingStrategy
from triangular_scanner.scheduler import Scheduler, ScannerState, chunked
from triangular_scanner.token_cache import TokenMetadataCache
from triangular_scanner.types import PRIORITY_INDEX


def build(client, history=None, **config_sections):
    config = make_config(**config_sections)
    context = make_context()
    store = PoolStateStore(context, client, TokenMetadataCache(context, client), config)
    queue = InMemoryJobQueue()
    scheduler = Scheduler(
        context,
        config,
        client,
        store,
        SamplingStrategy(context, config),
        OpportunityFinder(context, client, config),
        Dispatcher(context, config, queue),
        history if history is not None else Mock(),
    )
    return scheduler, queue


def priority_client():
    client = FakeChainClient()
    for address, symbol in ((WBNB, "WBNB"), (USDT, "USDT"), (BUSD, "BUSD"), (CAKE, "CAKE")):
        client.add_token(address, symbol)
    client.add_pair("0x" + "e1" * 20, WBNB, USDT, 1000 * UNIT, 300_000 * UNIT, register=False)
    client.add_pair("0x" + "e2" * 20, USDT, BUSD, 500_000 * UNIT, 500_000 * UNIT, register=False)
    return client


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 3) == []


@pytest.mark.asyncio
async def test_load_initial_loads_priority_and_sample():
    client = priority_client()
    for n in range(5):
        token = "0x" + f"f{n}" * 20
        client.add_token(token, f"T{n}")
        client.add_pair("0x" + f"9{n}" * 20, token, CAKE, UNIT, UNIT)
    scheduler, _ = build(client, sampling={"pools_to_sample": 5, "batch_size": 2}, timing={"batch_delay": 3})
    context = scheduler.context

    await scheduler.load_initial()

    assert context.total_pools == 5
    assert context.random_end == 4
    assert sorted(context.current_pool_indices) == [0, 1, 2, 3, 4]
    assert len(context.priority_pairs) == 2
    assert len(context.pools) == 7
    priority = [r for r in context.pools.values() if r.pool_index == PRIORITY_INDEX]
    assert len(priority) == 2
    # Three batches of sampled pools, delay only between them
    assert context.clock.sleeps == [3, 3]
    # One lookup per unordered priority pair
    assert client.calls["get_pair"] == 6


@pytest.mark.asyncio
async def test_found_priority_pairs_not_looked_up_again():
    client = priority_client()
    scheduler, _ = build(client)

    await scheduler.load_priority_pools()
    await scheduler.load_priority_pools(force_refresh=True)

    # Only the four token pairs without a pool are asked again
    assert client.calls["get_pair"] == 10
    assert client.calls["pair_state"] == 4


@pytest.mark.asyncio
async def test_initial_load_retries_with_fixed_delay():
    client = priority_client()
    client.fail_times["all_pairs_length"] = 2
    scheduler, _ = build(client, timing={"initial_load_retry_delay": 10})

    await scheduler.initial_load_with_retry()

    assert client.calls["all_pairs_length"] == 3
    assert scheduler.context.clock.sleeps == [10, 10]
    assert scheduler.state is ScannerState.IDLE
    assert len(scheduler.context.pools) == 2


@pytest.mark.asyncio
async def test_idle_reset_fires_once_per_window():
    client = priority_client()
    scheduler, _ = build(client, timing={"reset_interval": 900, "reset_check_interval": 60})
    clock = scheduler.context.clock
    await scheduler.initial_load_with_retry()

    fired_at = []
    for minute in range(1, 46):
        clock.advance_time(60)
        if await scheduler.check_idle_reset():
            fired_at.append(minute)

    # Checks run every minute; the window restarts at each reset
    assert fired_at == [16, 32]
    assert scheduler.reset_count == 2
    assert scheduler.state is ScannerState.IDLE


@pytest.mark.asyncio
async def test_found_opportunity_postpones_reset():
    client = priority_client()
    scheduler, _ = build(client)
    context = scheduler.context

    context.clock.advance_time(600)
    context.mark_profit_found()
    context.clock.advance_time(600)

    assert await scheduler.check_idle_reset() is False
    assert scheduler.reset_count == 0


@pytest.mark.asyncio
async def test_failed_reset_does_not_refire_immediately():
    client = priority_client()
    scheduler, _ = build(client)
    client.failing.add("all_pairs_length")
    scheduler.context.clock.advance_time(901)

    assert await scheduler.check_idle_reset() is True
    scheduler.context.clock.advance_time(60)
    assert await scheduler.check_idle_reset() is False
    assert scheduler.state is ScannerState.IDLE


@pytest.mark.asyncio
async def test_priority_scan_skipped_during_full_scan():
    client = priority_client()
    scheduler, _ = build(client)
    await scheduler.initial_load_with_retry()

    gate = asyncio.Event()

    async def slow_find():
        await gate.wait()
        return []

    scheduler.finder.find_opportunities = slow_find
    full = asyncio.create_task(scheduler.full_refresh())
    while scheduler.state is not ScannerState.FULL_SCAN:
        await asyncio.sleep(0)

    calls_before = client.calls["pair_state"]
    assert await scheduler.priority_refresh() is False
    assert await scheduler.check_idle_reset() is False
    assert client.calls["pair_state"] == calls_before

    gate.set()
    assert await full is True
    assert scheduler.state is ScannerState.IDLE
    assert await scheduler.priority_refresh() is True


@pytest.mark.asyncio
async def test_full_refresh_forces_every_tracked_pool():
    client = priority_client()
    client.add_token(XTK, "XTK")
    client.add_pair("0x" + "91" * 20, XTK, CAKE, UNIT, UNIT)
    scheduler, _ = build(client, sampling={"pools_to_sample": 1})
    await scheduler.initial_load_with_retry()
    client.calls.clear()

    assert await scheduler.full_refresh() is True

    assert client.calls["pair_state"] == 3
    assert client.calls["pair_address_at"] == 0


@pytest.mark.asyncio
async def test_full_refresh_retries_unloaded_sample():
    client = priority_client()
    client.add_token(XTK, "XTK")
    client.add_pair("0x" + "91" * 20, XTK, CAKE, UNIT, UNIT)
    scheduler, _ = build(client, sampling={"pools_to_sample": 1})
    client.fail_times["pair_address_at"] = 1
    await scheduler.initial_load_with_retry()
    assert len(scheduler.context.pools) == 2

    await scheduler.full_refresh()

    assert len(scheduler.context.pools) == 3


@pytest.mark.asyncio
async def test_full_refresh_scans_and_dispatches():
    client = priority_client()
    add_mispriced_triangle(client)
    history = Mock()
    scheduler, queue = build(client, history=history, sampling={"pools_to_sample": 3})
    await scheduler.initial_load_with_retry()

    await scheduler.full_refresh()

    history.save.assert_called()
    saved = history.save.call_args[0][0]
    assert saved
    assert queue.jobs
    assert {job["data"]["token0"] for job in queue.jobs} <= {USDT, CAKE}


@pytest.mark.asyncio
async def test_handle_opportunities_empty():
    client = priority_client()
    history = Mock()
    scheduler, _ = build(client, history=history)
    scheduler.dispatcher.dispatch = AsyncMock()

    assert await scheduler.handle_opportunities([], top_n=5, label="full scan") == []
    history.save.assert_not_called()
    scheduler.dispatcher.dispatch.assert_not_called()


@pytest.mark.asyncio
async def test_run_once():
    client = priority_client()
    scheduler, _ = build(client)

    await scheduler.run(once=True)

    assert scheduler.state is ScannerState.IDLE
    assert len(scheduler.context.pools) == 2
    assert scheduler._tasks == []


def test_full_refresh_work_in_index_order():
    scheduler, _ = build(priority_client())
    scheduler.context.current_pool_indices = [7, 2, 5]

    assert [index for _, index in scheduler._full_refresh_work()] == [2, 5, 7]


@pytest.mark.asyncio
async def test_sampled_pools_loaded_in_index_order():
    scheduler, _ = build(priority_client(), sampling={"batch_size": 2})
    scheduler.store.load_pool_by_index = AsyncMock(return_value=None)

    await scheduler.load_sampled_pools([9, 3, 6, 1])

    loaded = [c.args[0] for c in scheduler.store.load_pool_by_index.call_args_list]
    assert loaded == [1, 3, 6, 9]
