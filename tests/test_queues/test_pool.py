"""Tests for the worker pool."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from sqs_consumer.queues.config import LimiterConfig, LimiterOptions
from sqs_consumer.queues.poller import DispatchMode
from sqs_consumer.queues.pool import WorkerPool


@pytest.fixture
def pool_config(consumer_config):
    return consumer_config.model_copy(
        update={
            "concurrency": 3,
            "limiter": LimiterConfig(
                interval_ms=1000,
                quota=50,
                options=LimiterOptions(await_task=True, post_delay_ms=None),
            ),
        }
    )


async def _idle_receive(*args, **kwargs):
    await asyncio.sleep(0.01)
    return []


class TestWorkerPoolSetup:

    def test_builds_one_loop_per_worker(self, handler, transport, pool_config):
        pool = WorkerPool(handler, pool_config, transport=transport)

        assert len(pool.loops) == 3
        assert [loop.worker_id for loop in pool.loops] == [0, 1, 2]
        assert pool.transport is transport

    def test_loops_share_limiter_and_acks(self, handler, transport, pool_config):
        pool = WorkerPool(handler, pool_config, transport=transport)

        assert pool.limiter.quota == 50
        for loop in pool.loops:
            assert loop._limiter is pool.limiter
            assert loop.acks is pool.acks
            assert loop._dispatch_mode == DispatchMode.PER_MESSAGE


class TestWorkerPoolLifecycle:

    @pytest.mark.asyncio
    async def test_double_start_launches_concurrency_tasks(self, handler, transport, pool_config):
        transport.receive.side_effect = _idle_receive
        pool = WorkerPool(handler, pool_config, transport=transport)
        before = asyncio.all_tasks()

        pool.start()
        pool.start()
        started = asyncio.all_tasks() - before

        assert len(started) == 3
        assert pool.is_running

        pool.stop()
        await asyncio.wait_for(pool.wait_closed(), timeout=5)
        assert not pool.is_running

    @pytest.mark.asyncio
    async def test_context_manager_connects_and_closes(self, handler, transport, pool_config):
        transport.receive.side_effect = _idle_receive

        async with WorkerPool(handler, pool_config, transport=transport) as pool:
            transport.connect.assert_awaited_once()
            pool.start()
            await asyncio.sleep(0.02)

        transport.close.assert_awaited_once()
        assert not pool.is_running

    @pytest.mark.asyncio
    async def test_each_message_dispatched_alone(
        self, handler, transport, pool_config, messages
    ):
        config = pool_config.model_copy(update={"concurrency": 1})
        pool = WorkerPool(handler, config, transport=transport)
        loop = pool.loops[0]
        batches = [messages]

        async def receive(*args, **kwargs):
            if batches:
                return batches.pop()
            loop.stop()
            return []

        transport.receive.side_effect = receive

        pool.start()
        await asyncio.wait_for(pool.wait_closed(), timeout=5)

        delivered = [c.args[0] for c in handler.on_receive.await_args_list]
        assert delivered[:3] == [[m] for m in messages]
        assert pool.limiter.invoked_count == 3


class TestWorkerPoolOperations:

    def test_set_limiter_config_forwards(self, handler, transport, pool_config):
        pool = WorkerPool(handler, pool_config, transport=transport)
        new_config = LimiterConfig(interval_ms=500, quota=5)

        with patch.object(pool.limiter, "set_configs") as set_configs:
            pool.set_limiter_config(new_config, immediate=True)

        set_configs.assert_called_once_with(new_config, immediate=True)

    def test_set_limiter_config_applies(self, handler, transport, pool_config):
        pool = WorkerPool(handler, pool_config, transport=transport)

        pool.set_limiter_config(LimiterConfig(interval_ms=500, quota=5))

        assert pool.limiter.quota == 5
        assert pool.limiter.interval_ms == 500
        assert pool.limiter.pending_reconfig_delay_ms is not None

    @pytest.mark.asyncio
    async def test_delete_helpers_delegate_to_acks(self, handler, transport, pool_config, messages):
        pool = WorkerPool(handler, pool_config, transport=transport)

        with patch.object(pool.acks, "delete_one", new_callable=AsyncMock) as delete_one, \
                patch.object(pool.acks, "delete_batch", new_callable=AsyncMock) as delete_batch:
            await pool.delete_message(messages[0])
            await pool.delete_messages_batch(messages)

        delete_one.assert_awaited_once_with(messages[0])
        delete_batch.assert_awaited_once_with(messages)
