"""
Tests for bounded parallelism, timeouts, cancellation and unreachable hosts.
"""

import asyncio

import pytest

from troupe.engine.errors import TaskCancelledError, TaskTimeoutError
from troupe.engine.playbook import Task
from troupe.engine.pool import ExecutionPool
from troupe.engine.results import TaskStatus
from troupe.engine.state import RunState

from fakes import CALLS, FakeConnections, SleepModule, labels, make_executor, play, record


def sleep_task(seconds=0.05, **kwargs):
    return Task(name="sleep", module="sleep", args={"seconds": seconds}, **kwargs)


class TestForks:
    """Test the per-host slot limit."""

    @pytest.mark.asyncio
    async def test_single_fork_runs_hosts_in_order(self, inventory):
        executor = make_executor(inventory, forks=1)

        await executor.run_play(play(record("a"), record("b")), inventory.get_hosts("all"))

        assert CALLS == [
            ("web1", "a"), ("web1", "b"),
            ("web2", "a"), ("web2", "b"),
            ("db1", "a"), ("db1", "b"),
        ]

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_forks(self, inventory):
        executor = make_executor(inventory, forks=2)

        await executor.run_play(play(sleep_task()), inventory.get_hosts("all"))

        assert SleepModule.peak == 2
        assert len(CALLS) == 3

    @pytest.mark.asyncio
    async def test_hosts_overlap_with_enough_forks(self, inventory):
        executor = make_executor(inventory, forks=10)

        await executor.run_play(play(sleep_task()), inventory.get_hosts("all"))

        assert SleepModule.peak == 3

    @pytest.mark.asyncio
    async def test_worker_error_without_handler_propagates(self, inventory):
        pool = ExecutionPool(forks=2, connection_factory=FakeConnections())

        async def worker(host):
            raise ValueError(host.name)

        with pytest.raises(ValueError):
            await pool.run_hosts(inventory.get_hosts("web1"), worker)

    @pytest.mark.asyncio
    async def test_connections_are_cached_and_closed(self, inventory):
        connections = FakeConnections()
        pool = ExecutionPool(connection_factory=connections)
        host = inventory.get_host("web1")

        first = await pool.connect(host)
        second = await pool.connect(host)
        await pool.close()

        assert first is second
        assert connections.connect_calls == 1
        assert first.closed


class TestTimeouts:
    """Test per-operation timeouts."""

    @pytest.mark.asyncio
    async def test_task_timeout(self, inventory):
        executor = make_executor(inventory)
        p = play(sleep_task(5, timeout=0.05), record("after"))

        result = await executor.run_play(p, inventory.get_hosts("web1"))

        timed_out = result.get("web1", "sleep")
        assert timed_out.status == TaskStatus.FAILED
        assert timed_out.error_kind == "timeout"
        assert "timed out" in timed_out.msg
        assert SleepModule.active == 0
        assert result.get("web1", "after").status == TaskStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_config_timeout(self, inventory):
        executor = make_executor(inventory, timeout=0.05)

        result = await executor.run_play(play(sleep_task(5)), inventory.get_hosts("web1"))

        assert result.get("web1", "sleep").error_kind == "timeout"

    @pytest.mark.asyncio
    async def test_task_timeout_overrides_config(self, inventory):
        executor = make_executor(inventory, timeout=0.01)

        result = await executor.run_play(play(sleep_task(0.05, timeout=5)), inventory.get_hosts("web1"))

        assert result.get("web1", "sleep").status == TaskStatus.OK

    @pytest.mark.asyncio
    async def test_dispatch_timeout_raises(self):
        pool = ExecutionPool(connection_factory=FakeConnections())

        with pytest.raises(TaskTimeoutError):
            await pool.dispatch(asyncio.sleep(5), "web1", "sleep", timeout=0.01)


class TestCancellation:
    """Test run-level cancellation."""

    @pytest.mark.asyncio
    async def test_in_flight_tasks_fail_as_cancelled(self, inventory):
        executor = make_executor(inventory, forks=5)
        p = play(sleep_task(5), record("after"))

        async def cancel_soon():
            await asyncio.sleep(0.05)
            executor.run_state.cancel()

        canceller = asyncio.ensure_future(cancel_soon())
        result = await executor.run_play(p, inventory.get_hosts("all"))
        await canceller

        for host in ("web1", "web2", "db1"):
            results = result.results_for(host)
            assert [r.task_name for r in results] == ["sleep"]
            assert results[0].error_kind == "cancelled"
        assert CALLS == []

    @pytest.mark.asyncio
    async def test_waiting_hosts_never_start(self, inventory):
        executor = make_executor(inventory, forks=1)

        async def cancel_soon():
            await asyncio.sleep(0.05)
            executor.run_state.cancel()

        canceller = asyncio.ensure_future(cancel_soon())
        result = await executor.run_play(play(sleep_task(5)), inventory.get_hosts("all"))
        await canceller

        assert [r.host for r in result.task_results] == ["web1"]
        assert result.results_for("web2") == []

    @pytest.mark.asyncio
    async def test_dispatch_cancel_raises(self):
        state = RunState()
        pool = ExecutionPool(connection_factory=FakeConnections(), run_state=state)
        asyncio.get_running_loop().call_later(0.01, state.cancel)

        with pytest.raises(TaskCancelledError):
            await pool.dispatch(asyncio.sleep(5), "web1", "sleep")


class TestUnreachable:
    """Test hosts whose connection cannot be opened."""

    @pytest.mark.asyncio
    async def test_unreachable_host_is_isolated(self, inventory):
        connections = FakeConnections(unreachable={"db1"})
        executor = make_executor(inventory, connections)
        p = play(record("a", changed=True, notify=["h"]), record("b"), handlers=[record("h")])

        result = await executor.run_play(p, inventory.get_hosts("all"))

        assert [r.status for r in result.results_for("db1")] == [TaskStatus.UNREACHABLE] * 2
        assert "No route to host" in result.get("db1", "a").msg
        assert result.host_stats["db1"].unreachable == 2
        assert labels("db1") == []
        assert labels("web1") == ["a", "b", "h"]
        assert executor.run_state.is_unreachable("db1")

    @pytest.mark.asyncio
    async def test_unreachable_for_the_rest_of_the_run(self, inventory):
        connections = FakeConnections(unreachable={"db1"})
        executor = make_executor(inventory, connections)

        await executor.run_play(play(record("a")), inventory.get_hosts("db1"))
        result = await executor.run_play(play(record("b")), inventory.get_hosts("db1"))

        assert connections.connect_calls == 1
        assert result.get("db1", "b").status == TaskStatus.UNREACHABLE
