"""
Tests for the worker process backend.

These spawn real processes, so each test pays the start-up cost of a fresh
interpreter.
"""

import asyncio
import logging
import multiprocessing
import time
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from agent_sandbox.config import SandboxConfig
from agent_sandbox.models import AgentDefinition, ErrorKind
from agent_sandbox.registry import ExecutionRegistry
from agent_sandbox.sandbox.wire import encode_frame, result_frame
from agent_sandbox.sandbox.worker import TRUNCATED_CONTEXT, WorkerExecutor, sanitize_context


def agent(source, name="WorkerAgent"):
    return AgentDefinition(name=name, source=source)


BUSY_LOOP = '''
def execute(params, context):
    while True:
        pass
'''


class TestSanitizeContext:
    """Context reduction before it crosses into a worker."""

    def test_sensitive_keys_dropped(self):
        context = {
            "session_id": "s-1",
            "database": object(),
            "llm_client": object(),
            "api_keys": {"openai": "sk-123"},
            "secrets": ["x"],
            "password": "hunter2",
        }
        assert sanitize_context(context, 10000) == {"session_id": "s-1"}

    def test_values_normalized(self):
        when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        context = {"when": when, "items": (1, 2), "handle": object(), "nested": {"ok": 1, "bad": {3}}}
        assert sanitize_context(context, 10000) == {
            "when": when.isoformat(),
            "items": [1, 2],
            "nested": {"ok": 1},
        }

    def test_integers_beyond_double_precision_dropped(self):
        assert sanitize_context({"user_id": 2 ** 63 - 1, "count": 3}, 10000) == {"count": 3}

    def test_oversized_context_truncated(self):
        context = {"history": "x" * 20000}
        assert sanitize_context(context, 10000) == TRUNCATED_CONTEXT

    def test_none(self):
        assert sanitize_context(None, 10000) == {}


class TestWorkerExecutor:
    """Test suite for WorkerExecutor."""

    @pytest.fixture
    def registry(self):
        return ExecutionRegistry()

    @pytest.fixture
    def worker(self, registry):
        return WorkerExecutor(SandboxConfig(max_concurrent_workers=4), registry)

    @pytest.mark.asyncio
    async def test_success(self, worker, registry):
        source = '''
def execute(params, context):
    return {"sum": params["a"] + params["b"], "session": context.get("session_id")}
'''
        result = await worker.run(agent(source), {"a": 1, "b": 2}, {"session_id": "s-9"}, timeout=20)

        assert result.success, result.error
        assert result.data == {"sum": 3, "session": "s-9"}
        assert result.backend == "worker"
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_async_agent(self, worker):
        source = '''
async def execute(params, context):
    await utils.delay(0.01)
    return "awaited"
'''
        result = await worker.run(agent(source), {}, {}, timeout=20)
        assert result.success, result.error
        assert result.data == "awaited"

    @pytest.mark.asyncio
    async def test_context_is_sanitized(self, worker):
        """Secrets and handles never reach the child."""
        source = "def execute(params, context):\n    return sorted(context)\n"
        context = {"session_id": "s-1", "database": object(), "api_keys": {"k": "v"}}
        result = await worker.run(agent(source), {}, context, timeout=20)

        assert result.success, result.error
        assert result.data == ["session_id"]

    @pytest.mark.asyncio
    async def test_timeout_kills_worker(self, worker, registry):
        """A runaway loop is killed at the deadline."""
        start = time.monotonic()
        result = await worker.run(agent(BUSY_LOOP), {}, {}, timeout=1.0)
        elapsed = time.monotonic() - start

        assert result.error_kind is ErrorKind.TIMEOUT
        assert elapsed < 3.0
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_memory_ceiling(self, worker, registry):
        """Allocating past the heap ceiling fails without taking down the host."""
        source = '''
def execute(params, context):
    block = bytearray(512 * 1024 * 1024)
    return len(block)
'''
        result = await worker.run(agent(source), {}, {}, timeout=20, memory_limit=64 * 1024 * 1024)

        assert not result.success
        assert result.error_kind in (ErrorKind.MEMORY, ErrorKind.RUNTIME)
        assert worker.active_executions == 0
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_security_rejection_never_spawns(self, worker):
        with patch.object(worker._mp_context, "Process") as process:
            result = await worker.run(
                agent("import os\n\ndef execute(params, context):\n    return os.getcwd()\n"),
                {}, {}, timeout=20,
            )

        assert result.error_kind is ErrorKind.SECURITY
        process.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_definition(self, worker):
        result = await worker.run(AgentDefinition(name="Empty"), {}, {}, timeout=20)
        assert result.error_kind is ErrorKind.RUNTIME
        assert "Invalid agent definition" in result.error

    @pytest.mark.asyncio
    async def test_unserializable_params(self, worker):
        result = await worker.run(agent(BUSY_LOOP), {"handle": object()}, {}, timeout=20)
        assert result.error_kind is ErrorKind.RUNTIME
        assert "not serializable" in result.error

    @pytest.mark.asyncio
    async def test_oversized_integer_param(self, worker):
        result = await worker.run(agent(BUSY_LOOP), {"id": 2 ** 63 - 1}, {}, timeout=20)
        assert result.error_kind is ErrorKind.RUNTIME
        assert "not serializable" in result.error

    @pytest.mark.asyncio
    async def test_unserializable_result(self, worker):
        source = "def execute(params, context):\n    return {1, 2}\n"
        result = await worker.run(agent(source), {}, {}, timeout=20)
        assert result.error_kind is ErrorKind.RUNTIME
        assert "not serializable" in result.error

    @pytest.mark.asyncio
    async def test_permission_error_kind_crosses_boundary(self, worker):
        source = "import random\n\ndef execute(params, context):\n    return 1\n"
        result = await worker.run(agent(source), {}, {}, timeout=20)
        assert result.error_kind is ErrorKind.PERMISSION

    @pytest.mark.asyncio
    async def test_missing_execute(self, worker):
        result = await worker.run(agent("value = 1\n"), {}, {}, timeout=20)
        assert result.error_kind is ErrorKind.RUNTIME
        assert "execute" in result.error

    @pytest.mark.asyncio
    async def test_agent_logs_are_relayed(self, worker, caplog):
        caplog.set_level(logging.INFO, logger="agent_sandbox.agents")
        source = '''
def execute(params, context):
    logger.info("working on", params["job"])
    return "ok"
'''
        result = await worker.run(agent(source, name="Chatty"), {"job": 7}, {}, timeout=20)

        assert result.success, result.error
        assert "[Chatty] working on 7" in [record.getMessage() for record in caplog.records]

    @pytest.mark.asyncio
    async def test_cleanup_kills_running_worker(self, worker, registry):
        """Bulk cancellation kills the process without waiting for the timeout."""
        task = asyncio.ensure_future(worker.run(agent(BUSY_LOOP), {}, {}, timeout=60))
        for _ in range(100):
            if len(registry):
                break
            await asyncio.sleep(0.05)
        assert worker.active_executions == 1

        start = time.monotonic()
        assert await worker.cleanup() == 1
        result = await asyncio.wait_for(task, timeout=10)

        assert result.error_kind is ErrorKind.RUNTIME
        assert time.monotonic() - start < 10
        assert len(registry) == 0


class TestWorkerConcurrency:
    """Several workers in flight at once."""

    FAST = "def execute(params, context):\n    return {\"ok\": params[\"n\"]}\n"

    @pytest.mark.asyncio
    async def test_concurrent_runs_do_not_cross_contaminate(self):
        """More runs than slots still each get back their own result."""
        registry = ExecutionRegistry()
        worker = WorkerExecutor(SandboxConfig(max_concurrent_workers=2), registry)
        source = '''
def execute(params, context):
    return {"n": params["n"], "session": context["session_id"]}
'''
        definition = agent(source, name="Parallel")
        results = await asyncio.gather(*[
            worker.run(definition, {"n": n}, {"session_id": f"s-{n}"}, timeout=30) for n in range(5)
        ])

        assert all(result.success for result in results), [result.error for result in results]
        assert [result.data for result in results] == [{"n": n, "session": f"s-{n}"} for n in range(5)]
        assert worker.slot_status() == {"busy": 0, "max": 2}
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_hung_worker_does_not_delay_others(self):
        """A spare slot runs a fast agent to completion while another hangs."""
        worker = WorkerExecutor(SandboxConfig(max_concurrent_workers=2))
        slow = asyncio.ensure_future(worker.run(agent(BUSY_LOOP, name="Slow"), {}, {}, timeout=4))
        await asyncio.sleep(0.1)

        start = time.monotonic()
        fast = await worker.run(agent(self.FAST, name="Fast"), {"n": 1}, {}, timeout=3)

        assert fast.success, fast.error
        assert fast.data == {"ok": 1}
        assert time.monotonic() - start < 3
        assert (await slow).error_kind is ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_waiting_for_a_slot_is_bounded_by_timeout(self):
        """With every slot held by a hung agent, a queued run times out on its own deadline."""
        registry = ExecutionRegistry()
        worker = WorkerExecutor(SandboxConfig(max_concurrent_workers=1), registry)
        slow = asyncio.ensure_future(worker.run(agent(BUSY_LOOP, name="Slow"), {}, {}, timeout=4))
        await asyncio.sleep(0.1)

        start = time.monotonic()
        fast = await worker.run(agent(self.FAST, name="Fast"), {"n": 1}, {}, timeout=1)
        elapsed = time.monotonic() - start

        assert fast.error_kind is ErrorKind.TIMEOUT
        assert elapsed < 2
        assert [entry.agent_name for entry in registry.active()] == ["Slow"]

        assert (await slow).error_kind is ErrorKind.TIMEOUT
        after = await worker.run(agent(self.FAST, name="Fast"), {"n": 2}, {}, timeout=20)
        assert after.data == {"ok": 2}

    def test_result_in_pipe_wins_over_elapsed_deadline(self):
        """A result that arrived before the supervisor looked is not a timeout."""
        worker = WorkerExecutor(SandboxConfig())
        reader, writer = multiprocessing.Pipe(duplex=False)
        idle_reader, idle_writer = multiprocessing.Pipe(duplex=False)
        writer.send_bytes(encode_frame(result_frame(True, data={"ok": 1})))
        process = Mock(sentinel=idle_reader)

        try:
            result = worker._supervise("Late", process, reader, time.monotonic() - 1, 1.0)
        finally:
            for conn in (reader, writer, idle_reader, idle_writer):
                conn.close()

        assert result.success
        assert result.data == {"ok": 1}
        process.kill.assert_not_called()
