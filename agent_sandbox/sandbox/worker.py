"""
Worker Executor

Runs agent code in a separate OS process with an address-space ceiling and
forced termination on timeout. The child only receives a sanitized copy of
the request context.
"""

import asyncio
import logging
import math
import multiprocessing
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from multiprocessing.connection import wait
from typing import Any, Dict, Optional

from ..config import SandboxConfig
from ..errors import categorize_message
from ..models import AgentDefinition, ErrorKind, ExecutionResult
from ..registry import ExecutionRegistry
from ..security.analyzer import SecurityAnalyzer
from ..security.policies import SENSITIVE_CONTEXT_KEYS
from ..telemetry.tracer import create_span
from .base import IsolationBackend
from .wire import LOG, MAX_SAFE_INTEGER, RESULT, decode_frame, encode_frame, serialized_size, start_frame
from .worker_process import worker_main

logger = logging.getLogger(__name__)

agent_logger = logging.getLogger("agent_sandbox.agents")

TRUNCATED_CONTEXT = {"truncated": True, "message": "Context truncated for security"}

_DROP = object()


def _jsonable(value: Any) -> Any:
    """Best-effort JSON form of a context value; _DROP when it has none."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value if abs(value) <= MAX_SAFE_INTEGER else _DROP
    if isinstance(value, float):
        return value if math.isfinite(value) else _DROP
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if not isinstance(key, str):
                continue
            item = _jsonable(item)
            if item is not _DROP:
                result[key] = item
        return result
    if isinstance(value, (list, tuple)):
        items = (_jsonable(item) for item in value)
        return [item for item in items if item is not _DROP]
    return _DROP


def sanitize_context(context: Optional[Dict[str, Any]], max_bytes: int) -> Dict[str, Any]:
    """
    Reduce a request context to what may cross into a worker.

    Sensitive keys are removed, values JSON cannot carry are dropped and an
    oversized context is replaced by a truncation marker.
    """
    sanitized = {}
    for key, value in (context or {}).items():
        if key in SENSITIVE_CONTEXT_KEYS:
            continue
        value = _jsonable(value)
        if value is not _DROP and isinstance(key, str):
            sanitized[key] = value

    if serialized_size(sanitized) > max_bytes:
        logger.warning(f"Context exceeds {max_bytes} bytes, truncating before worker start")
        return dict(TRUNCATED_CONTEXT)
    return sanitized


class WorkerExecutor(IsolationBackend):
    """
    Process isolation backend.

    Each run spawns one process. At most ``max_concurrent_workers`` processes
    are alive at once; a run waiting for a slot spends its own timeout doing
    so. Every admitted process gets a supervisor thread from a pool of the
    same size, so its deadline is always watched.
    """

    name = "worker"

    def __init__(
        self,
        config: Optional[SandboxConfig] = None,
        registry: Optional[ExecutionRegistry] = None,
        analyzer: Optional[SecurityAnalyzer] = None,
    ):
        super().__init__(config, registry, analyzer)
        self._mp_context = multiprocessing.get_context(self.config.worker_start_method)
        self._pool = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_workers,
            thread_name_prefix="agent-worker",
        )
        self._slots: Optional[asyncio.Semaphore] = None
        self._running = 0

    async def run(
        self,
        agent: AgentDefinition,
        params: Any,
        context: Dict[str, Any],
        timeout: float,
        memory_limit: Optional[int] = None,
    ) -> ExecutionResult:
        start = time.monotonic()
        with create_span("agent.worker.run", {"agent.name": agent.name, "agent.timeout": timeout}):
            result = await self._run(agent, params, context, timeout, memory_limit)
        result.agent_name = agent.name
        result.backend = self.name
        result.execution_time = time.monotonic() - start
        return result

    async def _run(
        self,
        agent: AgentDefinition,
        params: Any,
        context: Dict[str, Any],
        timeout: float,
        memory_limit: Optional[int],
    ) -> ExecutionResult:
        if not agent.name or not agent.source:
            return ExecutionResult.failure(ErrorKind.RUNTIME, "Invalid agent definition: name and source are required")

        rejection = self.screen(agent)
        if rejection is not None:
            return rejection

        try:
            payload = encode_frame(start_frame(
                agent.name,
                agent.source,
                params,
                sanitize_context(context, self.config.max_context_bytes),
            ))
        except ValueError as e:
            return ExecutionResult.failure(ErrorKind.RUNTIME, f"Agent parameters are not serializable: {e}")

        memory_limit = memory_limit or self.config.memory_limit
        deadline = time.monotonic() + timeout

        if self._slots is None:
            self._slots = asyncio.Semaphore(self.config.max_concurrent_workers)
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No worker slot freed up for {agent.name} within {timeout}s")
            return ExecutionResult.failure(ErrorKind.TIMEOUT, f"Agent execution timed out after {timeout}s")

        self._running += 1
        try:
            return await self._spawn(agent, payload, memory_limit, deadline, timeout)
        finally:
            self._running -= 1
            self._slots.release()

    async def _spawn(
        self,
        agent: AgentDefinition,
        payload: bytes,
        memory_limit: int,
        deadline: float,
        timeout: float,
    ) -> ExecutionResult:
        reader, writer = self._mp_context.Pipe(duplex=False)
        process = self._mp_context.Process(
            target=worker_main,
            args=(writer, payload, memory_limit),
            name=f"agent-{agent.name}",
            daemon=True,
        )
        try:
            process.start()
        except Exception as e:
            reader.close()
            writer.close()
            logger.error(f"Failed to start worker for {agent.name}: {e}")
            return ExecutionResult.failure(ErrorKind.RUNTIME, f"Worker error: {e}")
        writer.close()

        execution_id = self.registry.register(agent.name, self.name, handle=process, cancel=process.kill)
        logger.debug(f"Worker {process.pid} started for {agent.name} ({execution_id})")

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                self._pool, self._supervise, agent.name, process, reader, deadline, timeout
            )
        except asyncio.CancelledError:
            process.kill()
            raise
        finally:
            self.registry.remove(execution_id)
            if process.is_alive():
                process.kill()
            process.join(1)
            reader.close()

    def _supervise(self, agent_name: str, process, reader, deadline: float, timeout: float) -> ExecutionResult:
        """
        Block until the first terminal signal from the worker. Runs on the pool.

        Frames already waiting in the pipe are read before the deadline is
        enforced, so a result that arrived in time is never reported as a
        timeout. Log frames arriving after the deadline do not extend it.
        """
        while True:
            remaining = deadline - time.monotonic()
            ready = wait([reader, process.sentinel], timeout=max(remaining, 0))
            if not ready:
                return self._timeout_result(agent_name, process, timeout)

            if reader not in ready:
                break

            try:
                frame = decode_frame(reader.recv_bytes())
            except EOFError:
                break
            except (OSError, ValueError) as e:
                process.kill()
                logger.error(f"Worker for {agent_name} sent an unreadable frame: {e}")
                return ExecutionResult.failure(ErrorKind.RUNTIME, f"Worker error: {e}")

            frame_type = frame.get("type")
            if frame_type == LOG:
                self._relog(agent_name, frame)
                if time.monotonic() >= deadline:
                    return self._timeout_result(agent_name, process, timeout)
            elif frame_type == RESULT:
                return self._to_result(agent_name, frame)
            else:
                process.kill()
                return ExecutionResult.failure(ErrorKind.RUNTIME, f"Worker error: unexpected frame {frame_type!r}")

        return self._exit_result(agent_name, process, deadline)

    def _timeout_result(self, agent_name: str, process, timeout: float) -> ExecutionResult:
        process.kill()
        logger.warning(f"Worker for {agent_name} timed out after {timeout}s, killed")
        return ExecutionResult.failure(ErrorKind.TIMEOUT, f"Agent execution timed out after {timeout}s")

    def _exit_result(self, agent_name: str, process, deadline: float) -> ExecutionResult:
        process.join(max(deadline - time.monotonic(), 0.1))
        exitcode = process.exitcode
        if exitcode is None:
            process.kill()
            return ExecutionResult.failure(ErrorKind.RUNTIME, "Worker error: pipe closed while process still running")
        if exitcode != 0:
            logger.error(f"Worker for {agent_name} exited with code {exitcode}")
            return ExecutionResult.failure(ErrorKind.RUNTIME, f"Worker exited with code {exitcode}")
        return ExecutionResult.failure(ErrorKind.RUNTIME, "Worker exited without returning a result")

    def slot_status(self) -> Dict[str, int]:
        return {"busy": self._running, "max": self.config.max_concurrent_workers}

    def _relog(self, agent_name: str, frame: Dict[str, Any]) -> None:
        level = getattr(logging, str(frame.get("level", "info")).upper(), logging.INFO)
        agent_logger.log(level, f"[{agent_name}] {frame.get('message', '')}")

    def _to_result(self, agent_name: str, frame: Dict[str, Any]) -> ExecutionResult:
        if frame.get("success"):
            return ExecutionResult.ok(frame.get("data"))

        error = frame.get("error") or "Agent execution failed"
        try:
            kind = ErrorKind(frame.get("error_kind"))
        except ValueError:
            kind = categorize_message(error)
        logger.error(f"Agent {agent_name} failed in worker ({kind.value}): {error}")
        return ExecutionResult.failure(kind, error)
