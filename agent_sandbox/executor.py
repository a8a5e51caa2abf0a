"""
Trust Router

Entry point for running agents. Classifies each agent by trust tier and runs
it directly, in the realm backend or in a worker process, and turns every
outcome into an ExecutionResult.
"""

import asyncio
import builtins
import copy
import json
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from .capabilities.environment import AgentLogger, AgentUtils, Clock
from .capabilities.storage import MediatedStorage
from .config import SandboxConfig
from .errors import categorize_message, describe_error
from .llm import LLMClientAdapter, ModelQuery
from .memory_actions import MemoryActions, memory_directive
from .models import AgentCache, AgentDefinition, ErrorKind, ExecutionRequest, ExecutionResult
from .registry import ExecutionRegistry
from .sandbox.base import IsolationBackend
from .sandbox.harness import SyncPool, is_async_entrypoint, load_entrypoint, resolve
from .sandbox.realm import RealmExecutor
from .sandbox.worker import WorkerExecutor
from .security.analyzer import SecurityAnalyzer
from .telemetry import metrics
from .telemetry.tracer import annotate_span, create_span, setup_tracer

logger = logging.getLogger(__name__)

DIRECT = "direct"

AgentSource = Union[AgentCache, Mapping[str, AgentDefinition]]


class DirectTimeout(Exception):
    """The direct call ran past its deadline."""
    pass


class TrustRouter:
    """
    Routes agent invocations to an execution path.

    Handles:
    - Trusted agents: direct call, falling back to a sandbox when it throws
    - Untrusted agents: always a worker process
    - Memory directives returned by agents
    - Bulk cancellation and execution statistics
    """

    def __init__(
        self,
        agents: AgentSource,
        config: Optional[SandboxConfig] = None,
        model: Optional[ModelQuery] = None,
        registry: Optional[ExecutionRegistry] = None,
        analyzer: Optional[SecurityAnalyzer] = None,
    ):
        """
        Initialize router.

        Args:
            agents: Agent cache (or any name -> AgentDefinition mapping)
            config: Sandbox defaults
            model: Model backing the llm_client given to trusted agents
            registry: Registry shared by both backends
            analyzer: Static pre-check shared by both backends
        """
        self.agents = agents
        self.config = config or SandboxConfig.default()
        self.model = model
        self.registry = registry if registry is not None else ExecutionRegistry()
        self.analyzer = analyzer or SecurityAnalyzer()

        self.sync_pool = SyncPool(self.config.max_sync_threads)
        self.realm = RealmExecutor(self.config, self.registry, self.analyzer, sync_pool=self.sync_pool)
        self.worker = WorkerExecutor(self.config, self.registry, self.analyzer)

        self.stats = {
            "executions": 0,
            "succeeded": 0,
            "failed": 0,
            "fallbacks": 0,
            "security_violations": 0,
            "timeouts": 0,
        }

        if self.config.enable_tracing:
            setup_tracer(self.config.service_name, self.config.otlp_endpoint)
            metrics.setup_metrics(self.config.service_name, self.config.otlp_endpoint)

        logger.info(
            f"Initialized trust router (timeout={self.config.timeout}s, memory_limit={self.config.memory_limit})"
        )

    async def execute_agent(
        self,
        agent_name: str,
        params: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        """
        Execute an agent by name.

        Args:
            agent_name: Name of a cached agent
            params: JSON-like parameters for execute()
            context: Request context (timestamp, session id, database, ...)

        Returns:
            ExecutionResult; agent-caused failures are never raised
        """
        start = time.monotonic()
        with create_span("agent.execute", {"agent.name": agent_name}):
            try:
                result = await self._execute(agent_name, params, context)
            except Exception as e:
                logger.exception(f"Unexpected error executing agent {agent_name}")
                result = ExecutionResult.failure(ErrorKind.RUNTIME, describe_error(e))

            result.agent_name = agent_name
            result.execution_time = time.monotonic() - start
            self._record(result)
            annotate_span({
                "agent.backend": result.backend,
                "agent.success": result.success,
                "agent.error_kind": result.error_kind.value if result.error_kind else None,
            })
        return result

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute a prepared request."""
        return await self.execute_agent(request.agent_name, request.params, request.context)

    async def _execute(
        self,
        agent_name: str,
        params: Any,
        context: Optional[Dict[str, Any]],
    ) -> ExecutionResult:
        agent = self.agents.get(agent_name)
        if agent is None:
            logger.error(f"Agent '{agent_name}' not found in cache")
            return ExecutionResult.failure(ErrorKind.RUNTIME, f"Agent '{agent_name}' not found in cache")

        agent_context = dict(context or {})
        agent_context["agent_name"] = agent.name
        agent_context["timestamp"] = datetime.now(timezone.utc).isoformat()

        timeout = agent.config.timeout or self.config.timeout

        if agent.is_trusted:
            result = await self._execute_trusted(agent, params, agent_context, timeout)
        else:
            logger.info(f"Running untrusted agent {agent.name} in worker")
            result = await self.worker.run(
                agent, params, agent_context, timeout,
                agent.config.memory_limit or self.config.memory_limit,
            )

        if result.success and memory_directive(result.data):
            result = self._apply_memory_directive(agent, result, agent_context)
        return result

    async def _execute_trusted(
        self,
        agent: AgentDefinition,
        params: Any,
        context: Dict[str, Any],
        timeout: float,
    ) -> ExecutionResult:
        start = time.monotonic()
        try:
            data = await self._run_direct(agent, params, context, timeout)
        except DirectTimeout:
            logger.warning(f"Trusted agent {agent.name} timed out after {timeout}s")
            return ExecutionResult.failure(
                ErrorKind.TIMEOUT,
                f"Agent execution timed out after {timeout}s",
                backend=DIRECT,
                execution_time=time.monotonic() - start,
            )
        except Exception as e:
            backend = self._fallback_backend(agent)
            logger.warning(
                f"Direct execution of {agent.name} failed ({describe_error(e)}), falling back to {backend.name}"
            )
            self.stats["fallbacks"] += 1
            metrics.increment_counter(metrics.FALLBACKS_TOTAL, 1, {"agent": agent.name, "backend": backend.name})
            return await backend.run(agent, params, context, timeout, agent.config.memory_limit)

        logger.info(f"Trusted agent {agent.name} completed directly")
        return ExecutionResult.ok(data, backend=DIRECT, execution_time=time.monotonic() - start)

    def _fallback_backend(self, agent: AgentDefinition) -> IsolationBackend:
        if agent.has_capability("isolated") or agent.config.memory_limit:
            return self.worker
        return self.realm

    async def _run_direct(
        self,
        agent: AgentDefinition,
        params: Any,
        context: Dict[str, Any],
        timeout: float,
    ) -> Any:
        """Call a trusted agent in-process with a minimally restricted context."""
        params = copy.deepcopy(params)
        direct_context = dict(context)
        database = direct_context.pop("database", None)
        if agent.requires_database and database is not None:
            direct_context["database"] = self._mediate(database, agent.name)
        if agent.has_capability("llm") and self.model is not None:
            direct_context["llm_client"] = LLMClientAdapter(self.model, agent.name)

        async def invoke():
            entrypoint = agent.entrypoint
            if entrypoint is None:
                entrypoint = await self.sync_pool.run(
                    load_entrypoint, agent.source, self._direct_namespace(agent), agent.name
                )
            if is_async_entrypoint(entrypoint):
                outcome = entrypoint(params, direct_context)
            else:
                outcome = await self.sync_pool.run(entrypoint, params, direct_context)
            return await resolve(outcome)

        task = asyncio.ensure_future(invoke())
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task not in done:
            task.cancel()
            raise DirectTimeout(agent.name)
        return task.result()

    def _direct_namespace(self, agent: AgentDefinition) -> Dict[str, Any]:
        return {
            "__builtins__": builtins,
            "__name__": f"agent.{agent.name}",
            "logger": AgentLogger(agent.name),
            "json": json,
            "math": math,
            "clock": Clock(),
            "utils": AgentUtils(),
            "agent_name": agent.name,
        }

    @staticmethod
    def _mediate(database: Any, agent_name: str) -> MediatedStorage:
        if isinstance(database, MediatedStorage):
            return database
        return MediatedStorage(database, agent_name)

    def _apply_memory_directive(
        self,
        agent: AgentDefinition,
        result: ExecutionResult,
        context: Dict[str, Any],
    ) -> ExecutionResult:
        database = context.get("database")
        if database is None:
            logger.debug(f"Agent {agent.name} returned a memory directive but no database is available")
            return result

        outcome = MemoryActions(self._mediate(database, agent.name)).apply(result.data)
        if outcome.get("success"):
            return ExecutionResult.ok(outcome, backend=result.backend, execution_time=result.execution_time)

        error = outcome.get("error") or "Memory action failed"
        return ExecutionResult.failure(
            categorize_message(error), error, backend=result.backend, execution_time=result.execution_time
        )

    def _record(self, result: ExecutionResult) -> None:
        self.stats["executions"] += 1
        if result.success:
            self.stats["succeeded"] += 1
        else:
            self.stats["failed"] += 1
            if result.error_kind is ErrorKind.SECURITY:
                self.stats["security_violations"] += 1
            elif result.error_kind is ErrorKind.TIMEOUT:
                self.stats["timeouts"] += 1

        attributes = {
            "agent": result.agent_name or "",
            "backend": result.backend or "none",
            "outcome": "success" if result.success else result.error_kind.value,
        }
        metrics.increment_counter(metrics.EXECUTIONS_TOTAL, 1, attributes)
        metrics.record_latency(metrics.EXECUTION_LATENCY, result.execution_time * 1000, attributes)

        if result.success:
            logger.info(f"Agent {result.agent_name} succeeded via {result.backend} in {result.execution_time:.3f}s")
        else:
            logger.error(
                f"Agent {result.agent_name} failed via {result.backend} ({result.error_kind.value}): {result.error}"
            )

    async def cleanup(self) -> int:
        """Cancel everything still in flight. Safe to call repeatedly."""
        cancelled = self.registry.cancel_all()
        logger.info(f"Trust router cleanup complete ({cancelled} executions cancelled)")
        return cancelled

    async def emergency_stop(self) -> int:
        """Kill all workers and cancel all realm tasks without waiting for their timeouts."""
        logger.warning("Emergency stop: terminating all active agent executions")
        return self.registry.cancel_all()

    def get_status(self) -> Dict[str, Any]:
        """Registry size, defaults and pool occupancy. Busy sync threads include timed-out loops."""
        return {
            "active_executions": len(self.registry),
            "timeout": self.config.timeout,
            "memory_limit": self.config.memory_limit,
            "sync_threads": self.sync_pool.status(),
            "worker_slots": self.worker.slot_status(),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get router status and execution counters."""
        return {**self.get_status(), **self.stats}
