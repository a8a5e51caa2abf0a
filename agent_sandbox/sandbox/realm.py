"""
Realm Executor

Runs agent code inside the controlling process, in a restricted namespace
built fresh for each invocation, raced against a wall-clock timeout.

Isolation is logical only: there is no enforced memory ceiling, and a
synchronous busy loop that times out keeps its thread until it returns.
"""

import asyncio
import copy
import logging
import time
from typing import Any, Dict, Optional

from ..capabilities.environment import CapabilityEnvironment
from ..capabilities.modules import ModuleLoader
from ..capabilities.storage import MediatedStorage
from ..config import SandboxConfig
from ..errors import categorize_error, describe_error
from ..models import AgentDefinition, ErrorKind, ExecutionResult
from ..registry import ExecutionRegistry
from ..security.analyzer import SecurityAnalyzer
from ..telemetry.tracer import create_span
from .base import IsolationBackend
from .harness import SyncPool, is_async_entrypoint, load_entrypoint, resolve

logger = logging.getLogger(__name__)


class RealmExecutor(IsolationBackend):
    """
    Shared-process isolation backend.

    Synchronous agent code (module body and a plain ``execute``) runs on a
    bounded SyncPool so it cannot stall the event loop; an ``async def
    execute`` runs on the loop itself.
    """

    name = "realm"

    def __init__(
        self,
        config: Optional[SandboxConfig] = None,
        registry: Optional[ExecutionRegistry] = None,
        analyzer: Optional[SecurityAnalyzer] = None,
        modules: Optional[ModuleLoader] = None,
        sync_pool: Optional[SyncPool] = None,
    ):
        super().__init__(config, registry, analyzer)
        self.modules = modules or ModuleLoader()
        self.sync_pool = sync_pool or SyncPool(self.config.max_sync_threads)

    async def run(
        self,
        agent: AgentDefinition,
        params: Any,
        context: Dict[str, Any],
        timeout: float,
        memory_limit: Optional[int] = None,
    ) -> ExecutionResult:
        start = time.monotonic()
        with create_span("agent.realm.run", {"agent.name": agent.name, "agent.timeout": timeout}):
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
        rejection = self.screen(agent)
        if rejection is not None:
            return rejection

        if memory_limit:
            logger.debug(
                f"Memory limit of {memory_limit} bytes for {agent.name} is advisory in the realm backend"
            )

        agent_context = self._prepare_context(agent, context)
        environment = CapabilityEnvironment(
            agent.name,
            storage=agent_context.get("database"),
            modules=self.modules,
        )
        namespace = environment.build(agent_context)

        task = asyncio.ensure_future(
            self._invoke(agent, namespace, copy.deepcopy(params), agent_context)
        )
        execution_id = self.registry.register(agent.name, self.name, handle=namespace, cancel=task.cancel)
        logger.debug(f"Realm execution {execution_id} started for {agent.name}")

        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if task not in done:
                task.cancel()
                logger.warning(f"Agent {agent.name} timed out after {timeout}s")
                return ExecutionResult.failure(
                    ErrorKind.TIMEOUT, f"Agent execution timed out after {timeout}s"
                )

            if task.cancelled():
                return ExecutionResult.failure(ErrorKind.RUNTIME, "Agent execution was cancelled")

            error = task.exception()
            if error is not None:
                kind = categorize_error(error)
                logger.error(f"Agent {agent.name} failed in realm ({kind.value}): {error}")
                return ExecutionResult.failure(kind, describe_error(error))

            return ExecutionResult.ok(task.result())
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self.registry.remove(execution_id)

    def _prepare_context(self, agent: AgentDefinition, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Copy the request context, replacing a raw database with a mediated handle."""
        agent_context = dict(context or {})
        database = agent_context.pop("database", None)
        if database is not None:
            if not isinstance(database, MediatedStorage):
                database = MediatedStorage(database, agent.name)
            agent_context["database"] = database
        return agent_context

    async def _invoke(
        self,
        agent: AgentDefinition,
        namespace: Dict[str, Any],
        params: Any,
        context: Dict[str, Any],
    ) -> Any:
        entrypoint = await self.sync_pool.run(load_entrypoint, agent.source, namespace, agent.name)

        if is_async_entrypoint(entrypoint):
            outcome = entrypoint(params, context)
        else:
            outcome = await self.sync_pool.run(entrypoint, params, context)
        return await resolve(outcome)
