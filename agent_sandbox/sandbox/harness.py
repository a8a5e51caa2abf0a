"""
Agent Harness

Loads agent source into a namespace and invokes its execute(params, context)
entry point. Shared by the direct path, the realm and the worker child.
"""

import asyncio
import inspect
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict

from ..errors import AgentContractError

logger = logging.getLogger(__name__)

ENTRYPOINT = "execute"


def load_entrypoint(source: str, namespace: Dict[str, Any], agent_name: str) -> Callable[..., Any]:
    """
    Evaluate agent source in ``namespace`` and return its execute function.

    Raises:
        AgentContractError: If the source defines no callable ``execute``
        SyntaxError: If the source does not compile
    """
    code = compile(source, f"<agent:{agent_name}>", "exec")
    exec(code, namespace)

    entrypoint = namespace.get(ENTRYPOINT)
    if not callable(entrypoint):
        raise AgentContractError(
            f"Agent '{agent_name}' must define an {ENTRYPOINT}(params, context) function"
        )
    return entrypoint


def is_async_entrypoint(entrypoint: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(entrypoint)


async def resolve(outcome: Any) -> Any:
    """Normalize sync return values and awaitables into a single value."""
    while inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


class SyncPool:
    """
    Bounded thread pool for synchronous agent code.

    A synchronous ``execute`` cannot be interrupted, so a busy loop that
    times out keeps its thread until it returns. Those threads count as busy
    here; once every thread is busy, further sync work queues and is cut off
    by its caller's timeout.
    """

    def __init__(self, max_threads: int, name: str = "agent-sync"):
        self.max_threads = max_threads
        self._executor = ThreadPoolExecutor(max_workers=max_threads, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._busy = 0

    def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            self._busy += 1
        try:
            return func(*args)
        finally:
            with self._lock:
                self._busy -= 1

    async def run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run ``func(*args)`` on the pool and await its result."""
        if self.saturated:
            logger.warning(f"All {self.max_threads} sync agent threads are busy, queuing")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._call, func, *args)

    @property
    def busy(self) -> int:
        return self._busy

    @property
    def saturated(self) -> bool:
        return self._busy >= self.max_threads

    def status(self) -> Dict[str, int]:
        return {"busy": self._busy, "max": self.max_threads}
