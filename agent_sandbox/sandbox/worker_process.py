"""
Worker process entry point

Runs in a freshly spawned process. The only input is the encoded start
frame; the only output is frames written to the pipe.
"""

import asyncio
import inspect
import logging
import resource
from typing import Any, Optional

from ..capabilities.environment import CapabilityEnvironment
from ..errors import categorize_error, describe_error
from ..models import ErrorKind
from .harness import load_entrypoint, resolve
from .wire import START, decode_frame, encode_frame, log_frame, result_frame

logger = logging.getLogger(__name__)

_PAGE_SIZE = resource.getpagesize()


def _address_space_in_use() -> int:
    """Current virtual memory size of this process, 0 if unknown."""
    try:
        with open("/proc/self/statm") as statm:
            return int(statm.read().split()[0]) * _PAGE_SIZE
    except (OSError, ValueError, IndexError):
        return 0


def apply_memory_limit(memory_limit: Optional[int]) -> None:
    """
    Cap the address space available to agent code.

    The ceiling is measured on top of what the interpreter already maps
    after start-up, so ``memory_limit`` is the heap the agent may grow.
    """
    if not memory_limit:
        return
    ceiling = _address_space_in_use() + int(memory_limit)
    try:
        _, hard = resource.getrlimit(resource.RLIMIT_AS)
        if hard != resource.RLIM_INFINITY:
            ceiling = min(ceiling, hard)
        resource.setrlimit(resource.RLIMIT_AS, (ceiling, hard))
    except (ValueError, OSError) as e:
        logger.warning(f"Could not apply memory limit of {memory_limit} bytes: {e}")


def _send(conn, frame) -> None:
    conn.send_bytes(encode_frame(frame))


def _execute(source: str, agent_name: str, params: Any, context: Any, namespace) -> Any:
    entrypoint = load_entrypoint(source, namespace, agent_name)
    outcome = entrypoint(params, context)
    if inspect.isawaitable(outcome):
        outcome = asyncio.run(resolve(outcome))
    return outcome


def worker_main(conn, payload: bytes, memory_limit: Optional[int] = None) -> None:
    """
    Process target for a worker.

    Args:
        conn: Write end of the result pipe
        payload: Encoded start frame
        memory_limit: Heap ceiling in bytes
    """
    try:
        start = decode_frame(payload)
        if start.get("type") != START:
            raise ValueError(f"Unexpected start frame type: {start.get('type')!r}")

        agent_name = start["agent_name"]
        context = start.get("context") or {}

        def sink(level: str, message: str) -> None:
            _send(conn, log_frame(level, message))

        # No storage crosses the process boundary
        environment = CapabilityEnvironment(agent_name, storage=None, log_sink=sink)
        namespace = environment.build(context)

        apply_memory_limit(memory_limit)

        try:
            data = _execute(start["source"], agent_name, start.get("params"), context, namespace)
        except MemoryError:
            _send(conn, result_frame(
                False, error="Agent exceeded its memory limit", error_kind=ErrorKind.MEMORY.value
            ))
            return
        except Exception as e:
            _send(conn, result_frame(
                False, error=describe_error(e), error_kind=categorize_error(e).value
            ))
            return

        try:
            frame = encode_frame(result_frame(True, data=data))
        except ValueError as e:
            frame = encode_frame(result_frame(
                False, error=f"Agent result is not serializable: {e}", error_kind=ErrorKind.RUNTIME.value
            ))
        conn.send_bytes(frame)
    finally:
        conn.close()
