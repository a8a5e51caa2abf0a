"""
Capability Environment

Builds the restricted namespace agent code is executed in. Everything the
agent can reach is listed here explicitly; host-only identifiers are bound to
a placeholder that fails closed.
"""

import asyncio
import builtins
import json
import logging
import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from ..errors import PermissionDenied
from .modules import ModuleLoader, ModuleProxy

logger = logging.getLogger(__name__)

agent_logger = logging.getLogger("agent_sandbox.agents")

LogSink = Callable[[str, str], None]

# Builtins agent code may use. Anything not listed is unavailable.
SAFE_BUILTINS = (
    "abs", "all", "any", "ascii", "bin", "bool", "bytearray", "bytes",
    "callable", "chr", "dict", "divmod", "enumerate", "filter", "float",
    "format", "frozenset", "hash", "hex", "int", "isinstance", "issubclass",
    "iter", "len", "list", "map", "max", "min", "next", "oct", "ord", "pow",
    "range", "repr", "reversed", "round", "set", "slice", "sorted", "str",
    "sum", "tuple", "zip", "staticmethod", "classmethod", "property",
    "__build_class__",
    "True", "False", "None", "Ellipsis", "NotImplemented",
    "Exception", "ArithmeticError", "AssertionError", "AttributeError",
    "IndexError", "KeyError", "LookupError", "MemoryError", "NameError", "NotImplementedError",
    "OverflowError", "PermissionError", "RuntimeError", "StopIteration",
    "StopAsyncIteration", "TimeoutError", "TypeError", "UnicodeError",
    "ValueError", "ZeroDivisionError",
)

# Host identifiers that must resolve to a denial rather than fall through.
HOST_IDENTIFIERS = (
    "os", "sys", "subprocess", "builtins", "open", "input", "breakpoint",
    "eval", "exec", "compile", "globals", "locals", "vars", "getattr",
    "setattr", "delattr", "type", "object", "memoryview", "help", "exit",
    "quit", "__file__", "__loader__", "__spec__", "__path__", "__cached__",
)


class DeniedCapability:
    """Placeholder bound to host-only names. Every use raises PermissionDenied."""

    __slots__ = ("_name",)

    def __init__(self, name: str):
        object.__setattr__(self, "_name", name)

    def _deny(self, *args, **kwargs):
        raise PermissionDenied(f"'{self._name}' is not available to agent code")

    __call__ = _deny
    __getitem__ = _deny
    __iter__ = _deny

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        self._deny()

    def __setattr__(self, name: str, value: Any) -> None:
        self._deny()

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"<denied {self._name}>"


class AgentLogger:
    """Logging functions that prefix every line with the agent name."""

    __slots__ = ("_prefix", "_sink")

    def __init__(self, agent_name: str, sink: Optional[LogSink] = None):
        self._prefix = f"[{agent_name}]"
        self._sink = sink

    def _emit(self, level: str, args: Iterable[Any]) -> None:
        message = " ".join(str(arg) for arg in args)
        if self._sink is not None:
            self._sink(level, message)
        else:
            agent_logger.log(getattr(logging, level.upper()), f"{self._prefix} {message}")

    def debug(self, *args: Any) -> None:
        self._emit("debug", args)

    def info(self, *args: Any) -> None:
        self._emit("info", args)

    def warning(self, *args: Any) -> None:
        self._emit("warning", args)

    def error(self, *args: Any) -> None:
        self._emit("error", args)

    log = info
    warn = warning

    def print(self, *args: Any, **kwargs: Any) -> None:
        # sep/end/file are meaningless for a log line
        self._emit("info", args)


class Clock:
    """Wall and monotonic time."""

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def timestamp() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def monotonic() -> float:
        return time.monotonic()


class AgentUtils:
    """Small helpers available to every agent."""

    @staticmethod
    def timestamp() -> str:
        return Clock.timestamp()

    @staticmethod
    def random_id() -> str:
        return uuid.uuid4().hex[:13]

    @staticmethod
    async def delay(seconds: float) -> None:
        await asyncio.sleep(seconds)


class CapabilityEnvironment:
    """
    Builder for an agent's restricted namespace.

    One environment is built per invocation; namespaces are never shared, so
    concurrent executions cannot observe each other's globals.
    """

    def __init__(
        self,
        agent_name: str,
        storage: Optional[Any] = None,
        modules: Optional[ModuleLoader] = None,
        log_sink: Optional[LogSink] = None,
    ):
        """
        Args:
            agent_name: Name used for log prefixes and the module name
            storage: MediatedStorage handle, or None when the agent gets no storage
            modules: Capability table for imports (default allow-list if omitted)
            log_sink: Callable(level, message) receiving agent log lines; the
                agent logger is used when omitted
        """
        self.agent_name = agent_name
        self.storage = storage
        self.modules = modules or ModuleLoader()
        self.log_sink = log_sink

    def _builtins(self, agent_log: AgentLogger) -> Dict[str, Any]:
        safe = {name: getattr(builtins, name) for name in SAFE_BUILTINS if hasattr(builtins, name)}
        for name in HOST_IDENTIFIERS:
            safe[name] = DeniedCapability(name)
        safe["__import__"] = self.modules
        safe["print"] = agent_log.print
        return safe

    def build(self, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Produce a fresh namespace for one invocation.

        Args:
            context: Request-scoped ambient fields (timestamp, session id, ...)

        Returns:
            Globals dict suitable for exec()
        """
        context = context or {}
        agent_log = AgentLogger(self.agent_name, self.log_sink)

        namespace: Dict[str, Any] = {
            "__builtins__": self._builtins(agent_log),
            "__name__": f"agent.{self.agent_name}",
            "logger": agent_log,
            "json": ModuleProxy(json),
            "math": ModuleProxy(math),
            "clock": Clock(),
            "utils": AgentUtils(),
            "storage": self.storage if self.storage is not None else DeniedCapability("storage"),
            "agent_name": self.agent_name,
            "timestamp": context.get("timestamp") or Clock.timestamp(),
            "session_id": context.get("session_id"),
            "context": context,
        }
        for name in HOST_IDENTIFIERS:
            namespace.setdefault(name, DeniedCapability(name))

        logger.debug(f"Built capability environment for {self.agent_name}")
        return namespace
