"""
Agent Execution Models

Data types shared by the router, the isolation backends and the registry:
agent definitions, the agent cache, execution requests and results.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class TrustTier(str, Enum):
    """Trust classification of an agent."""
    TRUSTED = "trusted"
    UNTRUSTED = "untrusted"


class ErrorKind(str, Enum):
    """Failure taxonomy reported in ExecutionResult.error_kind."""
    SECURITY = "SECURITY"
    PERMISSION = "PERMISSION"
    TIMEOUT = "TIMEOUT"
    MEMORY = "MEMORY"
    RUNTIME = "RUNTIME"


@dataclass(frozen=True)
class AgentConfig:
    """Per-agent execution limits. None means "use the sandbox default"."""
    timeout: Optional[float] = None
    memory_limit: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AgentConfig":
        """Build from an agent-store config record (timeouts may be in ms)."""
        if not data:
            return cls()

        timeout = data.get("timeout")
        timeout_ms = data.get("timeout_ms", data.get("timeoutMs"))
        if timeout is None and timeout_ms is not None:
            timeout = float(timeout_ms) / 1000.0

        memory_limit = data.get("memory_limit", data.get("memoryLimit"))
        return cls(
            timeout=float(timeout) if timeout is not None else None,
            memory_limit=int(memory_limit) if memory_limit is not None else None,
        )


@dataclass(frozen=True)
class AgentDefinition:
    """
    A loaded agent.

    Immutable for the lifetime of a session; the cache replaces definitions
    wholesale on re-load.

    Attributes:
        name: Unique agent name (cache key)
        source: Python source defining execute(params, context)
        id: Agent-store identifier
        trust_tier: TRUSTED agents may run directly; UNTRUSTED always run in a worker
        requires_database: Whether the agent expects a storage handle
        config: Timeout / memory overrides
        capabilities: Declared needs, e.g. "llm" or "isolated"
        entrypoint: Optional Python callable for first-party agents (trusted path only)
    """
    name: str
    source: str = ""
    id: Optional[str] = None
    trust_tier: TrustTier = TrustTier.UNTRUSTED
    requires_database: bool = False
    config: AgentConfig = field(default_factory=AgentConfig)
    capabilities: Tuple[str, ...] = ()
    entrypoint: Optional[Callable[..., Any]] = field(default=None, compare=False, repr=False)

    @property
    def is_trusted(self) -> bool:
        return self.trust_tier is TrustTier.TRUSTED

    def has_capability(self, capability: str) -> bool:
        """Check if the agent declares a specific capability."""
        return capability in self.capabilities

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "AgentDefinition":
        """
        Create a definition from an agent-store row.

        Accepts either ``trust_tier`` or a boolean ``trusted`` flag, and
        ``code`` or ``source`` for the body.
        """
        if not record.get("name"):
            raise ValueError("Agent record is missing a name")

        tier = record.get("trust_tier")
        if tier is None:
            tier = TrustTier.TRUSTED if record.get("trusted") else TrustTier.UNTRUSTED

        return cls(
            name=record["name"],
            source=record.get("source") or record.get("code") or "",
            id=record.get("id"),
            trust_tier=TrustTier(tier),
            requires_database=bool(record.get("requires_database", False)),
            config=AgentConfig.from_dict(record.get("config")),
            capabilities=tuple(record.get("capabilities") or ()),
        )


class AgentCache:
    """Name-keyed lookup of agent definitions. Execution never mutates it."""

    def __init__(self, definitions: Optional[Iterable[AgentDefinition]] = None):
        self._agents: Dict[str, AgentDefinition] = {}
        if definitions is not None:
            self.load(definitions)

    def load(self, definitions: Iterable[AgentDefinition]) -> None:
        """Replace the whole cache with a new set of definitions."""
        agents = {}
        for definition in definitions:
            agents[definition.name] = definition
        self._agents = agents
        logger.info(f"Loaded {len(agents)} agent definitions")

    def get(self, name: str) -> Optional[AgentDefinition]:
        return self._agents.get(name)

    def names(self) -> List[str]:
        return sorted(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def __iter__(self) -> Iterator[AgentDefinition]:
        return iter(list(self._agents.values()))


@dataclass
class ExecutionRequest:
    """A single invocation. Owned by the call that created it."""
    agent_name: str
    params: Any = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    """
    Terminal outcome of one invocation.

    ``error`` and ``error_kind`` are only set on failure.
    """
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    agent_name: Optional[str] = None
    backend: Optional[str] = None
    execution_time: float = 0.0

    @classmethod
    def ok(cls, data: Any = None, **kwargs) -> "ExecutionResult":
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def failure(cls, error_kind: ErrorKind, error: str, **kwargs) -> "ExecutionResult":
        return cls(success=False, error=error, error_kind=ErrorKind(error_kind), **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        result: Dict[str, Any] = {
            "success": self.success,
            "agent_name": self.agent_name,
            "backend": self.backend,
            "execution_time": self.execution_time,
        }
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
            result["error_kind"] = self.error_kind.value if self.error_kind else None
        return result
