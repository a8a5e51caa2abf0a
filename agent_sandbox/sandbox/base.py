"""
Base Isolation Backend Interface

Abstract base class for the backends that run untrusted agent code.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..config import SandboxConfig
from ..models import AgentDefinition, ErrorKind, ExecutionResult
from ..registry import ExecutionRegistry
from ..security.analyzer import SecurityAnalyzer

logger = logging.getLogger(__name__)


class IsolationBackend(ABC):
    """
    Abstract base class for isolation backends.

    All backends share the execution registry and the security analyzer of
    the router that owns them, and report every outcome as an
    ExecutionResult instead of raising.
    """

    name = "base"

    def __init__(
        self,
        config: Optional[SandboxConfig] = None,
        registry: Optional[ExecutionRegistry] = None,
        analyzer: Optional[SecurityAnalyzer] = None,
    ):
        """
        Initialize backend with its collaborators.

        Args:
            config: Sandbox defaults (timeouts, memory, worker settings)
            registry: Registry for in-flight executions
            analyzer: Static pre-check applied before any code runs
        """
        self.config = config or SandboxConfig.default()
        self.registry = registry if registry is not None else ExecutionRegistry()
        self.analyzer = analyzer or SecurityAnalyzer()

    @abstractmethod
    async def run(
        self,
        agent: AgentDefinition,
        params: Any,
        context: Dict[str, Any],
        timeout: float,
        memory_limit: Optional[int] = None,
    ) -> ExecutionResult:
        """
        Execute an agent within the backend.

        Args:
            agent: Definition of the agent to run
            params: JSON-like parameters passed to execute()
            context: Request context
            timeout: Wall-clock limit in seconds
            memory_limit: Heap ceiling in bytes, where the backend can enforce one

        Returns:
            Terminal ExecutionResult; never raises for agent-caused failures
        """
        pass

    def screen(self, agent: AgentDefinition) -> Optional[ExecutionResult]:
        """Run the static pre-check; returns a SECURITY failure if the source is rejected."""
        report = self.analyzer.analyze(agent.source)
        if report.safe:
            return None
        logger.warning(
            f"Rejected agent {agent.name} before {self.name} execution: {'; '.join(report.violations)}"
        )
        return ExecutionResult.failure(
            ErrorKind.SECURITY,
            "Security violation: " + "; ".join(report.violations),
        )

    async def cleanup(self) -> int:
        """Cancel every execution this backend still has in flight."""
        return self.registry.cancel_all(backend=self.name)

    @property
    def active_executions(self) -> int:
        return len(self.registry.active(backend=self.name))
