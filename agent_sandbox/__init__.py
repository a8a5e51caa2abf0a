"""
Agent Sandbox

Runs agent code at a trust level matched to its origin. Trusted agents run
directly; everything else runs behind a restricted namespace or in a
separate worker process.

Key Components:
- TrustRouter: Picks the execution path per agent and reports ExecutionResults
- RealmExecutor / WorkerExecutor: The two isolation backends
- CapabilityEnvironment: The namespace agent code sees
- SecurityAnalyzer: Static pre-check of agent source
"""

from .config import LLMConfig, SandboxConfig
from .errors import AgentContractError, PermissionDenied, SandboxError, SecurityViolation
from .executor import TrustRouter
from .models import (
    AgentCache,
    AgentConfig,
    AgentDefinition,
    ErrorKind,
    ExecutionRequest,
    ExecutionResult,
    TrustTier,
)
from .registry import ExecutionRegistry

__all__ = [
    "TrustRouter",
    "ExecutionRegistry",
    "SandboxConfig",
    "LLMConfig",
    "AgentCache",
    "AgentConfig",
    "AgentDefinition",
    "ErrorKind",
    "ExecutionRequest",
    "ExecutionResult",
    "TrustTier",
    "SandboxError",
    "SecurityViolation",
    "PermissionDenied",
    "AgentContractError",
]
__version__ = "0.1.0"
