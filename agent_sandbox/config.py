"""
Configuration settings for the agent sandbox
"""
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional


DEFAULT_TIMEOUT = 30.0
DEFAULT_MEMORY_LIMIT = 128 * 1024 * 1024  # 128MB heap ceiling for worker agents
DEFAULT_MAX_CONTEXT_BYTES = 10_000


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class LLMConfig:
    """Configuration for the local OpenAI-compatible model server"""
    model: str = "local-model"
    base_url: str = "http://localhost:8080/v1"
    api_key: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 500
    timeout: int = 60

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Create config from environment variables"""
        return cls(
            model=os.getenv("LOCAL_LLM_MODEL", "local-model"),
            base_url=os.getenv("LOCAL_LLM_BASE_URL", "http://localhost:8080/v1"),
            api_key=os.getenv("LOCAL_LLM_API_KEY"),
        )


@dataclass
class SandboxConfig:
    """Main configuration for agent execution"""
    timeout: float = DEFAULT_TIMEOUT  # Default wall-clock budget per execution, seconds
    memory_limit: int = DEFAULT_MEMORY_LIMIT  # Worker heap ceiling, bytes
    max_context_bytes: int = DEFAULT_MAX_CONTEXT_BYTES

    # Worker processes
    worker_start_method: str = "spawn"  # spawn, forkserver, fork
    max_concurrent_workers: int = 8

    # Threads for synchronous agent code on the direct and realm paths
    max_sync_threads: int = 16

    # Tracing configuration
    enable_tracing: bool = False
    service_name: str = "agent_sandbox"
    otlp_endpoint: str = "localhost:4317"

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.memory_limit <= 0:
            raise ValueError("memory_limit must be positive")
        if self.max_concurrent_workers < 1:
            raise ValueError("max_concurrent_workers must be at least 1")
        if self.max_sync_threads < 1:
            raise ValueError("max_sync_threads must be at least 1")

    @classmethod
    def default(cls) -> "SandboxConfig":
        """Create default configuration"""
        return cls()

    @classmethod
    def from_env(cls) -> "SandboxConfig":
        """Create config from AGENT_SANDBOX_* environment variables"""
        return cls(
            timeout=_env_float("AGENT_SANDBOX_TIMEOUT", DEFAULT_TIMEOUT),
            memory_limit=_env_int("AGENT_SANDBOX_MEMORY_LIMIT", DEFAULT_MEMORY_LIMIT),
            max_context_bytes=_env_int("AGENT_SANDBOX_MAX_CONTEXT_BYTES", DEFAULT_MAX_CONTEXT_BYTES),
            worker_start_method=os.getenv("AGENT_SANDBOX_START_METHOD", "spawn"),
            max_concurrent_workers=_env_int("AGENT_SANDBOX_MAX_WORKERS", 8),
            max_sync_threads=_env_int("AGENT_SANDBOX_MAX_SYNC_THREADS", 16),
            enable_tracing=_env_bool("AGENT_SANDBOX_TRACING", False),
            service_name=os.getenv("AGENT_SANDBOX_SERVICE_NAME", "agent_sandbox"),
            otlp_endpoint=os.getenv("AGENT_SANDBOX_OTLP_ENDPOINT", "localhost:4317"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "timeout": self.timeout,
            "memory_limit": self.memory_limit,
            "max_context_bytes": self.max_context_bytes,
            "worker_start_method": self.worker_start_method,
            "max_concurrent_workers": self.max_concurrent_workers,
            "max_sync_threads": self.max_sync_threads,
            "enable_tracing": self.enable_tracing,
            "service_name": self.service_name,
        }
