"""
Tests for agent execution models.
"""

import dataclasses

import pytest

from agent_sandbox.models import (
    AgentCache,
    AgentConfig,
    AgentDefinition,
    ErrorKind,
    ExecutionResult,
    TrustTier,
)


class TestAgentConfig:
    """Per-agent limits."""

    def test_empty(self):
        config = AgentConfig.from_dict(None)
        assert config.timeout is None
        assert config.memory_limit is None

    def test_timeout_in_milliseconds(self):
        """Agent-store records carry timeouts in milliseconds."""
        assert AgentConfig.from_dict({"timeout_ms": 2500}).timeout == 2.5
        assert AgentConfig.from_dict({"timeoutMs": 1000}).timeout == 1.0

    def test_seconds_win(self):
        assert AgentConfig.from_dict({"timeout": 3, "timeout_ms": 9000}).timeout == 3.0

    def test_memory_limit(self):
        assert AgentConfig.from_dict({"memoryLimit": 1024}).memory_limit == 1024


class TestAgentDefinition:
    """Agent definitions."""

    def test_from_dict(self):
        """Build a definition from an agent-store row."""
        agent = AgentDefinition.from_dict({
            "name": "IntentParserAgent",
            "id": "intent-parser",
            "code": "def execute(params, context):\n    return params\n",
            "trusted": True,
            "requires_database": True,
            "config": {"timeout_ms": 5000},
            "capabilities": ["llm"],
        })

        assert agent.name == "IntentParserAgent"
        assert agent.is_trusted
        assert agent.trust_tier is TrustTier.TRUSTED
        assert agent.requires_database
        assert agent.config.timeout == 5.0
        assert agent.has_capability("llm")
        assert not agent.has_capability("isolated")
        assert "def execute" in agent.source

    def test_untrusted_by_default(self):
        agent = AgentDefinition.from_dict({"name": "Plugin", "source": "x = 1"})
        assert agent.trust_tier is TrustTier.UNTRUSTED
        assert not agent.is_trusted

    def test_explicit_tier(self):
        agent = AgentDefinition.from_dict({"name": "Plugin", "trust_tier": "trusted"})
        assert agent.is_trusted

    def test_missing_name(self):
        with pytest.raises(ValueError, match="missing a name"):
            AgentDefinition.from_dict({"code": "x = 1"})

    def test_immutable(self):
        agent = AgentDefinition(name="Frozen")
        with pytest.raises(dataclasses.FrozenInstanceError):
            agent.name = "Thawed"


class TestAgentCache:
    """Name-keyed lookup."""

    def test_load_and_get(self):
        cache = AgentCache([AgentDefinition(name="A"), AgentDefinition(name="B")])
        assert len(cache) == 2
        assert "A" in cache
        assert cache.get("B").name == "B"
        assert cache.get("C") is None
        assert cache.names() == ["A", "B"]

    def test_reload_replaces_everything(self):
        cache = AgentCache([AgentDefinition(name="A")])
        cache.load([AgentDefinition(name="B")])
        assert "A" not in cache
        assert [agent.name for agent in cache] == ["B"]


class TestExecutionResult:
    """Terminal outcomes."""

    def test_ok(self):
        result = ExecutionResult.ok({"answer": 42}, backend="realm")
        assert result.success
        assert result.error is None
        assert result.error_kind is None
        assert result.to_dict()["data"] == {"answer": 42}

    def test_failure(self):
        result = ExecutionResult.failure("TIMEOUT", "too slow", agent_name="Slow")
        assert not result.success
        assert result.error_kind is ErrorKind.TIMEOUT

        data = result.to_dict()
        assert data["error_kind"] == "TIMEOUT"
        assert data["error"] == "too slow"
        assert data["agent_name"] == "Slow"
        assert "data" not in data
