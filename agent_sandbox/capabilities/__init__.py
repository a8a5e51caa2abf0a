"""
Capabilities Module

What agent code is allowed to touch: the restricted namespace, the mediated
storage handle and the module capability table.
"""

from .environment import AgentLogger, CapabilityEnvironment, DeniedCapability
from .modules import ModuleLoader, ModuleProxy
from .storage import MediatedStorage, SqliteStorage, check_statement

__all__ = [
    "AgentLogger",
    "CapabilityEnvironment",
    "DeniedCapability",
    "ModuleLoader",
    "ModuleProxy",
    "MediatedStorage",
    "SqliteStorage",
    "check_statement",
]
