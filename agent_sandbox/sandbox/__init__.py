"""
Sandbox Module

Isolation backends for agent code:
- RealmExecutor: restricted namespace inside the controlling process
- WorkerExecutor: separate OS process with a memory ceiling
"""

from .base import IsolationBackend
from .harness import SyncPool
from .realm import RealmExecutor
from .worker import WorkerExecutor, sanitize_context

__all__ = ["IsolationBackend", "RealmExecutor", "SyncPool", "WorkerExecutor", "sanitize_context"]
