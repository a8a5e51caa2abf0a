"""
Execution Registry

Tracks in-flight isolated executions by execution id so they can be
cancelled individually or in bulk.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class RegistryEntry:
    """A live execution: its handle and the callable that tears it down."""
    execution_id: str
    agent_name: str
    backend: str
    handle: Any = None
    cancel: Optional[Callable[[], Any]] = None
    started_at: float = field(default_factory=time.monotonic)


class ExecutionRegistry:
    """
    Map of ExecutionId -> RegistryEntry.

    Safe to use from the event loop and from the worker supervision threads.
    """

    def __init__(self):
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()

    def register(
        self,
        agent_name: str,
        backend: str,
        handle: Any = None,
        cancel: Optional[Callable[[], Any]] = None,
    ) -> str:
        """
        Record a new execution.

        Returns:
            Freshly minted execution id
        """
        execution_id = uuid.uuid4().hex
        entry = RegistryEntry(execution_id, agent_name, backend, handle, cancel)
        with self._lock:
            self._entries[execution_id] = entry
        logger.debug(f"Registered {backend} execution {execution_id} for {agent_name}")
        return execution_id

    def remove(self, execution_id: str) -> Optional[RegistryEntry]:
        """Drop an entry. Removing an unknown id is a no-op."""
        with self._lock:
            return self._entries.pop(execution_id, None)

    def get(self, execution_id: str) -> Optional[RegistryEntry]:
        with self._lock:
            return self._entries.get(execution_id)

    def active(self, backend: Optional[str] = None) -> List[RegistryEntry]:
        with self._lock:
            entries = list(self._entries.values())
        if backend is not None:
            entries = [entry for entry in entries if entry.backend == backend]
        return entries

    def cancel(self, execution_id: str) -> bool:
        """
        Cancel and remove one execution.

        Returns:
            True if the execution was known
        """
        entry = self.remove(execution_id)
        if entry is None:
            return False
        self._invoke_cancel(entry)
        return True

    def cancel_all(self, backend: Optional[str] = None) -> int:
        """
        Cancel every execution, or every execution of one backend.

        Returns:
            Number of executions cancelled
        """
        with self._lock:
            if backend is None:
                entries = list(self._entries.values())
                self._entries.clear()
            else:
                entries = [e for e in self._entries.values() if e.backend == backend]
                for entry in entries:
                    del self._entries[entry.execution_id]

        for entry in entries:
            self._invoke_cancel(entry)
        if entries:
            logger.info(f"Cancelled {len(entries)} active executions")
        return len(entries)

    def _invoke_cancel(self, entry: RegistryEntry) -> None:
        if entry.cancel is None:
            return
        try:
            entry.cancel()
        except Exception as e:
            logger.warning(f"Failed to cancel execution {entry.execution_id} ({entry.agent_name}): {e}")

    def __contains__(self, execution_id: object) -> bool:
        with self._lock:
            return execution_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
