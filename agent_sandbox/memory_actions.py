"""
Memory Actions

Agents cannot write memories directly; they return a directive such as
``{"action": "store_memory", "key": ..., "value": ...}`` and the router
carries it out here, through the mediated storage handle.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .capabilities.storage import MediatedStorage

logger = logging.getLogger(__name__)

STORE_MEMORY = "store_memory"
RETRIEVE_MEMORY = "retrieve_memory"
SEARCH_MEMORY = "search_memory"

MEMORY_ACTIONS = (STORE_MEMORY, RETRIEVE_MEMORY, SEARCH_MEMORY)

MEMORY_SCHEMA = """
CREATE TABLE IF NOT EXISTS user_memories (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


def memory_directive(data: Any) -> Optional[str]:
    """Return the memory action named by an agent result, if any."""
    if isinstance(data, dict) and data.get("action") in MEMORY_ACTIONS:
        return data["action"]
    return None


def _decode_value(raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class MemoryActions:
    """Store, retrieve and search the ``user_memories`` table."""

    def __init__(self, storage: MediatedStorage):
        self.storage = storage

    def apply(self, directive: Dict[str, Any]) -> Dict[str, Any]:
        """Dispatch a directive returned by an agent."""
        action = directive.get("action")
        logger.info(f"Processing {action} directive")
        if action == STORE_MEMORY:
            return self.store(directive.get("key"), directive.get("value"))
        if action == RETRIEVE_MEMORY:
            return self.retrieve(directive.get("key"))
        if action == SEARCH_MEMORY:
            return self.search(directive.get("query"))
        return {"success": False, "error": f"Unknown memory action: {action}"}

    def store(self, key: Any, value: Any) -> Dict[str, Any]:
        if not key or not isinstance(key, str):
            return {"success": False, "error": "Invalid memory key"}

        stored = value if isinstance(value, str) else json.dumps(value)
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            self.storage.run(
                "INSERT OR REPLACE INTO user_memories (key, value, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (key, stored, timestamp, timestamp),
            )
        except Exception as e:
            logger.error(f"Memory storage failed: {e}")
            return {"success": False, "error": f"Memory storage failed: {e}"}

        logger.debug(f"Stored memory {key!r}")
        return {"success": True, "key": key, "timestamp": timestamp}

    def retrieve(self, key: Optional[str] = None) -> Dict[str, Any]:
        """Fetch one memory by key, or all of them for ``None`` / ``'*'``."""
        try:
            if key and key != "*":
                rows = self.storage.all(
                    "SELECT key, value, created_at, updated_at FROM user_memories WHERE key = ?",
                    (key,),
                )
            else:
                rows = self.storage.all(
                    "SELECT key, value, created_at, updated_at FROM user_memories ORDER BY updated_at DESC"
                )
        except Exception as e:
            logger.error(f"Memory retrieval failed: {e}")
            return {"success": False, "error": f"Memory retrieval failed: {e}"}

        results = [dict(row, value=_decode_value(row["value"])) for row in rows]
        logger.debug(f"Retrieved {len(results)} memories")
        return {"success": True, "results": results}

    def search(self, query: Any) -> Dict[str, Any]:
        if not query or not isinstance(query, str):
            return {"success": False, "error": "Invalid search query"}

        term = f"%{query}%"
        try:
            rows = self.storage.all(
                "SELECT key, value FROM user_memories WHERE key LIKE ? OR value LIKE ?",
                (term, term),
            )
        except Exception as e:
            logger.error(f"Memory search failed: {e}")
            return {"success": False, "error": f"Memory search failed: {e}"}

        results = [dict(row, value=_decode_value(row["value"])) for row in rows]
        return {"success": True, "results": results, "query": query}
